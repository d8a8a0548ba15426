from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from restfile.errors import Diagnostic


class Headers(Mapping[str, str]):
    """
    Ordered header mapping with case-insensitive keys.

    The first spelling of a name is kept for output; assigning the same name
    again (in any casing) replaces the value in place.
    """

    def __init__(self, items: Union[Iterable[Tuple[str, str]], Mapping[str, str], None] = None):
        self._items: dict[str, Tuple[str, str]] = {}
        if items is None:
            return
        pairs = items.items() if isinstance(items, Mapping) else items
        for name, value in pairs:
            key = name.lower()
            if key in self._items:
                name = self._items[key][0]
            self._items[key] = (name, value)

    def __getitem__(self, name: str) -> str:
        return self._items[name.lower()][1]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return list(self.items()) == list(other.items())
        if isinstance(other, Mapping):
            return Headers(other) == self
        return NotImplemented

    def __repr__(self) -> str:
        return f"Headers({list(self.items())!r})"

    def items(self) -> List[Tuple[str, str]]:  # type: ignore[override]
        return list(self._items.values())

    def with_value(self, name: str, value: str) -> "Headers":
        return Headers(self.items() + [(name, value)])

    def with_defaults(self, defaults: Mapping[str, str]) -> "Headers":
        missing = [(k, v) for k, v in defaults.items() if k not in self]
        return Headers(self.items() + missing)


@dataclass(frozen=True)
class FileBody:
    """
    Deferred `< path` body reference. Reading the file is the transport's job.

    `process_variables` is set by the `<@` form, which asks for the file's
    content to go through variable substitution as well.
    """
    path: str
    process_variables: bool = False
    encoding: str = "utf-8"


@dataclass(frozen=True)
class FormField:
    name: str
    value: str
    is_file: bool = False


@dataclass(frozen=True)
class MultipartBody:
    fields: Tuple[FormField, ...] = ()


# str | FileBody | tuple of (str | FileBody) | MultipartBody | native JSON value | None
Body = Any


@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    body: Body = None
    name: Optional[str] = None
    pre_request_script: Optional[str] = None
    test_script: Optional[str] = None

    http_version: Optional[str] = None
    follow_redirects: bool = True
    compressed: bool = False
    insecure: bool = False
    metadata: Mapping[str, Optional[str]] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    @property
    def is_json(self) -> bool:
        ct = self.content_type.lower()
        return "json" in ct

    def replace(self, **changes: Any) -> "RequestDescriptor":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe snapshot for the transport collaborator or for logs."""
        return {
            "method": self.method,
            "url": self.url,
            "headers": [[k, v] for k, v in self.headers.items()],
            "body": _json_safe(self.body),
            "name": self.name,
            "pre_request_script": self.pre_request_script,
            "test_script": self.test_script,
            "http_version": self.http_version,
            "follow_redirects": self.follow_redirects,
            "compressed": self.compressed,
            "insecure": self.insecure,
            "metadata": {str(k): v for k, v in self.metadata.items()},
        }


@dataclass(frozen=True)
class ParseResult:
    descriptor: RequestDescriptor
    warnings: Tuple[Diagnostic, ...] = ()


def _json_safe(x: Any) -> Any:
    if x is None or isinstance(x, (str, int, float, bool)):
        return x

    if isinstance(x, (tuple, list)):
        return [_json_safe(v) for v in x]

    if isinstance(x, dict):
        return {str(k): _json_safe(v) for k, v in x.items()}

    # FileBody / FormField / MultipartBody
    if dataclasses.is_dataclass(x) and not isinstance(x, type):
        d = dataclasses.asdict(x)
        d["type"] = type(x).__name__
        return _json_safe(d)

    return str(x)
