from __future__ import annotations

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Protocol, runtime_checkable

from restfile.parsing.models import Headers


@dataclass(frozen=True)
class RequestRecord:
    """The request as it went over the wire, kept for `name.request.*` lookups."""
    method: str
    url: str
    headers: Headers
    body: Optional[str] = None


@dataclass(frozen=True)
class ResponseRecord:
    status_code: int
    headers: Headers
    body: Optional[str]
    request: RequestRecord
    reason: str = ""
    http_version: str = "HTTP/1.1"
    elapsed_ms: Optional[int] = None

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")


@runtime_checkable
class ResponseStore(Protocol):
    # Read side used during resolution; written by the controller after a send
    def get(self, document_id: str, name: str) -> Optional[ResponseRecord]: ...
    def snapshot(self, document_id: str) -> Mapping[str, ResponseRecord]: ...


class RequestVariableCache:
    """
    Last response of every named request, per document.

    Last write wins; entries live as long as the cache object. Resolution
    works on `snapshot()`, so a write landing mid-resolution is not seen.
    """
    def __init__(self):
        self._d: dict[tuple[str, str], ResponseRecord] = {}
        self._lock = threading.Lock()

    def add(self, document_id: str, name: str, record: ResponseRecord) -> None:
        with self._lock:
            self._d[(str(document_id), name)] = record

    def get(self, document_id: str, name: str) -> Optional[ResponseRecord]:
        with self._lock:
            return self._d.get((str(document_id), name))

    def snapshot(self, document_id: str) -> Mapping[str, ResponseRecord]:
        with self._lock:
            return MappingProxyType({n: r for (doc, n), r in self._d.items() if doc == str(document_id)})

    def clear(self, document_id: Optional[str] = None) -> None:
        with self._lock:
            if document_id is None:
                self._d.clear()
                return
            for key in [k for k in self._d if k[0] == str(document_id)]:
                del self._d[key]

    def __len__(self) -> int:
        return len(self._d)
