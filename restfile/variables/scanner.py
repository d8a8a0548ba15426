"""
Single-pass scanner for `{{ ... }}` placeholders.

One level of braces is allowed inside a span, so a fallback can carry a
JSON object: `{{user|{"id": 0}}}`. Anything deeper, or a span that runs
into a line break, is left alone as literal text.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

OPEN = "{{"
CLOSE = "}}"


@dataclass(frozen=True)
class Placeholder:
    raw_token: str
    expression: str
    name: str
    path: Optional[str] = None
    args: Tuple[str, ...] = ()
    fallback: Optional[str] = None
    url_encode: bool = False
    offset: int = 0

    @property
    def end(self) -> int:
        return self.offset + len(self.raw_token)

    @property
    def is_system(self) -> bool:
        return self.name.startswith("$")

    @property
    def reference(self) -> str:
        """`name` plus path, the form request-variable lookups use."""
        return f"{self.name}.{self.path}" if self.path else self.name


def _find_close(text: str, start: int) -> Optional[int]:
    depth = 0
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\n":
            return None
        if depth == 0 and text.startswith(CLOSE, i):
            return i
        if ch == "{":
            depth += 1
            if depth > 1:
                return None
        elif ch == "}":
            depth -= 1
        i += 1
    return None


def split_arguments(text: str) -> Tuple[str, ...]:
    """Whitespace-separated arguments; single or double quotes group words."""
    args: List[str] = []
    buf: List[str] = []
    quote: Optional[str] = None
    has_token = False
    for ch in text:
        if quote:
            if ch == quote:
                quote = None
            else:
                buf.append(ch)
        elif ch in ("'", '"'):
            quote = ch
            has_token = True
        elif ch.isspace():
            if has_token:
                args.append("".join(buf))
                buf, has_token = [], False
        else:
            buf.append(ch)
            has_token = True
    if has_token:
        args.append("".join(buf))
    return tuple(args)


def parse_expression(expression: str, *, raw_token: str = "", offset: int = 0) -> Optional[Placeholder]:
    """
    Parse the inside of a placeholder:

      - `$function arg1 arg2`       system function call
      - `[%]name[.path][|fallback]` variable, request reference, default value

    A leading `%` asks for the resolved value to be URL-encoded.
    Returns None for an empty expression.
    """
    expr = expression.strip()
    url_encode = False
    if expr.startswith("%"):
        url_encode = True
        expr = expr[1:].lstrip()
    if not expr:
        return None

    raw_token = raw_token or f"{OPEN}{expression}{CLOSE}"

    if expr.startswith("$"):
        head, _, rest = expr.partition(" ")
        return Placeholder(
            raw_token=raw_token,
            expression=expression,
            name=head,
            args=split_arguments(rest),
            url_encode=url_encode,
            offset=offset,
        )

    fallback: Optional[str] = None
    if "|" in expr:
        expr, fallback = expr.split("|", 1)
        expr = expr.strip()
        fallback = fallback.strip()

    name, dot, path = expr.partition(".")
    name = name.strip()
    if not name:
        return None
    return Placeholder(
        raw_token=raw_token,
        expression=expression,
        name=name,
        path=path.strip() if dot else None,
        fallback=fallback,
        url_encode=url_encode,
        offset=offset,
    )


def scan(text: str) -> Iterator[Placeholder]:
    i = 0
    while True:
        start = text.find(OPEN, i)
        if start < 0:
            return
        close = _find_close(text, start + len(OPEN))
        if close is None:
            i = start + 1
            continue
        raw = text[start:close + len(CLOSE)]
        ph = parse_expression(text[start + len(OPEN):close], raw_token=raw, offset=start)
        if ph is not None:
            yield ph
        i = close + len(CLOSE)


def has_placeholders(text: str) -> bool:
    return next(scan(text), None) is not None
