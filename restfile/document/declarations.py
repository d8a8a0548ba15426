"""
File-scoped variable declarations.

A declaration is a line of the form

    @baseUrl = https://example.com/api

anywhere in a document. Later declarations of the same name win.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Optional

FILE_VARIABLE_RE = re.compile(r"^\s*@([^\s=]+)\s*=\s*(.*?)\s*$")


@dataclass(frozen=True)
class FileVariable:
    name: str
    value: str
    offset: int


def is_file_variable_line(line: str) -> bool:
    return FILE_VARIABLE_RE.match(line) is not None


def iter_file_variables(text: str) -> Iterator[FileVariable]:
    offset = 0
    for line in text.splitlines(keepends=True):
        m = FILE_VARIABLE_RE.match(line.rstrip("\r\n"))
        if m:
            yield FileVariable(name=m.group(1), value=m.group(2), offset=offset)
        offset += len(line)


def collect_file_variables(text: str, before: Optional[int] = None) -> dict[str, str]:
    """
    Map of declared names to raw (unresolved) values.

    With `before`, only declarations starting before that offset are kept,
    which is how a block sees "variables declared earlier in the document".
    """
    out: dict[str, str] = {}
    for var in iter_file_variables(text):
        if before is not None and var.offset >= before:
            break
        out[var.name] = var.value
    return out
