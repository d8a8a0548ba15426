from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

from restfile.document.declarations import is_file_variable_line
from restfile.document.text_source import TextRange, TextSource

log = logging.getLogger(__name__)


class RequestMetadata(str, Enum):
    NAME = "name"
    NOTE = "note"
    NO_REDIRECT = "no-redirect"
    NO_COOKIE_JAR = "no-cookie-jar"
    PROMPT = "prompt"


_KNOWN_METADATA = {m.value: m for m in RequestMetadata}

_DELIMITER_RE = re.compile(r"^\s*###(.*)$")
_COMMENT_RE = re.compile(r"^\s*(?:#|//)")
# "# @name login", "// @note", "# @key: value"
_METADATA_RE = re.compile(r"^\s*(?:#|//)\s*@([A-Za-z][\w-]*)(?:\s*:\s*|\s+|$)(.*?)\s*$")


class PromptVariable(NamedTuple):
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class RequestBlock:
    """
    One request definition cut out of a document.

    `range` starts at the block's first metadata (or body) line and ends at
    its last non-blank line; `body_range` covers `raw_text` only.
    """
    raw_text: str
    range: TextRange
    body_range: TextRange
    body_line: int
    metadata: dict[RequestMetadata, Optional[str]] = field(default_factory=dict)
    prompts: Tuple[PromptVariable, ...] = ()
    delimiter_name: Optional[str] = None

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get(RequestMetadata.NAME)

    @property
    def first_line(self) -> str:
        for line in self.raw_text.splitlines():
            if line.strip() and not _COMMENT_RE.match(line):
                return line.strip()
        return ""


class OutlineItem(NamedTuple):
    label: str
    name: Optional[str]
    range: TextRange


class _Segment(NamedTuple):
    delimiter_line: Optional[int]
    delimiter_name: Optional[str]
    first: int
    stop: int


def _segments(src: TextSource) -> List[_Segment]:
    segments: List[_Segment] = []
    delimiter_line: Optional[int] = None
    delimiter_name: Optional[str] = None
    first = 0
    for ln in range(src.line_count):
        m = _DELIMITER_RE.match(src.line_text(ln))
        if m is None:
            continue
        segments.append(_Segment(delimiter_line, delimiter_name, first, ln))
        delimiter_line = ln
        delimiter_name = m.group(1).strip() or None
        first = ln + 1
    segments.append(_Segment(delimiter_line, delimiter_name, first, src.line_count))
    return segments


def _build_block(src: TextSource, seg: _Segment) -> Optional[RequestBlock]:
    metadata: dict[RequestMetadata, Optional[str]] = {}
    prompts: List[PromptVariable] = []
    body_line: Optional[int] = None
    start_line: Optional[int] = None

    for ln in range(seg.first, seg.stop):
        line = src.line_text(ln)
        if not line.strip():
            continue
        if start_line is None:
            start_line = ln
        if is_file_variable_line(line):
            continue
        if _COMMENT_RE.match(line):
            m = _METADATA_RE.match(line)
            if m:
                key, value = m.group(1).lower(), m.group(2) or None
                meta = _KNOWN_METADATA.get(key)
                if meta is None:
                    log.debug("ignoring unknown metadata key @%s on line %d", key, ln + 1)
                elif meta is RequestMetadata.PROMPT:
                    if value:
                        pname, _, desc = value.partition(" ")
                        prompts.append(PromptVariable(pname, desc.strip() or None))
                else:
                    metadata[meta] = value
            continue
        body_line = ln
        break

    if body_line is None or start_line is None:
        return None

    end_line = seg.stop - 1
    while end_line > body_line and not src.line_text(end_line).strip():
        end_line -= 1

    body_range = TextRange(src.line_start(body_line), src.line_end(end_line))
    if RequestMetadata.NAME not in metadata and seg.delimiter_name:
        metadata[RequestMetadata.NAME] = seg.delimiter_name

    return RequestBlock(
        raw_text=src.slice(body_range),
        range=TextRange(src.line_start(start_line), body_range.end),
        body_range=body_range,
        body_line=body_line,
        metadata=metadata,
        prompts=tuple(prompts),
        delimiter_name=seg.delimiter_name,
    )


# ----------------------------
# Public API
# ----------------------------

def split(text: str) -> List[RequestBlock]:
    """
    Split a document into its request blocks, in source order.

    Only line starts are inspected for `###`, so delimiter-like text inside
    a body (e.g. a JSON string) never splits a block.
    """
    src = TextSource(text)
    blocks = [b for b in (_build_block(src, seg) for seg in _segments(src)) if b is not None]
    log.debug("split document into %d request block(s)", len(blocks))
    return blocks


def select_at(text: str, offset: int) -> Optional[RequestBlock]:
    """Block enclosing a cursor offset; a delimiter line belongs to the block below it."""
    src = TextSource(text)
    line = src.position_at(min(max(offset, 0), len(src))).line
    for seg in _segments(src):
        top = seg.delimiter_line if seg.delimiter_line is not None else seg.first
        if top <= line < max(seg.stop, top + 1):
            return _build_block(src, seg)
    return None


def select_range(text: str, start: int, end: int) -> Optional[RequestBlock]:
    """First block of an explicit selection, with offsets mapped back onto `text`."""
    blocks = split(text[start:end])
    if not blocks:
        return None
    b = blocks[0]
    src = TextSource(text)
    return RequestBlock(
        raw_text=b.raw_text,
        range=b.range.shift(start),
        body_range=b.body_range.shift(start),
        body_line=src.position_at(b.body_range.start + start).line,
        metadata=b.metadata,
        prompts=b.prompts,
        delimiter_name=b.delimiter_name,
    )


def outline(text: str) -> List[OutlineItem]:
    return [OutlineItem(b.name or b.first_line, b.name, b.range) for b in split(text)]


def request_names(text: str) -> set[str]:
    return {b.name for b in split(text) if b.name}
