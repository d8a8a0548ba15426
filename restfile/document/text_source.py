from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import List, NamedTuple


class Position(NamedTuple):
    line: int
    column: int


@dataclass(frozen=True)
class TextRange:
    """Half-open [start, end) span of character offsets."""
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid range: {self.start}..{self.end}")

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def overlaps(self, other: "TextRange") -> bool:
        return self.start < other.end and other.start < self.end

    def shift(self, delta: int) -> "TextRange":
        return TextRange(self.start + delta, self.end + delta)


class TextSource:
    """
    Immutable document text with offset <-> line/column conversion.

    Offsets are character offsets into `text`. `byte_offset` / `char_offset`
    convert to and from UTF-8 byte offsets for hosts that address text
    that way.
    """

    def __init__(self, text: str):
        self.text = text
        self._line_starts: List[int] = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(i + 1)

    def __len__(self) -> int:
        return len(self.text)

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def line_start(self, line: int) -> int:
        return self._line_starts[line]

    def line_end(self, line: int) -> int:
        """Offset of the end of `line`, excluding its line break."""
        if line + 1 < len(self._line_starts):
            end = self._line_starts[line + 1] - 1
            if end > 0 and self.text[end - 1] == "\r":
                end -= 1
            return end
        return len(self.text)

    def line_text(self, line: int) -> str:
        return self.text[self.line_start(line):self.line_end(line)]

    def position_at(self, offset: int) -> Position:
        if offset < 0 or offset > len(self.text):
            raise IndexError(f"offset {offset} outside document of length {len(self.text)}")
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return Position(line, offset - self._line_starts[line])

    def offset_at(self, line: int, column: int) -> int:
        if line < 0 or line >= len(self._line_starts):
            raise IndexError(f"line {line} outside document")
        return min(self._line_starts[line] + column, self.line_end(line))

    def slice(self, rng: TextRange) -> str:
        return self.text[rng.start:rng.end]

    def byte_offset(self, offset: int) -> int:
        return len(self.text[:offset].encode("utf-8"))

    def char_offset(self, byte_offset: int) -> int:
        return len(self.text.encode("utf-8")[:byte_offset].decode("utf-8", errors="ignore"))
