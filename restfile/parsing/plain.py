"""
Parser for the native `.http` request syntax:

    < {% client.global.set("ts", Date.now()) %}
    POST https://example.com/comments HTTP/1.1
        ?page=2
        &pageSize=10
    Content-Type: application/json
    Authorization: Bearer {{token}}

    {"text": "hello"}

    > {% client.test("ok", () => response.status === 200) %}
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple, Union

from restfile.errors import RequestSyntaxError
from restfile.parsing.models import FileBody, Headers, ParseResult, RequestDescriptor

log = logging.getLogger(__name__)

HTTP_METHODS = frozenset({
    "GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "CONNECT", "TRACE",
    "LOCK", "UNLOCK", "PROPFIND", "PROPPATCH", "COPY", "MOVE", "MKCOL",
    "MKCALENDAR", "ACL", "SEARCH",
})

_HTTP_VERSION_RE = re.compile(r"^HTTP/\d+(?:\.\d+)?$", re.IGNORECASE)
_COMMENT_RE = re.compile(r"^\s*(?:#|//)")
_QUERY_CONTINUATION_RE = re.compile(r"^\s*[?&]")
# "< ./body.json", "<@ ./body.json", "<@latin1 ./body.json"
_FILE_REFERENCE_RE = re.compile(r"^<(?:@(\w*))?\s+(.+?)\s*$")
_SCRIPT_OPEN = "{%"
_SCRIPT_CLOSE = "%}"


def _is_blank(line: str) -> bool:
    return not line.strip()


def _is_comment(line: str) -> bool:
    return _COMMENT_RE.match(line) is not None


def _script_fence(lines: List[str], i: int, marker: str) -> Optional[Tuple[str, int]]:
    """
    Read a `< {% ... %}` (marker "<") or `> {% ... %}` (marker ">") region
    starting at lines[i]. Returns (script text, index after the fence).
    """
    head = lines[i].strip()
    if not head.startswith(marker):
        return None
    rest = head[len(marker):].lstrip()
    if not rest.startswith(_SCRIPT_OPEN):
        return None
    rest = rest[len(_SCRIPT_OPEN):]

    if rest.rstrip().endswith(_SCRIPT_CLOSE):
        return rest.rstrip()[:-len(_SCRIPT_CLOSE)].strip(), i + 1

    chunk = [rest] if rest.strip() else []
    j = i + 1
    while j < len(lines):
        line = lines[j]
        if line.rstrip().endswith(_SCRIPT_CLOSE):
            tail = line.rstrip()[:-len(_SCRIPT_CLOSE)]
            if tail.strip():
                chunk.append(tail)
            return "\n".join(chunk).strip("\n"), j + 1
        chunk.append(line)
        j += 1
    raise RequestSyntaxError("unterminated script block, expected '%}'", line=i)


def parse_request_line(line: str, *, line_no: Optional[int] = None) -> Tuple[str, str, Optional[str]]:
    """Split `METHOD URL [HTTP/x.y]` (or a bare `URL [HTTP/x.y]`) into its parts."""
    tokens = line.split()
    if not tokens:
        raise RequestSyntaxError("empty request line", line=line_no)

    version: Optional[str] = None
    if len(tokens) > 1 and _HTTP_VERSION_RE.match(tokens[-1]):
        version = tokens.pop().upper()

    if tokens[0].upper() in HTTP_METHODS:
        if len(tokens) != 2:
            raise RequestSyntaxError(f"malformed request line: {line.strip()!r}", line=line_no)
        return tokens[0].upper(), tokens[1], version

    if len(tokens) == 1:
        return "GET", tokens[0], version

    raise RequestSyntaxError(f"malformed request line: {line.strip()!r}", line=line_no)


def _file_reference(line: str) -> Optional[FileBody]:
    m = _FILE_REFERENCE_RE.match(line.strip())
    if not m or m.group(2).startswith(_SCRIPT_OPEN):
        return None
    encoding = m.group(1)
    return FileBody(
        path=m.group(2),
        process_variables=encoding is not None,
        encoding=encoding or "utf-8",
    )


def _build_body(lines: List[str], headers: Headers) -> Union[None, str, FileBody, tuple]:
    while lines and _is_blank(lines[-1]):
        lines.pop()
    while lines and _is_blank(lines[0]):
        lines.pop(0)
    if not lines:
        return None

    ctype = headers.get("Content-Type", "").lower()
    if "application/x-www-form-urlencoded" in ctype:
        sep = ""
        lines = [ln.strip() for ln in lines]
    elif "multipart/form-data" in ctype:
        sep = "\r\n"
    else:
        sep = "\n"

    parts: List[Union[str, FileBody]] = []
    pending: List[str] = []
    for line in lines:
        ref = _file_reference(line)
        if ref is None:
            pending.append(line)
            continue
        if pending:
            parts.append(sep.join(pending) + sep)
            pending = []
        parts.append(ref)
    if pending:
        parts.append(sep.join(pending))

    if len(parts) == 1:
        return parts[0]
    return tuple(parts)


def parse_plain_request(raw_text: str, *, name: Optional[str] = None) -> ParseResult:
    lines = raw_text.splitlines()
    i = 0
    pre_request_script: Optional[str] = None

    # Leading comments, blanks and an optional pre-request script
    while i < len(lines):
        fence = _script_fence(lines, i, "<")
        if fence is not None:
            pre_request_script, i = fence
            continue
        if _is_blank(lines[i]) or _is_comment(lines[i]):
            i += 1
            continue
        break

    if i >= len(lines):
        raise RequestSyntaxError("no request line found")

    method, url, version = parse_request_line(lines[i], line_no=i)
    i += 1

    # Multi-line query strings
    while i < len(lines) and _QUERY_CONTINUATION_RE.match(lines[i]):
        url += lines[i].strip()
        i += 1

    pairs: List[List[str]] = []
    while i < len(lines) and not _is_blank(lines[i]):
        line = lines[i]
        i += 1
        if _is_comment(line):
            continue
        if line[:1] in (" ", "\t") and pairs:
            pairs[-1][1] = f"{pairs[-1][1]} {line.strip()}".strip()
            continue
        k, sep, v = line.partition(":")
        pairs.append([k.strip(), v.strip() if sep else ""])
    headers = Headers((k, v) for k, v in pairs)

    body_lines: List[str] = []
    test_script: Optional[str] = None
    while i < len(lines):
        fence = _script_fence(lines, i, ">")
        if fence is not None:
            test_script, i = fence
            continue
        body_lines.append(lines[i])
        i += 1

    descriptor = RequestDescriptor(
        method=method,
        url=url,
        headers=headers,
        body=_build_body(body_lines, headers),
        name=name,
        pre_request_script=pre_request_script,
        test_script=test_script,
        http_version=version,
    )
    log.debug("parsed plain request %s %s (%d header(s))", method, url, len(headers))
    return ParseResult(descriptor)
