"""
Hand-off between resolved descriptors and httpx.

Everything that touches the file system or the wire lives here: deferred
`< path` bodies are read, multipart bodies are assembled, and responses are
turned into cache records.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

import httpx

from restfile.parsing.models import FileBody, Headers, MultipartBody, RequestDescriptor
from restfile.variables.cache import RequestRecord, ResponseRecord

log = logging.getLogger(__name__)

TextExpander = Callable[[str], str]


def _resolve_path(path: str, base_dir: Optional[Union[str, Path]]) -> Path:
    p = Path(path).expanduser()
    if not p.is_absolute() and base_dir is not None:
        p = Path(base_dir) / p
    return p


def read_file_body(ref: FileBody, *, base_dir: Optional[Union[str, Path]] = None, expand: Optional[TextExpander] = None) -> bytes:
    """Load a `< path` body; `<@` bodies go through `expand` (variable substitution)."""
    data = _resolve_path(ref.path, base_dir).read_bytes()
    if ref.process_variables and expand is not None:
        return expand(data.decode(ref.encoding)).encode(ref.encoding)
    return data


def _body_kwargs(
    descriptor: RequestDescriptor,
    headers: List[Tuple[str, str]],
    base_dir: Optional[Union[str, Path]],
    expand: Optional[TextExpander],
) -> dict[str, Any]:
    body = descriptor.body
    if body is None:
        return {}

    if isinstance(body, str):
        return {"content": body.encode("utf-8")}

    if isinstance(body, FileBody):
        return {"content": read_file_body(body, base_dir=base_dir, expand=expand)}

    if isinstance(body, tuple):
        chunks = [
            read_file_body(p, base_dir=base_dir, expand=expand) if isinstance(p, FileBody) else p.encode("utf-8")
            for p in body
        ]
        return {"content": b"".join(chunks)}

    if isinstance(body, MultipartBody):
        # httpx picks the boundary; a hand-written multipart Content-Type would not match it
        headers[:] = [(k, v) for k, v in headers if k.lower() != "content-type"]
        # Text fields go through `files` too (no filename), otherwise httpx
        # would urlencode a form without file fields.
        files: List[Tuple[str, Tuple[Optional[str], bytes]]] = []
        for f in body.fields:
            if f.is_file:
                path = _resolve_path(f.value, base_dir)
                files.append((f.name, (path.name, path.read_bytes())))
            else:
                files.append((f.name, (None, f.value.encode("utf-8"))))
        return {"files": files}

    # Native JSON value from structural substitution
    if not any(k.lower() == "content-type" for k, _ in headers):
        headers.append(("Content-Type", "application/json"))
    return {"content": json.dumps(body).encode("utf-8")}


def build_httpx_request(
    descriptor: RequestDescriptor,
    client: Union[httpx.AsyncClient, httpx.Client],
    *,
    base_dir: Optional[Union[str, Path]] = None,
    expand: Optional[TextExpander] = None,
    timeout_s: Optional[float] = None,
) -> httpx.Request:
    headers = list(descriptor.headers.items())
    kwargs = _body_kwargs(descriptor, headers, base_dir, expand)
    if descriptor.insecure:
        log.debug("insecure flag recorded for %s; TLS verification is a client setting", descriptor.url)
    extra: dict[str, Any] = {}
    if timeout_s is not None:
        extra["timeout"] = timeout_s
    return client.build_request(descriptor.method, descriptor.url, headers=headers, **kwargs, **extra)


def record_response(response: httpx.Response, *, elapsed_ms: Optional[int] = None) -> ResponseRecord:
    req = response.request
    try:
        request_body = req.content.decode("utf-8", errors="replace") if req.content else None
    except httpx.RequestNotRead:
        request_body = None

    def _raw(headers: httpx.Headers) -> Headers:
        return Headers((k.decode("latin-1"), v.decode("latin-1")) for k, v in headers.raw)

    return ResponseRecord(
        status_code=response.status_code,
        headers=_raw(response.headers),
        body=response.text,
        request=RequestRecord(
            method=req.method,
            url=str(req.url),
            headers=_raw(req.headers),
            body=request_body,
        ),
        reason=response.reason_phrase,
        http_version=response.http_version,
        elapsed_ms=elapsed_ms,
    )
