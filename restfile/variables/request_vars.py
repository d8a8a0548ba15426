"""
Request variables: values taken from the cached exchange of an earlier,
named request.

    {{login.response.body.$.token}}
    {{login.response.body.$.items[0]['id']}}
    {{login.response.body.*}}
    {{login.response.body./feed/entry}}
    {{login.response.headers.Set-Cookie}}
    {{login.request.headers.X-Trace-Id}}
"""
from __future__ import annotations

import json
import re
import xml.etree.ElementTree as ET
from typing import Any, List

from restfile.variables.providers import NotFound, ProviderKind, ResolutionContext
from restfile.variables.scanner import Placeholder

_JSON_PATH_STEP_RE = re.compile(r"\.(\*|[^.\[\]]+)|\[(\*|-?\d+|'[^']*'|\"[^\"]*\")\]")


def evaluate_json_path(document: Any, path: str) -> List[Any]:
    """
    Evaluate a small JSONPath subset: `$`, `.key`, `['key']`, `[n]`, `.*`, `[*]`.

    Raises ValueError for anything outside that subset.
    """
    if not path.startswith("$"):
        raise ValueError(f"JSONPath must start with '$': {path!r}")

    current: List[Any] = [document]
    pos = 1
    while pos < len(path):
        m = _JSON_PATH_STEP_RE.match(path, pos)
        if m is None:
            raise ValueError(f"unsupported JSONPath syntax at {path[pos:]!r}")
        pos = m.end()
        step = m.group(1) if m.group(1) is not None else m.group(2)

        nxt: List[Any] = []
        for node in current:
            if step == "*":
                if isinstance(node, dict):
                    nxt.extend(node.values())
                elif isinstance(node, list):
                    nxt.extend(node)
            elif step[0] in "'\"":
                if isinstance(node, dict) and step[1:-1] in node:
                    nxt.append(node[step[1:-1]])
            elif re.fullmatch(r"-?\d+", step) and isinstance(node, list):
                idx = int(step)
                if -len(node) <= idx < len(node):
                    nxt.append(node[idx])
            elif isinstance(node, dict) and step in node:
                nxt.append(node[step])
        current = nxt
    return current


def _xml_lookup(text: str, path: str) -> Any:
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return NotFound("body is not valid XML")

    if path.startswith("//"):
        found = root.findall("." + path)
        if root.tag == path[2:].split("/", 1)[0] and not found:
            found = [root]
    else:
        head, _, rest = path.lstrip("/").partition("/")
        if head != root.tag:
            return NotFound(f"XML root is <{root.tag}>, not <{head}>")
        found = root.findall(rest) if rest else [root]

    if not found:
        return NotFound(f"XPath '{path}' matched nothing")
    el = found[0]
    if len(el):
        return ET.tostring(el, encoding="unicode")
    return el.text or ""


class RequestVariableProvider:
    kind = ProviderKind.REQUEST_VARIABLE
    recursive = False

    def can_resolve(self, placeholder: Placeholder, context: ResolutionContext) -> bool:
        # Only `name.request.*` / `name.response.*`; a bare `{{name}}` belongs to the other providers
        head = (placeholder.path or "").split(".", 1)[0]
        if head not in ("request", "response"):
            return False
        return placeholder.name in context.request_names or placeholder.name in context.cache_snapshot

    def resolve(self, placeholder: Placeholder, context: ResolutionContext) -> Any:
        name = placeholder.name
        parts = (placeholder.path or "").split(".", 2)
        if len(parts) < 2 or parts[0] not in ("request", "response") or parts[1] not in ("body", "headers"):
            return NotFound(
                f"'{placeholder.reference}' is not a request variable reference "
                "(expected name.response.body.*, name.request.headers.Name, ...)"
            )

        record = context.cache_snapshot.get(name)
        if record is None:
            return NotFound(f"request '{name}' has not been sent yet")

        http: Any = record if parts[0] == "response" else record.request
        if len(parts) < 3 or not parts[2]:
            return NotFound(f"'{placeholder.reference}' is missing the {parts[1]} path")

        if parts[1] == "headers":
            return self._header(http, parts[2])
        return self._body(http, parts[2])

    @staticmethod
    def _header(http: Any, header: str) -> Any:
        value = http.headers.get(header)
        if value is None:
            return NotFound(f"header '{header}' not found")
        return value

    @staticmethod
    def _body(http: Any, path: str) -> Any:
        body = http.body
        if not body:
            return NotFound("body is empty")
        if path == "*":
            return body

        if path.startswith("$"):
            try:
                doc = json.loads(body)
            except ValueError:
                return NotFound("body is not valid JSON")
            try:
                matches = evaluate_json_path(doc, path)
            except ValueError as e:
                return NotFound(str(e))
            if not matches:
                return NotFound(f"JSONPath '{path}' matched nothing")
            return matches[0]

        if path.startswith("/"):
            return _xml_lookup(body, path)

        return NotFound(f"unsupported body path '{path}'")
