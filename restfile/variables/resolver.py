from __future__ import annotations

import base64
import dataclasses
import json
import logging
import os
import random
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

from restfile.errors import (
    CircularVariableReference,
    Diagnostic,
    RecursionDepthExceeded,
    ResolutionError,
    UnknownSystemFunctionArgument,
    UnresolvedVariableWarning,
)
from restfile.parsing.models import FileBody, FormField, Headers, MultipartBody, RequestDescriptor
from restfile.settings import RestClientSettings
from restfile.variables.cache import ResponseRecord
from restfile.variables.providers import (
    EnvironmentProvider,
    FileVariableProvider,
    NotFound,
    ProcessEnvProvider,
    ResolutionContext,
    VariableProvider,
)
from restfile.variables.request_vars import RequestVariableProvider
from restfile.variables.scanner import Placeholder, has_placeholders, parse_expression, scan
from restfile.variables.system import SystemFunctionProvider

log = logging.getLogger(__name__)

_SPAN_ERRORS = (CircularVariableReference, RecursionDepthExceeded, UnknownSystemFunctionArgument)
_BASIC_AUTH_RE = re.compile(r"^(Basic)\s+([^\s:]+)(?::|\s+)(.*)$", re.IGNORECASE)


@dataclass(frozen=True)
class ResolutionOutcome:
    name: str
    value: Any = None
    warning: Optional[UnresolvedVariableWarning] = None
    error: Optional[ResolutionError] = None

    @property
    def resolved(self) -> bool:
        return self.warning is None and self.error is None


@dataclass(frozen=True)
class ResolutionResult:
    descriptor: RequestDescriptor
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def ok(self) -> bool:
        return not self.errors


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def encode_basic_auth(value: str) -> str:
    """`Basic user:pass` / `Basic user pass` -> `Basic base64(user:pass)`; anything else unchanged."""
    m = _BASIC_AUTH_RE.match(value.strip())
    if not m or has_placeholders(value):
        return value
    token = base64.b64encode(f"{m.group(2)}:{m.group(3)}".encode("utf-8")).decode("ascii")
    return f"{m.group(1)} {token}"


# ----------------------------
# Resolver
# ----------------------------

class VariableResolver:
    """
    Expands placeholders by asking an ordered list of providers.

    Holds no state besides the provider list; a single instance can serve
    many resolutions, including concurrent ones.
    """

    def __init__(self, providers: Sequence[VariableProvider]):
        self.providers: Tuple[VariableProvider, ...] = tuple(providers)

    def _evaluate(
        self,
        ph: Placeholder,
        ctx: ResolutionContext,
        chain: Tuple[str, ...],
        sink: List[Diagnostic],
        field: Optional[str],
    ) -> Any:
        if ph.name in chain:
            raise CircularVariableReference(chain + (ph.name,))
        if len(chain) >= ctx.max_recursion_depth:
            raise RecursionDepthExceeded(chain + (ph.name,), ctx.max_recursion_depth)

        value: Any = NotFound()
        for provider in self.providers:
            if not provider.can_resolve(ph, ctx):
                continue
            value = provider.resolve(ph, ctx)
            if (
                not isinstance(value, NotFound)
                and provider.recursive
                and isinstance(value, str)
                and has_placeholders(value)
            ):
                value = self._expand(value, ctx, chain + (ph.name,), sink, field)
            break

        if isinstance(value, NotFound) and ph.fallback is not None:
            value = self._expand(ph.fallback, ctx, chain + (ph.name,), sink, field)

        if ph.url_encode and not isinstance(value, NotFound):
            value = quote(stringify(value), safe="!~*'()")
        return value

    def _expand(
        self,
        text: str,
        ctx: ResolutionContext,
        chain: Tuple[str, ...],
        sink: List[Diagnostic],
        field: Optional[str],
    ) -> str:
        out: List[str] = []
        last = 0
        for ph in scan(text):
            out.append(text[last:ph.offset])
            last = ph.end
            value = self._evaluate_span(ph, ctx, chain, sink, field)
            out.append(ph.raw_token if isinstance(value, NotFound) else stringify(value))
        out.append(text[last:])
        return "".join(out)

    def _evaluate_span(
        self,
        ph: Placeholder,
        ctx: ResolutionContext,
        chain: Tuple[str, ...],
        sink: List[Diagnostic],
        field: Optional[str],
    ) -> Any:
        """
        Evaluate one span. Top-level spans (empty chain) absorb span errors
        into `sink`; nested spans let them propagate to their top-level span.
        """
        if chain:
            value = self._evaluate(ph, ctx, chain, sink, field)
        else:
            try:
                value = self._evaluate(ph, ctx, chain, sink, field)
            except _SPAN_ERRORS as e:
                log.warning("failed to resolve %s: %s", ph.reference, e)
                sink.append(ResolutionError.from_exception(ph.reference, e, field=field))
                return NotFound(str(e))

        if isinstance(value, NotFound):
            log.warning("unresolved variable %s", ph.reference)
            sink.append(UnresolvedVariableWarning.create(ph.reference, value.reason, field=field))
        else:
            log.debug("resolved variable %s", ph.reference)
        return value

    # ----------------------------
    # Public API
    # ----------------------------

    def resolve_text(self, text: str, ctx: ResolutionContext) -> Tuple[str, List[Diagnostic]]:
        sink: List[Diagnostic] = []
        return self._expand(text, ctx, (), sink, None), sink

    def resolve_reference(self, expression: str, ctx: ResolutionContext) -> ResolutionOutcome:
        """Resolve a bare reference such as `login.response.body.$.token` (no braces)."""
        ph = parse_expression(expression)
        if ph is None:
            return ResolutionOutcome(name=expression, warning=UnresolvedVariableWarning.create(expression, "empty reference"))
        sink: List[Diagnostic] = []
        value = self._evaluate_span(ph, ctx, (), sink, None)
        if isinstance(value, NotFound):
            diag = sink[-1]
            if isinstance(diag, ResolutionError):
                return ResolutionOutcome(name=ph.reference, error=diag)
            return ResolutionOutcome(name=ph.reference, warning=diag)  # type: ignore[arg-type]
        return ResolutionOutcome(name=ph.reference, value=value)

    def resolve(self, descriptor: RequestDescriptor, ctx: ResolutionContext) -> ResolutionResult:
        sink: List[Diagnostic] = []

        def expand(text: str, field: str) -> str:
            return self._expand(text, ctx, (), sink, field)

        url = expand(descriptor.url, "url")

        pairs = []
        for k, v in descriptor.headers.items():
            v = expand(v, k)
            if k.lower() == "authorization":
                v = encode_basic_auth(v)
            pairs.append((k, v))

        body = self._resolve_body(descriptor, ctx, sink)

        resolved = descriptor.replace(url=url, headers=Headers(pairs), body=body)
        return ResolutionResult(resolved, tuple(sink))

    def _resolve_body(self, descriptor: RequestDescriptor, ctx: ResolutionContext, sink: List[Diagnostic]) -> Any:
        body = descriptor.body

        def expand(text: str) -> str:
            return self._expand(text, ctx, (), sink, "body")

        if isinstance(body, str):
            stripped = body.strip()
            spans = list(scan(stripped))
            json_like = descriptor.is_json or not descriptor.content_type
            if json_like and len(spans) == 1 and spans[0].raw_token == stripped:
                # Whole body is one placeholder: keep the provider's native value
                value = self._evaluate_span(spans[0], ctx, (), sink, "body")
                if isinstance(value, NotFound):
                    return body
                if value is None:
                    # A None body means "no body"; JSON null has to stay on the wire
                    return "null"
                if isinstance(value, str):
                    lead = body[:len(body) - len(body.lstrip())]
                    trail = body[len(body.rstrip()):]
                    return lead + value + trail
                return value
            return expand(body)

        if isinstance(body, FileBody):
            return dataclasses.replace(body, path=expand(body.path))

        if isinstance(body, tuple):
            return tuple(
                dataclasses.replace(p, path=expand(p.path)) if isinstance(p, FileBody) else expand(p)
                for p in body
            )

        if isinstance(body, MultipartBody):
            return MultipartBody(tuple(
                FormField(f.name, expand(f.value), f.is_file) for f in body.fields
            ))

        return body


# ----------------------------
# Convenience entry points
# ----------------------------

def default_providers(
    *,
    file_variables: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environment: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> List[VariableProvider]:
    """System, request variables, file scope, environment profile, process environment."""
    return [
        SystemFunctionProvider(),
        RequestVariableProvider(),
        FileVariableProvider(file_variables, overrides),
        EnvironmentProvider(environment),
        ProcessEnvProvider(environ),
    ]


def build_context(
    settings: Optional[RestClientSettings] = None,
    *,
    document_id: Optional[str] = None,
    cache_snapshot: Optional[Mapping[str, ResponseRecord]] = None,
    request_names: Optional[Sequence[str]] = None,
    process_env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
    rng: Optional[random.Random] = None,
) -> ResolutionContext:
    settings = settings or RestClientSettings()
    kwargs: dict[str, Any] = {}
    if clock is not None:
        kwargs["clock"] = clock
    if rng is not None:
        kwargs["rng"] = rng
    return ResolutionContext(
        document_id=document_id,
        cache_snapshot=cache_snapshot if cache_snapshot is not None else {},
        request_names=frozenset(request_names or ()),
        environment=settings.environment_for(),
        process_env=process_env if process_env is not None else os.environ,
        dotenv_path=dotenv_path,
        tzinfo=settings.tzinfo,
        max_recursion_depth=settings.max_recursion_depth,
        **kwargs,
    )


def resolve(
    descriptor: RequestDescriptor,
    providers: Sequence[VariableProvider],
    cache_snapshot: Optional[Mapping[str, ResponseRecord]] = None,
    context: Optional[ResolutionContext] = None,
) -> ResolutionResult:
    ctx = context or ResolutionContext()
    if cache_snapshot is not None:
        ctx = dataclasses.replace(ctx, cache_snapshot=cache_snapshot)
    return VariableResolver(providers).resolve(descriptor, ctx)
