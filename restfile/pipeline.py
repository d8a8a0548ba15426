"""
Glue between the selector, the parsers and the resolver.

`prepare_request` takes one block of a document and returns the parsed,
fully resolved descriptor with every warning collected on the way. It
builds the document-scoped providers (file variables declared above the
block, request names of the document) so callers only pass what lives
outside the document.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Tuple

from restfile.document.declarations import collect_file_variables
from restfile.document.selector import RequestBlock, request_names, split
from restfile.errors import Diagnostic, RequestSyntaxError
from restfile.parsing.factory import parse_block
from restfile.parsing.models import ParseResult, RequestDescriptor
from restfile.settings import RestClientSettings
from restfile.variables.cache import ResponseStore
from restfile.variables.providers import ResolutionContext
from restfile.variables.resolver import ResolutionResult, VariableResolver, build_context, default_providers


@dataclass(frozen=True)
class PreparedRequest:
    block: RequestBlock
    parsed: ParseResult
    resolution: ResolutionResult
    resolver: VariableResolver = field(repr=False, compare=False)
    context: ResolutionContext = field(repr=False, compare=False)

    @property
    def descriptor(self) -> RequestDescriptor:
        return self.resolution.descriptor

    @property
    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        return self.parsed.warnings + self.resolution.diagnostics

    def expand_text(self, text: str) -> str:
        """Substitute variables in `text` with the scope this request was resolved in."""
        value, _ = self.resolver.resolve_text(text, self.context)
        return value


def prepare_request(
    text: str,
    block: RequestBlock,
    *,
    settings: Optional[RestClientSettings] = None,
    cache: Optional[ResponseStore] = None,
    document_id: str = "",
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
    rng: Optional[random.Random] = None,
    parsed: Optional[ParseResult] = None,
) -> PreparedRequest:
    """
    Parse (unless `parsed` is given) and resolve one block of `text`.

    `overrides` carries prompt answers and pre-request script outputs; they
    shadow file variables of the same name. Raises RequestSyntaxError when
    the block does not parse.
    """
    settings = settings or RestClientSettings()
    parsed = parsed or parse_block(block, settings)

    ctx = build_context(
        settings,
        document_id=document_id,
        cache_snapshot=cache.snapshot(document_id) if cache is not None else None,
        request_names=sorted(request_names(text)),
        process_env=environ,
        dotenv_path=dotenv_path,
        clock=clock,
        rng=rng,
    )
    providers = default_providers(
        file_variables=collect_file_variables(text, before=block.body_range.start),
        overrides=overrides,
        environment=ctx.environment,
        environ=environ,
    )
    resolver = VariableResolver(providers)
    resolution = resolver.resolve(parsed.descriptor, ctx)
    return PreparedRequest(block, parsed, resolution, resolver, ctx)


def prepare_document(text: str, **kwargs: Any) -> List[Tuple[RequestBlock, Optional[PreparedRequest], Optional[RequestSyntaxError]]]:
    """Prepare every block; blocks that fail to parse carry their error instead."""
    out: List[Tuple[RequestBlock, Optional[PreparedRequest], Optional[RequestSyntaxError]]] = []
    for block in split(text):
        try:
            out.append((block, prepare_request(text, block, **kwargs), None))
        except RequestSyntaxError as e:
            out.append((block, None, e))
    return out
