from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from restfile.document.selector import RequestBlock, RequestMetadata, split
from restfile.errors import RequestSyntaxError
from restfile.parsing.curl import is_curl_command, parse_curl_command
from restfile.parsing.models import ParseResult
from restfile.parsing.plain import parse_plain_request
from restfile.settings import RestClientSettings

log = logging.getLogger(__name__)

RequestParser = Callable[..., ParseResult]


def create_parser(raw_text: str, settings: Optional[RestClientSettings] = None) -> RequestParser:
    """Pick the curl parser for text starting with `curl`, the plain parser otherwise."""
    if is_curl_command(raw_text):
        shell_vars = settings.curl_shell_variables if settings else False

        def _curl(text: str, *, name: Optional[str] = None) -> ParseResult:
            return parse_curl_command(text, name=name, shell_env_placeholders=shell_vars)

        return _curl
    return parse_plain_request


def parse_block(block: RequestBlock, settings: Optional[RestClientSettings] = None) -> ParseResult:
    settings = settings or RestClientSettings()
    parser = create_parser(block.raw_text, settings)
    result = parser(block.raw_text, name=block.name)

    d = result.descriptor
    follow = d.follow_redirects and settings.follow_redirect
    if RequestMetadata.NO_REDIRECT in block.metadata:
        follow = False

    d = d.replace(
        headers=d.headers.with_defaults(settings.default_headers),
        follow_redirects=follow,
        metadata={k.value: v for k, v in block.metadata.items()},
    )
    return ParseResult(d, result.warnings)


@dataclass(frozen=True)
class BlockOutcome:
    block: RequestBlock
    result: Optional[ParseResult] = None
    error: Optional[RequestSyntaxError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_document(text: str, settings: Optional[RestClientSettings] = None) -> List[BlockOutcome]:
    """Parse every block; a syntax error stays with its own block."""
    outcomes: List[BlockOutcome] = []
    for block in split(text):
        try:
            outcomes.append(BlockOutcome(block, result=parse_block(block, settings)))
        except RequestSyntaxError as e:
            log.debug("block at line %d failed to parse: %s", block.body_line + 1, e)
            outcomes.append(BlockOutcome(block, error=e))
    return outcomes
