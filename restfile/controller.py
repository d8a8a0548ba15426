"""
Request controller: select -> parse -> (pre-request script) -> resolve ->
send -> cache -> (test script).

The controller is the only writer of the request-variable cache. It keeps
the last prepared request around for `rerun()` and exposes `cancel()` for
the request in flight; a cancelled request's response is dropped and never
cached.
"""
from __future__ import annotations

import inspect
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Tuple, Union

import httpx

from restfile.document.selector import RequestBlock, RequestMetadata, select_at, select_range
from restfile.errors import Diagnostic
from restfile.parsing.factory import parse_block
from restfile.parsing.models import RequestDescriptor
from restfile.pipeline import PreparedRequest, prepare_request
from restfile.settings import RestClientSettings
from restfile.transport import build_httpx_request, record_response
from restfile.variables.cache import RequestVariableCache, ResponseRecord

log = logging.getLogger(__name__)

Confirm = Callable[[str], Union[bool, Awaitable[bool]]]


class ScriptRunner(Protocol):
    """
    Sandbox for `< {% %}` and `> {% %}` scripts.

    `run_pre_request` returns variables that shadow file variables for this
    request; `run_tests` returns whatever the sandbox reports.
    """
    async def run_pre_request(self, script: str, descriptor: RequestDescriptor) -> Mapping[str, Any]: ...
    async def run_tests(self, script: str, response: ResponseRecord) -> Any: ...


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class PendingRequest:
    descriptor: RequestDescriptor
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class RunReport:
    descriptor: RequestDescriptor
    diagnostics: Tuple[Diagnostic, ...] = ()
    response: Optional[ResponseRecord] = None
    elapsed_ms: int = 0
    cancelled: bool = False
    error: Optional[str] = None
    test_results: Any = None

    @property
    def ok(self) -> bool:
        return self.response is not None and self.error is None and not self.cancelled


@dataclass
class _LastRun:
    text: str
    block: RequestBlock
    document_id: str
    base_dir: Optional[Path]
    prompt_values: Mapping[str, Any] = field(default_factory=dict)


class RequestController:
    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Optional[RestClientSettings] = None,
        cache: Optional[RequestVariableCache] = None,
        *,
        confirm: Optional[Confirm] = None,
        script_runner: Optional[ScriptRunner] = None,
        environ: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.settings = settings or RestClientSettings()
        self.cache = cache if cache is not None else RequestVariableCache()
        self.confirm = confirm
        self.script_runner = script_runner
        self.environ = environ
        self.dotenv_path = dotenv_path
        self.clock = clock
        self.rng = rng
        self.pending: Optional[PendingRequest] = None
        self._last: Optional[_LastRun] = None

    # ----------------------------
    # Public API
    # ----------------------------

    async def run(
        self,
        text: str,
        document_id: str,
        offset: int = 0,
        *,
        selection_end: Optional[int] = None,
        base_dir: Optional[Union[str, Path]] = None,
        prompt_values: Optional[Mapping[str, Any]] = None,
    ) -> Optional[RunReport]:
        """
        Send the request under `offset` (or the one starting inside
        `offset..selection_end`).

        Returns None when there is no request there or `@note` confirmation
        was refused. Raises RequestSyntaxError when the block does not parse.
        """
        if selection_end is not None:
            block = select_range(text, offset, selection_end)
        else:
            block = select_at(text, offset)
        if block is None:
            log.debug("no request at offset %d of %s", offset, document_id)
            return None

        last = _LastRun(
            text=text,
            block=block,
            document_id=str(document_id),
            base_dir=Path(base_dir) if base_dir is not None else None,
            prompt_values=dict(prompt_values or {}),
        )
        report = await self._run_block(last)
        if report is not None:
            self._last = last
        return report

    async def rerun(self) -> Optional[RunReport]:
        """Prepare and send the last request again against the current cache."""
        if self._last is None:
            return None
        return await self._run_block(self._last)

    def cancel(self) -> None:
        if self.pending is not None:
            log.info("cancelling %s %s", self.pending.descriptor.method, self.pending.descriptor.url)
            self.pending.cancel()

    # ----------------------------
    # Internals
    # ----------------------------

    async def _confirmed(self, block: RequestBlock) -> bool:
        if RequestMetadata.NOTE not in block.metadata:
            return True
        if self.confirm is None:
            log.info("request %r needs confirmation and no confirm callback is set", block.name or block.first_line)
            return False
        return bool(await _maybe_await(self.confirm(block.first_line)))

    async def _prepare(self, last: _LastRun) -> PreparedRequest:
        parsed = parse_block(last.block, self.settings)
        overrides = dict(last.prompt_values)

        if parsed.descriptor.pre_request_script and self.script_runner is not None:
            produced = await self.script_runner.run_pre_request(parsed.descriptor.pre_request_script, parsed.descriptor)
            overrides.update(produced or {})

        return prepare_request(
            last.text,
            last.block,
            settings=self.settings,
            cache=self.cache,
            document_id=last.document_id,
            overrides=overrides,
            environ=self.environ,
            dotenv_path=self.dotenv_path,
            clock=self.clock,
            rng=self.rng,
            parsed=parsed,
        )

    async def _run_block(self, last: _LastRun) -> Optional[RunReport]:
        if not await self._confirmed(last.block):
            return None

        prepared = await self._prepare(last)
        descriptor = prepared.descriptor
        diagnostics = prepared.diagnostics

        if not prepared.resolution.ok:
            errors = "; ".join(d.message for d in prepared.resolution.errors)
            log.info("not sending %s %s: %s", descriptor.method, descriptor.url, errors)
            return RunReport(descriptor, diagnostics, error=errors)

        pending = PendingRequest(descriptor)
        self.pending = pending

        t0 = time.time()
        try:
            request = build_httpx_request(
                descriptor,
                self.client,
                base_dir=last.base_dir,
                expand=prepared.expand_text,
                timeout_s=self.settings.timeout_s,
            )
            log.info("sending %s %s", descriptor.method, descriptor.url)
            resp = await self.client.send(request, follow_redirects=descriptor.follow_redirects)
        except (httpx.HTTPError, OSError) as e:
            elapsed_ms = int((time.time() - t0) * 1000)
            return RunReport(
                descriptor,
                diagnostics,
                elapsed_ms=elapsed_ms,
                error=f"Request error: {type(e).__name__}: {e}",
            )
        finally:
            if self.pending is pending:
                self.pending = None

        elapsed_ms = int((time.time() - t0) * 1000)

        if pending.cancelled:
            log.info("dropping response of cancelled request %s %s", descriptor.method, descriptor.url)
            return RunReport(descriptor, diagnostics, elapsed_ms=elapsed_ms, cancelled=True)

        record = record_response(resp, elapsed_ms=elapsed_ms)
        if descriptor.name:
            self.cache.add(last.document_id, descriptor.name, record)
            log.info("stored response of %r (%d)", descriptor.name, record.status_code)

        test_results = None
        if descriptor.test_script and self.script_runner is not None:
            test_results = await self.script_runner.run_tests(descriptor.test_script, record)

        return RunReport(
            descriptor,
            diagnostics,
            response=record,
            elapsed_ms=elapsed_ms,
            test_results=test_results,
        )
