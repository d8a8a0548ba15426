"""
Variable providers.

A provider is anything with a `kind`, a `recursive` flag and the two
methods of `VariableProvider`. Providers do not share a base class; the
resolver walks an explicit, ordered list of them and the first provider
whose `can_resolve` accepts a placeholder gets to answer.
"""
from __future__ import annotations

import os
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable
from zoneinfo import ZoneInfo

from restfile.variables.cache import ResponseRecord
from restfile.variables.scanner import Placeholder


class ProviderKind(str, Enum):
    SYSTEM = "system"
    REQUEST_VARIABLE = "request"
    FILE = "file"
    ENVIRONMENT = "environment"
    PROCESS_ENV = "process-env"


@dataclass(frozen=True)
class NotFound:
    """A provider recognised the name but has no value for it right now."""
    reason: str = ""

    def __bool__(self) -> bool:
        return False


NOT_FOUND = NotFound()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResolutionContext:
    """
    Everything a provider may consult besides its own static data.

    `clock` and `rng` are injectable so `$guid`, `$randomInt` and unshifted
    `$timestamp` can be pinned in tests.
    """
    document_id: Optional[str] = None
    cache_snapshot: Mapping[str, ResponseRecord] = field(default_factory=dict)
    request_names: frozenset[str] = frozenset()
    environment: Mapping[str, Any] = field(default_factory=dict)
    process_env: Mapping[str, str] = field(default_factory=lambda: os.environ)
    dotenv_path: Optional[str] = None
    tzinfo: Optional[ZoneInfo] = None
    clock: Callable[[], datetime] = _utc_now
    rng: random.Random = field(default_factory=random.Random)
    max_recursion_depth: int = 10


@runtime_checkable
class VariableProvider(Protocol):
    kind: ProviderKind
    # Values from recursive providers are scanned again for placeholders
    recursive: bool

    def can_resolve(self, placeholder: Placeholder, context: ResolutionContext) -> bool: ...
    def resolve(self, placeholder: Placeholder, context: ResolutionContext) -> Any: ...


def walk_path(value: Any, path: Optional[str]) -> Any:
    """Follow a dotted path through nested mappings / lists."""
    if not path:
        return value
    current = value
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return NotFound(f"no property '{part}'")
    return current


# ----------------------------
# Static mapping providers
# ----------------------------

class FileVariableProvider:
    """`@name = value` declarations, prompt answers and script outputs of one document."""
    kind = ProviderKind.FILE
    recursive = True

    def __init__(self, variables: Optional[Mapping[str, Any]] = None, overrides: Optional[Mapping[str, Any]] = None):
        self._variables = dict(variables or {})
        self._variables.update(overrides or {})

    def can_resolve(self, placeholder: Placeholder, context: ResolutionContext) -> bool:
        return placeholder.name in self._variables

    def resolve(self, placeholder: Placeholder, context: ResolutionContext) -> Any:
        return walk_path(self._variables[placeholder.name], placeholder.path)


class EnvironmentProvider:
    """The active environment profile (already merged over `$shared`)."""
    kind = ProviderKind.ENVIRONMENT
    recursive = True

    def __init__(self, variables: Optional[Mapping[str, Any]] = None):
        self._variables = dict(variables or {})

    def can_resolve(self, placeholder: Placeholder, context: ResolutionContext) -> bool:
        return placeholder.name in self._variables

    def resolve(self, placeholder: Placeholder, context: ResolutionContext) -> Any:
        return walk_path(self._variables[placeholder.name], placeholder.path)


class ProcessEnvProvider:
    kind = ProviderKind.PROCESS_ENV
    recursive = False

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    def _env(self, context: ResolutionContext) -> Mapping[str, str]:
        return self._environ if self._environ is not None else context.process_env

    def can_resolve(self, placeholder: Placeholder, context: ResolutionContext) -> bool:
        return placeholder.name in self._env(context)

    def resolve(self, placeholder: Placeholder, context: ResolutionContext) -> Any:
        if placeholder.path:
            return NotFound(f"process environment variable '{placeholder.name}' has no properties")
        return self._env(context)[placeholder.name]
