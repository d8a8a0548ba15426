import random
from datetime import datetime, timezone

import pytest

import sys, os
target_path = os.path.abspath(os.path.join(os.path.dirname(os.path.abspath(__file__)), "../.."))
if target_path not in sys.path:
    sys.path.insert(0, target_path)

from restfile.settings import RestClientSettings
from restfile.variables import RequestVariableCache, build_context

# 2024-02-29T12:34:56.789Z, a Thursday
FIXED_NOW = datetime(2024, 2, 29, 12, 34, 56, 789000, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock(fixed_now):
    return lambda: fixed_now


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def settings() -> RestClientSettings:
    return RestClientSettings.from_mapping({
        "environmentVariables": {
            "$shared": {"version": "v1", "host": "shared.example.com"},
            "local": {"host": "localhost:8080", "token": "dev-token", "user": {"id": 7, "name": "ada"}},
            "prod": {"host": "api.example.com"},
        },
        "activeEnvironment": "local",
        "timezone": "Europe/Paris",
    })


@pytest.fixture
def cache() -> RequestVariableCache:
    return RequestVariableCache()


@pytest.fixture
def make_context(settings, clock, rng):
    """Context factory with a pinned clock, seeded rng and an empty process env by default."""
    def _make(**kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("rng", rng)
        kwargs.setdefault("process_env", {})
        return build_context(kwargs.pop("settings", settings), **kwargs)

    return _make
