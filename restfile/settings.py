from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

SHARED_ENVIRONMENT = "$shared"
ACTIVE_ENVIRONMENT_ENV = "RESTFILE_ENVIRONMENT"


class RestClientSettings(BaseModel):
    """
    Read-only configuration consumed by parsing and resolution.

    Accepts the camelCase keys of a REST-client settings file:

        {
          "environmentVariables": {
            "$shared": {"version": "v1"},
            "local": {"host": "localhost:8080", "token": "dev"},
            "prod": {"host": "api.example.com"}
          },
          "activeEnvironment": "local",
          "defaultHeaders": {"User-Agent": "restfile"}
        }
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    environment_variables: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="environmentVariables")
    active_environment: Optional[str] = Field(None, alias="activeEnvironment")
    default_headers: dict[str, str] = Field(default_factory=dict, alias="defaultHeaders")

    timezone: Optional[str] = None
    max_recursion_depth: int = Field(10, alias="maxRecursionDepth", ge=1)

    follow_redirect: bool = Field(True, alias="followRedirect")
    remember_cookies: bool = Field(True, alias="rememberCookiesForSubsequentRequests")
    timeout_ms: int = Field(0, alias="timeoutInMilliseconds", ge=0)
    curl_shell_variables: bool = Field(False, alias="curlShellVariables")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.timezone) if self.timezone else None

    @property
    def timeout_s(self) -> Optional[float]:
        return self.timeout_ms / 1000 if self.timeout_ms else None

    def environment_for(self, name: Optional[str] = None) -> dict[str, Any]:
        """Variables of profile `name` (default: the active one) layered over `$shared`."""
        name = name if name is not None else self.active_environment
        merged = dict(self.environment_variables.get(SHARED_ENVIRONMENT, {}))
        if name and name != SHARED_ENVIRONMENT:
            merged.update(self.environment_variables.get(name, {}))
        return merged

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RestClientSettings":
        return cls.model_validate(dict(data))

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        *,
        auto_dotenv: bool = False,
        dotenv_path: Optional[str] = None,
        dotenv_override: bool = False,
    ) -> "RestClientSettings":
        """
        Load settings from a JSON file.

        RESTFILE_ENVIRONMENT (from the process, or a .env file when
        auto_dotenv is set) overrides the active environment.
        """
        if auto_dotenv:
            load_dotenv(dotenv_path=dotenv_path, override=dotenv_override)

        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path}: settings file must contain a JSON object")

        override = os.environ.get(ACTIVE_ENVIRONMENT_ENV)
        if override:
            data["activeEnvironment"] = override
        return cls.model_validate(data)
