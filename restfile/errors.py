from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional, Sequence, Tuple


class RestFileError(Exception):
    """Base class for every error raised by restfile."""


class RequestSyntaxError(RestFileError, ValueError):
    """
    A block's text could not be turned into a request descriptor.

    Raised for a malformed request line or an unterminated curl quote.
    Fatal to the enclosing block only.
    """

    def __init__(self, message: str, *, line: Optional[int] = None):
        super().__init__(message)
        self.line = line

    def __str__(self) -> str:
        msg = super().__str__()
        if self.line is not None:
            return f"{msg} (line {self.line + 1})"
        return msg


class CircularVariableReference(RestFileError):
    def __init__(self, chain: Sequence[str]):
        self.chain: Tuple[str, ...] = tuple(chain)
        super().__init__("circular variable reference: " + " -> ".join(self.chain))


class RecursionDepthExceeded(RestFileError):
    def __init__(self, chain: Sequence[str], limit: int):
        self.chain: Tuple[str, ...] = tuple(chain)
        self.limit = limit
        super().__init__(
            f"variable nesting deeper than {limit}: " + " -> ".join(self.chain)
        )


class UnknownSystemFunctionArgument(RestFileError, ValueError):
    def __init__(self, function: str, message: str):
        self.function = function
        super().__init__(f"{function}: {message}")


# ----------------------------
# Structured diagnostics
# ----------------------------

class DiagnosticKind(str, Enum):
    UNRESOLVED_VARIABLE = "unresolved"
    CIRCULAR_REFERENCE = "circular"
    BAD_ARGUMENT = "bad-argument"
    RECURSION_DEPTH = "depth"
    UNRECOGNIZED_CURL_FLAG = "unrecognized-curl-flag"


Severity = Literal["warning", "error"]


@dataclass(frozen=True)
class Diagnostic:
    """
    Non-raising report attached to a parse or resolution result.

    `name` is the variable name or curl flag the diagnostic is about,
    `field` the descriptor field it was found in (url, header name, body).
    """
    name: str
    message: str = ""
    field: Optional[str] = None
    chain: Tuple[str, ...] = ()
    kind: DiagnosticKind = DiagnosticKind.UNRESOLVED_VARIABLE
    severity: Severity = "warning"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


@dataclass(frozen=True)
class UnresolvedVariableWarning(Diagnostic):
    kind: DiagnosticKind = DiagnosticKind.UNRESOLVED_VARIABLE

    @classmethod
    def create(cls, name: str, reason: str = "", *, field: Optional[str] = None) -> "UnresolvedVariableWarning":
        if reason:
            message = f"variable '{name}' could not be resolved: {reason}"
        else:
            message = f"variable '{name}' is not defined"
        return cls(name=name, message=message, field=field)


@dataclass(frozen=True)
class UnrecognizedCurlFlag(Diagnostic):
    kind: DiagnosticKind = DiagnosticKind.UNRECOGNIZED_CURL_FLAG

    @classmethod
    def create(cls, flag: str) -> "UnrecognizedCurlFlag":
        return cls(name=flag, message=f"curl flag '{flag}' is not supported and was ignored")


@dataclass(frozen=True)
class ResolutionError(Diagnostic):
    """Span-level failure; the placeholder's literal text was kept."""
    severity: Severity = "error"

    @classmethod
    def from_exception(cls, name: str, exc: RestFileError, *, field: Optional[str] = None) -> "ResolutionError":
        if isinstance(exc, CircularVariableReference):
            kind = DiagnosticKind.CIRCULAR_REFERENCE
            chain = exc.chain
        elif isinstance(exc, RecursionDepthExceeded):
            kind = DiagnosticKind.RECURSION_DEPTH
            chain = exc.chain
        elif isinstance(exc, UnknownSystemFunctionArgument):
            kind = DiagnosticKind.BAD_ARGUMENT
            chain = ()
        else:
            raise TypeError(f"no diagnostic mapping for {type(exc).__name__}")
        return cls(name=name, message=str(exc), field=field, chain=chain, kind=kind)
