"""
Built-in `$` functions.

Functions are registered with @system_function and receive the
placeholder's arguments plus the resolution context:

    {{$guid}}
    {{$randomInt 1 100}}
    {{$timestamp -1 d}}
    {{$datetime iso8601 1 h}}
    {{$datetime "DD-MM-YYYY HH:mm" }}
    {{$localDatetime rfc1123}}
    {{$processEnv HOME}}
    {{$processEnv %envVarHoldingTheName}}
    {{$dotenv API_KEY}}
"""
from __future__ import annotations

import calendar
import re
import uuid
from datetime import datetime, timedelta, timezone, tzinfo
from email.utils import format_datetime
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from dotenv import dotenv_values

from restfile.errors import UnknownSystemFunctionArgument
from restfile.variables.providers import NotFound, ProviderKind, ResolutionContext
from restfile.variables.scanner import Placeholder

SystemFunction = Callable[[Sequence[str], ResolutionContext], Any]

_REGISTRY: dict[str, SystemFunction] = {}


def system_function(name: str) -> Callable[[SystemFunction], SystemFunction]:
    """
    Decorator to register a `$` function.

    Usage:
        @system_function("$guid")
        def guid(args, ctx):
            return str(uuid.UUID(int=ctx.rng.getrandbits(128), version=4))
    """
    def decorator(func: SystemFunction) -> SystemFunction:
        _REGISTRY[name] = func
        return func

    return decorator


def registered_functions() -> Mapping[str, SystemFunction]:
    return dict(_REGISTRY)


class SystemFunctionProvider:
    kind = ProviderKind.SYSTEM
    recursive = False

    def __init__(self, functions: Optional[Mapping[str, SystemFunction]] = None):
        self._functions = dict(functions if functions is not None else _REGISTRY)

    @property
    def names(self) -> list[str]:
        return sorted(self._functions)

    def can_resolve(self, placeholder: Placeholder, context: ResolutionContext) -> bool:
        return placeholder.name in self._functions

    def resolve(self, placeholder: Placeholder, context: ResolutionContext) -> Any:
        return self._functions[placeholder.name](placeholder.args, context)


# ----------------------------
# Date helpers
# ----------------------------

_UNITS = ("y", "M", "w", "d", "h", "m", "s", "ms")


def _to_int(function: str, raw: str, what: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise UnknownSystemFunctionArgument(function, f"{what} must be an integer, got {raw!r}") from None


def _add_months(dt: datetime, months: int) -> datetime:
    years, month0 = divmod(dt.month - 1 + months, 12)
    year = dt.year + years
    day = min(dt.day, calendar.monthrange(year, month0 + 1)[1])
    return dt.replace(year=year, month=month0 + 1, day=day)


def apply_offset(function: str, dt: datetime, args: Sequence[str]) -> datetime:
    """Apply an optional `offset unit` pair, e.g. `-3 d` or `1 M`."""
    if not args:
        return dt
    if len(args) != 2:
        raise UnknownSystemFunctionArgument(function, "offset must be given as '<number> <unit>'")
    amount = _to_int(function, args[0], "offset")
    unit = args[1]
    if unit == "y":
        return _add_months(dt, amount * 12)
    if unit == "M":
        return _add_months(dt, amount)
    deltas = {
        "w": timedelta(weeks=amount),
        "d": timedelta(days=amount),
        "h": timedelta(hours=amount),
        "m": timedelta(minutes=amount),
        "s": timedelta(seconds=amount),
        "ms": timedelta(milliseconds=amount),
    }
    if unit not in deltas:
        raise UnknownSystemFunctionArgument(function, f"unknown unit {unit!r}, expected one of {', '.join(_UNITS)}")
    return dt + deltas[unit]


_MONTHS = ("January", "February", "March", "April", "May", "June", "July",
           "August", "September", "October", "November", "December")
_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

_FORMAT_TOKEN_RE = re.compile(
    r"\[([^\]]*)\]|YYYY|YY|MMMM|MMM|MM|M|DD|D|dddd|ddd|HH|H|hh|h|mm|m|ss|s|SSS|A|a|ZZ|Z|X|x"
)


def _utc_offset(dt: datetime, sep: str) -> str:
    off = dt.utcoffset() or timedelta(0)
    sign = "-" if off < timedelta(0) else "+"
    minutes = abs(int(off.total_seconds())) // 60
    return f"{sign}{minutes // 60:02d}{sep}{minutes % 60:02d}"


def format_day_js(dt: datetime, fmt: str) -> str:
    """Format with Day.js-style tokens (YYYY-MM-DD HH:mm:ss.SSS Z); [text] is literal."""
    hour12 = dt.hour % 12 or 12
    values: dict[str, str] = {
        "YYYY": f"{dt.year:04d}",
        "YY": f"{dt.year % 100:02d}",
        "MMMM": _MONTHS[dt.month - 1],
        "MMM": _MONTHS[dt.month - 1][:3],
        "MM": f"{dt.month:02d}",
        "M": str(dt.month),
        "DD": f"{dt.day:02d}",
        "D": str(dt.day),
        "dddd": _WEEKDAYS[dt.weekday()],
        "ddd": _WEEKDAYS[dt.weekday()][:3],
        "HH": f"{dt.hour:02d}",
        "H": str(dt.hour),
        "hh": f"{hour12:02d}",
        "h": str(hour12),
        "mm": f"{dt.minute:02d}",
        "m": str(dt.minute),
        "ss": f"{dt.second:02d}",
        "s": str(dt.second),
        "SSS": f"{dt.microsecond // 1000:03d}",
        "A": "PM" if dt.hour >= 12 else "AM",
        "a": "pm" if dt.hour >= 12 else "am",
        "ZZ": _utc_offset(dt, ""),
        "Z": _utc_offset(dt, ":"),
        "X": str(int(dt.timestamp())),
        "x": str(int(dt.timestamp() * 1000)),
    }

    def sub(m: re.Match) -> str:
        if m.group(1) is not None:
            return m.group(1)
        return values[m.group(0)]

    return _FORMAT_TOKEN_RE.sub(sub, fmt)


def _format_datetime(dt: datetime, kind: str) -> str:
    is_utc = dt.utcoffset() == timedelta(0)
    if kind == "rfc1123":
        if is_utc:
            return format_datetime(dt.astimezone(timezone.utc), usegmt=True)
        return format_datetime(dt)
    if kind == "iso8601":
        if is_utc:
            return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
        return dt.isoformat(timespec="milliseconds")
    return format_day_js(dt, kind)


def _datetime(function: str, args: Sequence[str], ctx: ResolutionContext, tz: tzinfo) -> str:
    if not args:
        raise UnknownSystemFunctionArgument(function, "missing format (rfc1123, iso8601 or a custom format)")
    dt = apply_offset(function, ctx.clock().astimezone(tz), args[1:])
    return _format_datetime(dt, args[0])


# ----------------------------
# Built-ins
# ----------------------------

@system_function("$guid")
def _guid(args: Sequence[str], ctx: ResolutionContext) -> str:
    return str(uuid.UUID(int=ctx.rng.getrandbits(128), version=4))


@system_function("$randomInt")
def _random_int(args: Sequence[str], ctx: ResolutionContext) -> str:
    if len(args) != 2:
        raise UnknownSystemFunctionArgument("$randomInt", "expected '<min> <max>'")
    lo = _to_int("$randomInt", args[0], "min")
    hi = _to_int("$randomInt", args[1], "max")
    if hi < lo:
        raise UnknownSystemFunctionArgument("$randomInt", f"max ({hi}) is smaller than min ({lo})")
    if hi == lo:
        return str(lo)
    return str(ctx.rng.randrange(lo, hi))


@system_function("$timestamp")
def _timestamp(args: Sequence[str], ctx: ResolutionContext) -> str:
    dt = apply_offset("$timestamp", ctx.clock(), args)
    return str(int(dt.timestamp()))


@system_function("$datetime")
def _utc_datetime(args: Sequence[str], ctx: ResolutionContext) -> str:
    return _datetime("$datetime", args, ctx, timezone.utc)


@system_function("$localDatetime")
def _local_datetime(args: Sequence[str], ctx: ResolutionContext) -> str:
    tz = ctx.tzinfo or datetime.now().astimezone().tzinfo or timezone.utc
    return _datetime("$localDatetime", args, ctx, tz)


def _variable_name(function: str, args: Sequence[str], ctx: ResolutionContext) -> Tuple[str, Optional[NotFound]]:
    """`name` or `%name`; the latter reads the real name from the environment profile."""
    if len(args) != 1:
        raise UnknownSystemFunctionArgument(function, "expected exactly one variable name")
    name = args[0]
    if name.startswith("%"):
        indirect = name[1:]
        if indirect not in ctx.environment:
            return name, NotFound(f"environment variable '{indirect}' is not defined")
        name = str(ctx.environment[indirect])
    return name, None


@system_function("$processEnv")
def _process_env(args: Sequence[str], ctx: ResolutionContext) -> Any:
    name, missing = _variable_name("$processEnv", args, ctx)
    if missing is not None:
        return missing
    if name not in ctx.process_env:
        return NotFound(f"process environment variable '{name}' is not set")
    return ctx.process_env[name]


@system_function("$dotenv")
def _dotenv(args: Sequence[str], ctx: ResolutionContext) -> Any:
    name, missing = _variable_name("$dotenv", args, ctx)
    if missing is not None:
        return missing
    if not ctx.dotenv_path:
        return NotFound("no .env file next to the document")
    values = dotenv_values(ctx.dotenv_path)
    value = values.get(name)
    if value is None:
        return NotFound(f"'{name}' is not defined in {ctx.dotenv_path}")
    return value
