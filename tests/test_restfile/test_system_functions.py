import random
import re
import uuid

import pytest

from restfile.errors import UnknownSystemFunctionArgument
from restfile.variables import NotFound, SystemFunctionProvider, parse_expression, registered_functions, system_function
from restfile.variables.system import apply_offset, format_day_js


def call(expr, ctx):
    ph = parse_expression(expr)
    return SystemFunctionProvider().resolve(ph, ctx)


def test_builtins_are_registered():
    assert {"$guid", "$randomInt", "$timestamp", "$datetime", "$localDatetime", "$processEnv", "$dotenv"} <= set(registered_functions())


def test_guid_is_uuid4_and_distinct(make_context):
    ctx = make_context()
    a, b = call("$guid", ctx), call("$guid", ctx)
    assert a != b
    assert uuid.UUID(a).version == 4


def test_guid_is_reproducible_with_a_seeded_rng(make_context):
    a = call("$guid", make_context(rng=random.Random(7)))
    b = call("$guid", make_context(rng=random.Random(7)))
    assert a == b


def test_random_int_range(make_context):
    ctx = make_context()
    values = {int(call("$randomInt 5 8", ctx)) for _ in range(200)}
    assert values <= {5, 6, 7}
    assert call("$randomInt 3 3", ctx) == "3"


@pytest.mark.parametrize("expr", ["$randomInt", "$randomInt a 5", "$randomInt 9 1", "$timestamp 1", "$timestamp 1 fortnight", "$datetime"])
def test_bad_arguments(make_context, expr):
    with pytest.raises(UnknownSystemFunctionArgument):
        call(expr, make_context())


def test_timestamp_with_pinned_clock(make_context, fixed_now):
    ctx = make_context()
    assert call("$timestamp", ctx) == str(int(fixed_now.timestamp()))
    assert call("$timestamp", ctx) == call("$timestamp", ctx)
    assert int(call("$timestamp -1 d", ctx)) == int(fixed_now.timestamp()) - 86400


def test_datetime_formats(make_context):
    ctx = make_context()
    assert call("$datetime iso8601", ctx) == "2024-02-29T12:34:56.789Z"
    assert call("$datetime rfc1123", ctx) == "Thu, 29 Feb 2024 12:34:56 GMT"
    assert call("$datetime 'YYYY-MM-DD HH:mm:ss' 1 h", ctx) == "2024-02-29 13:34:56"
    # leap day plus one year clamps to the end of February
    assert call("$datetime 'YYYY-MM-DD' 1 y", ctx) == "2025-02-28"


def test_local_datetime_uses_configured_timezone(make_context):
    ctx = make_context()
    assert call("$localDatetime 'YYYY-MM-DD HH:mm Z'", ctx) == "2024-02-29 13:34 +01:00"
    assert call("$localDatetime iso8601", ctx) == "2024-02-29T13:34:56.789+01:00"


def test_format_day_js_tokens_and_literals(fixed_now):
    assert format_day_js(fixed_now, "ddd, D MMM YY [at] h:mm A") == "Thu, 29 Feb 24 at 12:34 PM"
    assert format_day_js(fixed_now, "x") == str(int(fixed_now.timestamp() * 1000))


def test_apply_offset_months(fixed_now):
    assert apply_offset("$datetime", fixed_now, ["-1", "M"]).day == 29
    assert apply_offset("$datetime", fixed_now, ["1", "M"]).month == 3
    assert apply_offset("$datetime", fixed_now, ["250", "ms"]).microsecond == 39000


def test_process_env(make_context):
    ctx = make_context(process_env={"HOME": "/home/ada", "PROD_KEY": "k-1"})
    assert call("$processEnv HOME", ctx) == "/home/ada"

    missing = call("$processEnv NOPE", ctx)
    assert isinstance(missing, NotFound)
    assert "NOPE" in missing.reason


def test_process_env_indirection_through_environment(make_context, settings):
    env_settings = settings.model_copy(update={
        "environment_variables": {"local": {"keyName": "PROD_KEY"}},
    })
    ctx = make_context(settings=env_settings, process_env={"PROD_KEY": "k-1"})
    assert call("$processEnv %keyName", ctx) == "k-1"
    assert isinstance(call("$processEnv %unknown", ctx), NotFound)


def test_dotenv(make_context, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("API_KEY=from-dotenv\n", encoding="utf-8")

    ctx = make_context(dotenv_path=str(env_file))
    assert call("$dotenv API_KEY", ctx) == "from-dotenv"
    assert isinstance(call("$dotenv OTHER", ctx), NotFound)
    assert isinstance(call("$dotenv API_KEY", make_context()), NotFound)


def test_custom_function_registration(make_context):
    @system_function("$testEcho")
    def _echo(args, ctx):
        return "-".join(args)

    try:
        assert call("$testEcho a b", make_context()) == "a-b"
    finally:
        from restfile.variables import system
        system._REGISTRY.pop("$testEcho", None)


def test_provider_with_explicit_functions(make_context):
    provider = SystemFunctionProvider({"$one": lambda args, ctx: 1})
    assert provider.names == ["$one"]
    assert not provider.can_resolve(parse_expression("$guid"), make_context())
    assert re.fullmatch(r"\d+", str(provider.resolve(parse_expression("$one"), make_context())))
