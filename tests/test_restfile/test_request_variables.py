import pytest

from restfile.parsing import Headers
from restfile.variables import NotFound, RequestRecord, RequestVariableProvider, ResponseRecord, evaluate_json_path, parse_expression

LOGIN_BODY = r"""{
  "token": "abc",
  "items": [{"id": 1}, {"id": 2}, {"id": 3}],
  "weird key": {"nested": true}
}"""

FEED_BODY = r"""<feed>
  <entry><title>first</title></entry>
  <entry><title>second</title><tags><tag>x</tag></tags></entry>
</feed>"""


def _record(body, content_type="application/json", request_body=None):
    return ResponseRecord(
        status_code=200,
        headers=Headers([("Content-Type", content_type), ("X-Request-Id", "r-1")]),
        body=body,
        request=RequestRecord(
            method="POST",
            url="https://example.com/login",
            headers=Headers([("X-Trace", "t-9")]),
            body=request_body,
        ),
    )


@pytest.fixture
def ctx(make_context):
    return make_context(
        cache_snapshot={
            "login": _record(LOGIN_BODY, request_body='{"user": "ada"}'),
            "feed": _record(FEED_BODY, content_type="application/xml"),
            "empty": _record(""),
        },
        request_names=["login", "feed", "empty", "later"],
    )


def lookup(expr, ctx):
    return RequestVariableProvider().resolve(parse_expression(expr), ctx)


@pytest.mark.parametrize("expr, expected", [
    ("login.response.body.$.token", "abc"),
    ("login.response.body.$.items[1].id", 2),
    ("login.response.body.$.items[-1].id", 3),
    ("login.response.body.$.items[*].id", 1),
    ("login.response.body.$['weird key'].nested", True),
    ("login.response.body.$.items", [{"id": 1}, {"id": 2}, {"id": 3}]),
    ("login.response.headers.x-request-id", "r-1"),
    ("login.request.headers.X-Trace", "t-9"),
    ("login.request.body.*", '{"user": "ada"}'),
    ("login.request.body.$.user", "ada"),
    ("feed.response.body./feed/entry/title", "first"),
    ("feed.response.body.//title", "first"),
])
def test_lookups(ctx, expr, expected):
    assert lookup(expr, ctx) == expected


def test_whole_body(ctx):
    assert lookup("login.response.body.*", ctx) == LOGIN_BODY


def test_xml_element_with_children_is_serialized(ctx):
    assert lookup("feed.response.body./feed/entry/tags", ctx) == "<tags><tag>x</tag></tags>"


@pytest.mark.parametrize("expr, reason", [
    ("later.response.body.$.token", "has not been sent yet"),
    ("empty.response.body.*", "body is empty"),
    ("login.response.body.$.missing", "matched nothing"),
    ("login.response.headers.X-Nope", "not found"),
    ("login.response.status", "not a request variable reference"),
    ("login.response.body", "missing the body path"),
    ("login.response.body.$..token", "unsupported JSONPath"),
    ("feed.response.body.$.x", "not valid JSON"),
    ("login.response.body./feed", "not valid XML"),
    ("feed.response.body./rss/item", "XML root is <feed>"),
])
def test_not_found_reasons(ctx, expr, reason):
    value = lookup(expr, ctx)
    assert isinstance(value, NotFound)
    assert reason in value.reason


def test_can_resolve_named_or_cached(ctx):
    provider = RequestVariableProvider()
    assert provider.can_resolve(parse_expression("later.response.body.*"), ctx)
    assert provider.can_resolve(parse_expression("login.request.headers.X-Trace"), ctx)
    assert not provider.can_resolve(parse_expression("baseUrl.response.body.*"), ctx)


@pytest.mark.parametrize("expr", ["login", "login.token", "login.body.$.x"])
def test_bare_request_name_is_left_to_other_providers(ctx, expr):
    assert not RequestVariableProvider().can_resolve(parse_expression(expr), ctx)


def test_json_path_subset():
    doc = {"a": [{"b": 1}, {"b": 2}]}
    assert evaluate_json_path(doc, "$") == [doc]
    assert evaluate_json_path(doc, "$.a[*].b") == [1, 2]
    assert evaluate_json_path(doc, "$.a.*.b") == [1, 2]
    assert evaluate_json_path(doc, '$["a"][0]') == [{"b": 1}]
    assert evaluate_json_path(doc, "$.a[5]") == []
    with pytest.raises(ValueError):
        evaluate_json_path(doc, "a.b")
    with pytest.raises(ValueError):
        evaluate_json_path(doc, "$.a[?(@.b)]")
