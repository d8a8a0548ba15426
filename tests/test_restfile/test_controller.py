import json

import httpx
import pytest

from restfile.controller import RequestController
from restfile.document.selector import split

DOC = r"""@baseUrl = https://api.example.com

# @name login
POST {{baseUrl}}/login
Content-Type: application/json

{"user": "ada"}

###
# @name profile
GET {{baseUrl}}/me
Authorization: Bearer {{login.response.body.$.token}}

### danger
# @note
DELETE {{baseUrl}}/everything

###
# @no-redirect
GET {{baseUrl}}/old

###
GET {{baseUrl}}/{{a}}
"""


def offset_of(text):
    return DOC.index(text)


def make_handler(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path == "/login":
            return httpx.Response(200, json={"token": f"t-{len(calls)}"})
        if request.url.path == "/me":
            return httpx.Response(200, json={"auth": request.headers.get("authorization")})
        if request.url.path == "/old":
            return httpx.Response(302, headers={"Location": "https://api.example.com/new"})
        return httpx.Response(200, text="ok")

    return handler


@pytest.fixture
def calls():
    return []


@pytest.fixture
def client(calls):
    return httpx.AsyncClient(transport=httpx.MockTransport(make_handler(calls)))


@pytest.mark.asyncio
async def test_named_response_feeds_later_request(client, calls, settings, cache):
    controller = RequestController(client, settings, cache, environ={})

    login = await controller.run(DOC, "doc-1", offset_of("POST"))
    assert login.ok
    assert login.response.status_code == 200
    assert json.loads(calls[0].content) == {"user": "ada"}
    assert cache.get("doc-1", "login") is login.response

    profile = await controller.run(DOC, "doc-1", offset_of("GET {{baseUrl}}/me"))
    assert profile.ok
    assert profile.diagnostics == ()
    assert calls[1].headers["authorization"] == "Bearer t-1"
    assert json.loads(profile.response.body) == {"auth": "Bearer t-1"}


@pytest.mark.asyncio
async def test_unsent_dependency_is_a_warning_not_an_error(client, calls, settings, cache):
    controller = RequestController(client, settings, cache, environ={})
    report = await controller.run(DOC, "doc-1", offset_of("GET {{baseUrl}}/me"))

    assert report.ok
    assert calls[0].headers["authorization"] == "Bearer {{login.response.body.$.token}}"
    assert [w.name for w in report.diagnostics] == ["login.response.body.$.token"]


@pytest.mark.asyncio
async def test_cache_is_per_document(client, settings, cache):
    controller = RequestController(client, settings, cache, environ={})
    await controller.run(DOC, "doc-1", offset_of("POST"))

    other = await controller.run(DOC, "doc-2", offset_of("GET {{baseUrl}}/me"))
    assert other.diagnostics[0].name == "login.response.body.$.token"


@pytest.mark.asyncio
async def test_rerun_uses_current_cache(client, calls, settings, cache):
    controller = RequestController(client, settings, cache, environ={})
    assert await controller.rerun() is None

    await controller.run(DOC, "doc-1", offset_of("POST"))
    await controller.run(DOC, "doc-1", offset_of("GET {{baseUrl}}/me"))
    await controller.run(DOC, "doc-1", offset_of("POST"))
    assert json.loads(cache.get("doc-1", "login").body) == {"token": "t-3"}

    again = await controller.rerun()
    assert again.response.request.url == "https://api.example.com/login"
    assert len(calls) == 4


@pytest.mark.asyncio
async def test_note_requires_confirmation(client, calls, settings):
    refused = RequestController(client, settings, environ={}, confirm=lambda text: False)
    assert await refused.run(DOC, "doc-1", offset_of("DELETE")) is None

    unattended = RequestController(client, settings, environ={})
    assert await unattended.run(DOC, "doc-1", offset_of("DELETE")) is None
    assert calls == []

    seen = []

    async def confirm(text):
        seen.append(text)
        return True

    accepted = RequestController(client, settings, environ={}, confirm=confirm)
    report = await accepted.run(DOC, "doc-1", offset_of("DELETE"))
    assert report.ok
    assert seen == ["DELETE {{baseUrl}}/everything"]
    assert calls[0].method == "DELETE"


@pytest.mark.asyncio
async def test_no_redirect_metadata(client, calls, settings):
    controller = RequestController(client, settings, environ={})
    report = await controller.run(DOC, "doc-1", offset_of("GET {{baseUrl}}/old"))
    assert report.response.status_code == 302
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_redirects_followed_by_default(client, calls, settings):
    doc = "GET https://api.example.com/old\n"
    controller = RequestController(client, settings, environ={})
    report = await controller.run(doc, "doc-1")
    assert report.response.status_code == 200
    assert [c.url.path for c in calls] == ["/old", "/new"]


@pytest.mark.asyncio
async def test_resolution_errors_block_the_send(client, calls, settings):
    doc = "@a = {{b}}\n@b = {{a}}\n" + DOC
    controller = RequestController(client, settings, environ={})
    report = await controller.run(doc, "doc-1", doc.index("GET {{baseUrl}}/{{a}}"))

    assert report.response is None
    assert not report.ok
    assert "circular variable reference" in report.error
    assert calls == []


@pytest.mark.asyncio
async def test_transport_errors_are_reported(settings, cache):
    def failing(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(failing))
    controller = RequestController(client, settings, cache, environ={})
    report = await controller.run(DOC, "doc-1", offset_of("POST"))

    assert not report.ok
    assert report.error.startswith("Request error: ConnectError")
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_cancelled_response_is_dropped(settings, cache):
    holder = {}

    def handler(request):
        holder["controller"].cancel()
        return httpx.Response(200, json={"token": "late"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    controller = RequestController(client, settings, cache, environ={})
    holder["controller"] = controller

    report = await controller.run(DOC, "doc-1", offset_of("POST"))
    assert report.cancelled
    assert report.response is None
    assert cache.get("doc-1", "login") is None
    assert controller.pending is None


@pytest.mark.asyncio
async def test_no_request_at_offset(client, settings):
    controller = RequestController(client, settings, environ={})
    assert await controller.run("# nothing here\n", "doc-1") is None


@pytest.mark.asyncio
async def test_selection_run_and_prompt_values(client, calls, settings):
    doc = "# @prompt otp\nGET https://api.example.com/verify?otp={{otp}}\n"
    controller = RequestController(client, settings, environ={})
    report = await controller.run(doc, "doc-1", 0, selection_end=len(doc), prompt_values={"otp": "42"})

    assert report.ok
    assert str(calls[0].url) == "https://api.example.com/verify?otp=42"


class FakeScripts:
    def __init__(self):
        self.tested = []

    async def run_pre_request(self, script, descriptor):
        assert descriptor.url == "https://api.example.com/sign?n={{nonce}}"
        return {"nonce": "n-1"}

    async def run_tests(self, script, response):
        self.tested.append((script, response.status_code))
        return {"passed": 1}


@pytest.mark.asyncio
async def test_script_runner_outputs_and_tests(client, calls, settings):
    doc = (
        "< {% request.variables.set('nonce', 'n-1') %}\n"
        "GET https://api.example.com/sign?n={{nonce}}\n"
        "\n"
        "> {% client.test('ok', () => true) %}\n"
    )
    scripts = FakeScripts()
    controller = RequestController(client, settings, environ={}, script_runner=scripts)
    report = await controller.run(doc, "doc-1")

    assert str(calls[0].url) == "https://api.example.com/sign?n=n-1"
    assert scripts.tested == [("client.test('ok', () => true)", 200)]
    assert report.test_results == {"passed": 1}


@pytest.mark.asyncio
async def test_file_body_is_read_from_base_dir(client, calls, settings, tmp_path):
    (tmp_path / "payload.json").write_text('{"host": "{{host}}"}', encoding="utf-8")
    doc = "POST https://api.example.com/files\nContent-Type: application/json\n\n<@ ./payload.json\n"
    controller = RequestController(client, settings, environ={})
    report = await controller.run(doc, "doc-1", base_dir=tmp_path)

    assert report.ok
    assert calls[0].content == b'{"host": "localhost:8080"}'


def test_blocks_in_fixture_document():
    assert [b.name for b in split(DOC)] == ["login", "profile", "danger", None, None]
