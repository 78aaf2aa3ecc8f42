import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from chart_analyst import llm_client as llm_mod
from chart_analyst.config import Settings
from chart_analyst.errors import NoProviderConfiguredError, TransportError
from chart_analyst.llm_client import (
    DeepSeekAdapter,
    GeminiAdapter,
    OpenAIAdapter,
    ProxyAdapter,
    create_adapter,
    select_provider,
    unwrap_envelope,
)
from chart_analyst.prompt import build_request


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _request(provider="deepseek"):
    return build_request([{"a": 1}], provider)


# ---- envelope precedence ----

def test_choices_beats_text():
    body = json.dumps({"text": "from text", "choices": [{"message": {"content": "from choices"}}]})
    assert unwrap_envelope(body) == ("from choices", True)


def test_text_envelope():
    assert unwrap_envelope('{"text": "hello"}') == ("hello", True)


def test_plain_body_and_json_string_body():
    assert unwrap_envelope("just words {\"a\":1}") == ("just words {\"a\":1}", True)
    assert unwrap_envelope('"quoted"') == ("quoted", True)


def test_unknown_object_is_returned_raw_and_flagged():
    body = '{"error": {"message": "bad key"}}'
    assert unwrap_envelope(body) == (body, False)


def test_empty_choices_content_falls_back_to_text():
    body = json.dumps({"choices": [{"message": {"content": ""}}], "text": "t"})
    assert unwrap_envelope(body) == ("t", True)


# ---- HTTP adapters ----

def test_deepseek_sends_bearer_and_messages():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"analysis":"ok"}'}}]})

    async def run():
        async with _client(handler) as c:
            return await DeepSeekAdapter(api_key="sk-test", client=c).send(_request())

    out = asyncio.run(run())
    assert out.ok
    assert out.text == '{"analysis":"ok"}'
    assert seen["url"] == llm_mod.DEEPSEEK_URL
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "deepseek-chat"
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]


def test_openai_non_success_keeps_raw_body():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Incorrect API key"}})

    async def run():
        async with _client(handler) as c:
            return await OpenAIAdapter(api_key="bad", client=c).send(_request("openai"))

    out = asyncio.run(run())
    assert not out.ok
    assert out.status_code == 401
    assert "Incorrect API key" in out.text


def test_openai_body_is_deterministic():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

    async def run():
        async with _client(handler) as c:
            return await OpenAIAdapter(api_key="k", model="gpt-x", client=c).send(_request("openai"))

    assert asyncio.run(run()).ok
    assert seen["body"]["temperature"] == 0.0
    assert seen["body"]["model"] == "gpt-x"


def test_proxy_posts_messages_only():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"text": '{"charts": []}'})

    async def run():
        async with _client(handler) as c:
            return await ProxyAdapter(base_url="http://localhost:5001/", client=c).send(_request("proxy"))

    out = asyncio.run(run())
    assert out.ok and out.text == '{"charts": []}'
    assert seen["url"] == "http://localhost:5001/api/deepseek"
    assert set(seen["body"]) == {"messages"}


def test_proxy_plain_text_error():
    def handler(request):
        return httpx.Response(500, text="upstream exploded")

    async def run():
        async with _client(handler) as c:
            return await ProxyAdapter(base_url="http://proxy", client=c).send(_request("proxy"))

    out = asyncio.run(run())
    assert not out.ok
    assert out.text == "upstream exploded"


def test_network_failure_raises_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def run():
        async with _client(handler) as c:
            return await DeepSeekAdapter(api_key="k", client=c).send(_request())

    with pytest.raises(TransportError):
        asyncio.run(run())


# ---- Gemini (SDK) ----

class _FakeModels:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc:
            raise self.exc
        return self.response


def _patch_genai(monkeypatch, models):
    created = []

    def fake_client(api_key):
        assert api_key == "g-key"
        created.append(api_key)
        return SimpleNamespace(aio=SimpleNamespace(models=models))

    monkeypatch.setattr(llm_mod.genai, "Client", fake_client)
    monkeypatch.setattr(llm_mod, "_GENAI_CLIENTS", {})
    return created


def test_gemini_uses_text_property(monkeypatch):
    models = _FakeModels(response=SimpleNamespace(text='{"analysis":"g"}', candidates=[]))
    _patch_genai(monkeypatch, models)

    out = asyncio.run(GeminiAdapter(api_key="g-key").send(_request("gemini")))
    assert out.ok and out.text == '{"analysis":"g"}'
    call = models.calls[0]
    assert call["model"] == "gemini-2.5-flash"
    assert "Data:" in call["contents"]
    assert "JSON" in str(call["config"].system_instruction)


def test_gemini_falls_back_to_candidate_parts(monkeypatch):
    part = SimpleNamespace(text="{}")
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
    _patch_genai(monkeypatch, _FakeModels(response=SimpleNamespace(text=None, candidates=[candidate])))

    out = asyncio.run(GeminiAdapter(api_key="g-key").send(_request("gemini")))
    assert out.ok and out.text == "{}"


def test_gemini_empty_response_is_failed(monkeypatch):
    _patch_genai(monkeypatch, _FakeModels(response=SimpleNamespace(text=None, candidates=[])))

    out = asyncio.run(GeminiAdapter(api_key="g-key").send(_request("gemini")))
    assert not out.ok


def test_gemini_network_failure(monkeypatch):
    _patch_genai(monkeypatch, _FakeModels(exc=httpx.ConnectTimeout("timed out")))

    with pytest.raises(TransportError):
        asyncio.run(GeminiAdapter(api_key="g-key").send(_request("gemini")))


def test_gemini_unexpected_sdk_error_becomes_transport_error(monkeypatch):
    _patch_genai(monkeypatch, _FakeModels(exc=ValueError("sdk blew up")))

    with pytest.raises(TransportError) as exc:
        asyncio.run(GeminiAdapter(api_key="g-key").send(_request("gemini")))
    assert isinstance(exc.value.__cause__, ValueError)


def test_gemini_client_is_reused_across_calls(monkeypatch):
    models = _FakeModels(response=SimpleNamespace(text="{}", candidates=[]))
    created = _patch_genai(monkeypatch, models)

    async def run():
        await GeminiAdapter(api_key="g-key").send(_request("gemini"))
        await GeminiAdapter(api_key="g-key").send(_request("gemini"))

    asyncio.run(run())
    assert created == ["g-key"]
    assert len(models.calls) == 2


def test_bare_payload_body_is_kept_but_flagged():
    body = '{"analysis": "direct", "charts": []}'
    assert unwrap_envelope(body) == (body, False)


# ---- selection / factory ----

def test_priority_order():
    s = Settings(openai_api_key="o", gemini_api_key="g", deepseek_api_key="d", proxy_url="http://p")
    assert select_provider(s) == "deepseek"
    assert select_provider(Settings(gemini_api_key="g", proxy_url="http://p")) == "gemini"
    assert select_provider(Settings(proxy_url="http://p")) == "proxy"


def test_override_must_be_configured():
    s = Settings(deepseek_api_key="d", openai_api_key="o")
    assert select_provider(s, "openai") == "openai"
    assert select_provider(Settings(deepseek_api_key="d", provider="openai", openai_api_key="o")) == "openai"
    with pytest.raises(NoProviderConfiguredError):
        select_provider(s, "gemini")
    with pytest.raises(NoProviderConfiguredError):
        select_provider(s, "claude")


def test_nothing_configured():
    with pytest.raises(NoProviderConfiguredError):
        select_provider(Settings())


def test_factory_builds_matching_adapter():
    s = Settings(deepseek_api_key="d", openai_api_key="o", gemini_api_key="g", proxy_url="http://p")
    assert isinstance(create_adapter("deepseek", s), DeepSeekAdapter)
    assert isinstance(create_adapter("openai", s), OpenAIAdapter)
    assert isinstance(create_adapter("gemini", s), GeminiAdapter)
    assert isinstance(create_adapter("proxy", s), ProxyAdapter)
    with pytest.raises(NoProviderConfiguredError):
        create_adapter("openai", Settings())
