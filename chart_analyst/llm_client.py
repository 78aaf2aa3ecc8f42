"""
Provider adapters: one class per LLM provider, same tiny interface.

Rationale:
- Every adapter exposes `async send(request) -> RawProviderResponse`.
- Provider envelopes differ; `unwrap_envelope` collapses them to one text string
  with a fixed precedence: choices[0].message.content > text > raw body.
- HTTP failures and unrecognised envelopes come back as ok=False with the raw
  text kept for diagnosis. Only genuine I/O failures raise (TransportError).
- No retries / no fallback to another provider.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

import httpx

try:
    from google import genai
    from google.genai import errors as genai_errors
    from google.genai import types
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "Missing dependency for Gemini client. Install 'google-genai'. "
        "Original import error: " + str(e)
    )

from .config import PROVIDER_PRIORITY, Settings
from .errors import NoProviderConfiguredError, TransportError
from .schemas import ProviderRequest, RawProviderResponse

logger = logging.getLogger(__name__)

DEEPSEEK_URL = "https://api.deepseek.com/chat/completions"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
PROXY_PATH = "/api/deepseek"


class ProviderAdapter(Protocol):
    name: str

    async def send(self, request: ProviderRequest) -> RawProviderResponse:
        ...


def _choices_content(data: Dict[str, Any]) -> Any:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        return None
    return message.get("content")


def unwrap_envelope(body: str) -> Tuple[str, bool]:
    """
    Collapse a provider response body into (text, recognised).

    Shapes: {"choices": [{"message": {"content": ...}}]}, {"text": ...}, or a
    plain string body. A JSON object matching neither (for example an error
    object, or a bare {"analysis": ...} the model wrote straight into the body)
    is still returned verbatim as the raw-body fallback, but with
    recognised=False: the adapters treat that as a failed response rather than
    passing an unknown envelope on as a success.
    """
    try:
        data = json.loads(body)
    except ValueError:
        return body, True

    if isinstance(data, str):
        return data, True
    if not isinstance(data, dict):
        return body, True

    content = _choices_content(data)
    if content:
        return (content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)), True

    text = data.get("text")
    if text:
        return (text if isinstance(text, str) else json.dumps(text, ensure_ascii=False)), True

    return body, False


async def _post_json(
    provider: str,
    url: str,
    payload: Dict[str, Any],
    headers: Dict[str, str],
    client: Optional[httpx.AsyncClient],
    timeout: float,
) -> RawProviderResponse:
    async def _do(c: httpx.AsyncClient) -> httpx.Response:
        return await c.post(url, json=payload, headers=headers)

    try:
        if client is not None:
            resp = await _do(client)
        else:
            async with httpx.AsyncClient(timeout=timeout) as c:
                resp = await _do(c)
    except httpx.HTTPError as e:
        logger.error("llm.transport_error provider=%s err=%s", provider, type(e).__name__)
        raise TransportError(f"{provider} request failed: {type(e).__name__}: {e}") from e

    body = resp.text
    if not resp.is_success:
        logger.warning("llm.http_error provider=%s status=%d body=%s", provider, resp.status_code, body[:300])
        return RawProviderResponse(text=body, ok=False, status_code=resp.status_code)

    text, recognised = unwrap_envelope(body)
    if not recognised:
        logger.warning("llm.unrecognised_envelope provider=%s body=%s", provider, body[:300])
    logger.debug("llm.response provider=%s status=%d chars=%d", provider, resp.status_code, len(text))
    return RawProviderResponse(text=text, ok=recognised, status_code=resp.status_code)


@dataclass
class DeepSeekAdapter:
    api_key: str
    model: str = "deepseek-chat"
    timeout: float = 60.0
    client: Optional[httpx.AsyncClient] = None
    name: str = "deepseek"

    async def send(self, request: ProviderRequest) -> RawProviderResponse:
        return await _post_json(
            self.name,
            DEEPSEEK_URL,
            {"model": self.model, "messages": [m.as_dict() for m in request.messages]},
            {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
            self.client,
            self.timeout,
        )


@dataclass
class OpenAIAdapter:
    api_key: str
    model: str = "gpt-4o-mini"
    timeout: float = 60.0
    client: Optional[httpx.AsyncClient] = None
    name: str = "openai"

    async def send(self, request: ProviderRequest) -> RawProviderResponse:
        return await _post_json(
            self.name,
            OPENAI_URL,
            {
                "model": self.model,
                "temperature": 0.0,
                "messages": [m.as_dict() for m in request.messages],
            },
            {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
            self.client,
            self.timeout,
        )


@dataclass
class ProxyAdapter:
    """Local intermediary: POST {base_url}/api/deepseek with {messages} -> {text}."""

    base_url: str
    timeout: float = 60.0
    client: Optional[httpx.AsyncClient] = None
    name: str = "proxy"

    async def send(self, request: ProviderRequest) -> RawProviderResponse:
        return await _post_json(
            self.name,
            self.base_url.rstrip("/") + PROXY_PATH,
            {"messages": [m.as_dict() for m in request.messages]},
            {"Content-Type": "application/json"},
            self.client,
            self.timeout,
        )


# One SDK client per API key for the life of the process; it owns a pooled transport.
_GENAI_CLIENTS: Dict[str, Any] = {}


def _genai_client(api_key: str) -> Any:
    client = _GENAI_CLIENTS.get(api_key)
    if client is None:
        client = genai.Client(api_key=api_key)
        _GENAI_CLIENTS[api_key] = client
    return client


@dataclass
class GeminiAdapter:
    api_key: str
    model: str = "gemini-2.5-flash"
    max_tokens: int = 4096
    temperature: float = 0.0
    name: str = "gemini"

    async def send(self, request: ProviderRequest) -> RawProviderResponse:
        try:
            client = _genai_client(self.api_key)
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=request.user_prompt(),
                config=types.GenerateContentConfig(
                    system_instruction=request.system_prompt() or None,
                    temperature=self.temperature,
                    max_output_tokens=self.max_tokens,
                ),
            )
        except genai_errors.APIError as e:
            code = getattr(e, "code", None)
            logger.warning("llm.http_error provider=%s status=%s err=%s", self.name, code, str(e)[:300])
            return RawProviderResponse(text=str(e), ok=False, status_code=code)
        except Exception as e:
            # httpx / aiohttp / SDK internals: anything else is an I/O failure here.
            logger.error("llm.transport_error provider=%s err=%s", self.name, type(e).__name__, exc_info=True)
            raise TransportError(f"{self.name} request failed: {type(e).__name__}: {e}") from e

        # Prefer the SDK's convenience property
        result = getattr(response, "text", None)
        if result:
            return RawProviderResponse(text=result, ok=True, status_code=200)

        # Fallback: attempt to extract from candidates (SDK shape can vary across versions)
        candidates = getattr(response, "candidates", None) or []
        if candidates:
            content = getattr(candidates[0], "content", None)
            parts = getattr(content, "parts", None) if content else None
            if parts:
                text0 = getattr(parts[0], "text", None)
                if text0:
                    return RawProviderResponse(text=text0, ok=True, status_code=200)

        logger.warning("llm.empty_response provider=%s", self.name)
        return RawProviderResponse(text="", ok=False, status_code=200)


def select_provider(settings: Settings, override: Optional[str] = None) -> str:
    """Explicit choice (request override, then LLM_PROVIDER) or the first configured by priority."""
    requested = (override or settings.provider or "").strip().lower() or None
    configured = settings.configured_providers()

    if requested:
        if requested not in PROVIDER_PRIORITY:
            raise NoProviderConfiguredError(f"Unknown provider: {requested}")
        if requested not in configured:
            raise NoProviderConfiguredError(f"Provider '{requested}' has no credentials configured")
        return requested

    if not configured:
        raise NoProviderConfiguredError(
            "No LLM provider configured. Set DEEPSEEK_API_KEY, OPENAI_API_KEY, "
            "GEMINI_API_KEY or LLM_PROXY_URL."
        )
    return configured[0]


def create_adapter(
    provider: str,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> ProviderAdapter:
    if provider == "deepseek" and settings.deepseek_api_key:
        return DeepSeekAdapter(
            api_key=settings.deepseek_api_key,
            model=settings.deepseek_model,
            timeout=settings.timeout_seconds,
            client=client,
        )
    if provider == "openai" and settings.openai_api_key:
        return OpenAIAdapter(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.timeout_seconds,
            client=client,
        )
    if provider == "gemini" and settings.gemini_api_key:
        return GeminiAdapter(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            max_tokens=settings.max_tokens,
        )
    if provider == "proxy" and settings.proxy_url:
        return ProxyAdapter(base_url=settings.proxy_url, timeout=settings.timeout_seconds, client=client)
    raise NoProviderConfiguredError(f"Provider '{provider}' has no credentials configured")
