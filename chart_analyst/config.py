"""
Process-wide configuration read from the environment.

Settings are read once (after main.py loads .env) into a frozen dataclass and
passed explicitly to the orchestrator instead of calling os.getenv deep inside
the pipeline.
"""

import os
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Fixed provider preference when several credentials are configured.
PROVIDER_PRIORITY: Tuple[str, ...] = ("deepseek", "openai", "gemini", "proxy")

DEFAULT_DEEPSEEK_MODEL = "deepseek-chat"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class Settings:
    deepseek_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    proxy_url: Optional[str] = None
    provider: Optional[str] = None  # explicit override, else PROVIDER_PRIORITY
    deepseek_model: str = DEFAULT_DEEPSEEK_MODEL
    openai_model: str = DEFAULT_OPENAI_MODEL
    gemini_model: str = DEFAULT_GEMINI_MODEL
    timeout_seconds: float = 60.0
    max_tokens: int = 4096
    row_limit: int = 5000
    max_sessions: int = 1000

    def credentials(self) -> Dict[str, Optional[str]]:
        return {
            "deepseek": self.deepseek_api_key,
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
            "proxy": self.proxy_url,
        }

    def configured_providers(self) -> Tuple[str, ...]:
        creds = self.credentials()
        return tuple(name for name in PROVIDER_PRIORITY if creds.get(name))


def load_settings() -> Settings:
    """Build Settings from the current process environment."""
    provider = _first_env("LLM_PROVIDER")
    if provider:
        provider = provider.lower()
        if provider not in PROVIDER_PRIORITY:
            logger.warning("config.unknown_provider provider=%s (ignored)", provider)
            provider = None

    settings = Settings(
        deepseek_api_key=_first_env("DEEPSEEK_API_KEY", "REACT_APP_DEEPSEEK_API_KEY"),
        openai_api_key=_first_env("OPENAI_API_KEY", "REACT_APP_OPENAI_API_KEY"),
        gemini_api_key=_first_env("GEMINI_API_KEY", "REACT_APP_GEMINI_API_KEY", "LLM_API_KEY"),
        proxy_url=_first_env("LLM_PROXY_URL"),
        provider=provider,
        deepseek_model=os.getenv("DEEPSEEK_MODEL", DEFAULT_DEEPSEEK_MODEL),
        openai_model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
        timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
        max_tokens=int(os.getenv("MAX_LLM_TOKENS", "4096")),
        row_limit=int(os.getenv("ROW_LIMIT", "5000")),
        max_sessions=int(os.getenv("MAX_SESSIONS", "1000")),
    )
    logger.info(
        "config.loaded providers=%s override=%s timeout=%.1fs",
        ",".join(settings.configured_providers()) or "-",
        settings.provider,
        settings.timeout_seconds,
    )
    return settings
