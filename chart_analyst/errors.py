"""
Pipeline error taxonomy.

Rationale:
- One small base class so the orchestrator can catch everything it owns in one place.
- Each error carries a stable `kind` string for the API response and logs.
- NoJsonFoundError / TransportError keep the raw provider text for diagnosis.
"""

from typing import Optional


class AnalysisError(Exception):
    kind = "analysis_error"

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.raw_text = raw_text


class EmptyInputError(AnalysisError):
    """No rows to analyze. User-correctable."""

    kind = "empty_input"


class NoProviderConfiguredError(AnalysisError):
    """No provider credentials (or the requested provider has none)."""

    kind = "no_provider_configured"


class TransportError(AnalysisError):
    """Network / HTTP failure while talking to a provider. Retryable by re-running."""

    kind = "transport_error"


class NoJsonFoundError(AnalysisError):
    """Provider output did not contain a parseable JSON object."""

    kind = "no_json_found"
