"""
Core orchestration / pipeline.

Flow:
1. Receive TabularData rows (already parsed from CSV)
2. Select one provider (override or fixed priority) and build the prompt
3. Single LLM call through that provider's adapter
4. Extract the first JSON object from the raw text
5. Validate it into AnalysisPayload (never fails)
6. Return an AnalysisOutcome; errors are caught here and surfaced as a message

States: IDLE -> BUILDING -> REQUESTING -> NORMALIZING -> VALIDATING -> DONE,
with FAILED reachable from BUILDING, REQUESTING and NORMALIZING.
"""

import asyncio
import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .config import Settings
from .errors import (
    AnalysisError,
    EmptyInputError,
    NoJsonFoundError,
    TransportError,
)
from .llm_client import ProviderAdapter, create_adapter, select_provider
from .normalizer import parse_first_json
from .prompt import build_request
from .schemas import AnalysisPayload, Row
from .validator import validate_payload

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, Settings], ProviderAdapter]


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    BUILDING = "building"
    REQUESTING = "requesting"
    NORMALIZING = "normalizing"
    VALIDATING = "validating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AnalysisOutcome:
    state: PipelineState
    payload: Optional[AnalysisPayload] = None
    provider: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    raw_text: Optional[str] = None
    failed_in: Optional[PipelineState] = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE


def _failed(
    stage: PipelineState,
    err: AnalysisError,
    provider: Optional[str] = None,
) -> AnalysisOutcome:
    return AnalysisOutcome(
        state=PipelineState.FAILED,
        provider=provider,
        error=f"Analysis failed: {err.message}",
        error_kind=err.kind,
        raw_text=err.raw_text,
        failed_in=stage,
    )


async def _request(adapter: ProviderAdapter, rows: List[Row], provider: str, timeout: float) -> str:
    request = build_request(rows, provider)
    try:
        response = await asyncio.wait_for(adapter.send(request), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TransportError(f"{provider} did not answer within {timeout:.0f}s") from e

    if not response.ok:
        status = f"HTTP {response.status_code}" if response.status_code else "error"
        raise TransportError(
            f"{provider} returned an unusable response ({status})",
            raw_text=response.text,
        )
    return response.text


async def run_analysis(
    rows: List[Row],
    settings: Settings,
    *,
    provider: Optional[str] = None,
    adapter_factory: AdapterFactory = create_adapter,
) -> AnalysisOutcome:
    """
    Run one analysis end to end.

    Args:
        rows: TabularData, header-keyed rows in file order
        settings: provider credentials / models / timeout
        provider: optional explicit provider, overrides settings.provider
        adapter_factory: builds the adapter for the chosen provider (tests swap it)

    Returns:
        AnalysisOutcome in state DONE (with payload) or FAILED (with error).
    """
    stage = PipelineState.BUILDING
    if not rows:
        return _failed(stage, EmptyInputError("No data to analyze. Upload a CSV file first."))

    chosen: Optional[str] = None
    stage = PipelineState.REQUESTING
    try:
        chosen = select_provider(settings, provider)
        adapter = adapter_factory(chosen, settings)
        logger.info("analyze.start provider=%s rows=%d", chosen, len(rows))

        raw = await _request(adapter, rows, chosen, settings.timeout_seconds)
        logger.debug("analyze.raw provider=%s text=%s", chosen, raw[:1000])

        stage = PipelineState.NORMALIZING
        parsed = parse_first_json(raw)
    except NoJsonFoundError as e:
        logger.error("analyze.no_json provider=%s raw=%s", chosen, (e.raw_text or "")[:500])
        return _failed(stage, e, chosen)
    except AnalysisError as e:
        logger.error("analyze.failed stage=%s provider=%s kind=%s err=%s", stage.value, chosen, e.kind, e.message)
        return _failed(stage, e, chosen)
    except Exception as e:
        logger.error("analyze.unexpected_error stage=%s provider=%s", stage.value, chosen, exc_info=True)
        return _failed(stage, AnalysisError(f"Unexpected error: {type(e).__name__}: {e}"), chosen)

    stage = PipelineState.VALIDATING
    payload = validate_payload(parsed)
    logger.info(
        "analyze.done provider=%s charts=%d analysis_chars=%d",
        chosen,
        len(payload.charts),
        len(payload.analysis),
    )
    return AnalysisOutcome(state=PipelineState.DONE, payload=payload, provider=chosen)


@dataclass
class AnalysisSession:
    """
    View state for one user: the uploaded table and the latest outcome.

    Every analyze() call takes a new generation; a run that finishes after a
    newer one started is dropped instead of overwriting the visible state.
    """

    settings: Settings
    adapter_factory: AdapterFactory = create_adapter
    rows: List[Row] = field(default_factory=list)
    outcome: Optional[AnalysisOutcome] = None
    generation: int = 0

    @property
    def columns(self) -> List[str]:
        return list(self.rows[0].keys()) if self.rows else []

    @property
    def payload(self) -> Optional[AnalysisPayload]:
        return self.outcome.payload if self.outcome else None

    def load_rows(self, rows: List[Row]) -> None:
        self.rows = list(rows)
        self.outcome = None
        # Anything still in flight belongs to the previous table.
        self.generation += 1

    def clear(self) -> None:
        self.load_rows([])

    async def analyze(self, provider: Optional[str] = None) -> AnalysisOutcome:
        self.generation += 1
        my_generation = self.generation
        self.outcome = None

        outcome = await run_analysis(
            self.rows,
            self.settings,
            provider=provider,
            adapter_factory=self.adapter_factory,
        )

        if my_generation != self.generation:
            logger.info(
                "analyze.superseded generation=%d current=%d state=%s",
                my_generation,
                self.generation,
                outcome.state.value,
            )
            return outcome

        self.outcome = outcome
        return outcome


class SessionStore:
    """
    In-memory sessions keyed by the x-session-id header. Lost on restart.

    Bounded by settings.max_sessions: creating a session beyond the cap evicts
    the least recently used one.
    """

    def __init__(self, settings: Settings, adapter_factory: AdapterFactory = create_adapter):
        self.settings = settings
        self.adapter_factory = adapter_factory
        self._sessions: "OrderedDict[str, AnalysisSession]" = OrderedDict()

    def get(self, session_id: str) -> AnalysisSession:
        """Return the session, creating it if needed."""
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
            return session

        session = AnalysisSession(settings=self.settings, adapter_factory=self.adapter_factory)
        self._sessions[session_id] = session
        limit = max(1, self.settings.max_sessions)
        while len(self._sessions) > limit:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info("session.evicted session_id=%s limit=%d", evicted, limit)
        logger.debug("session.created session_id=%s total=%d", session_id, len(self._sessions))
        return session

    def peek(self, session_id: str) -> Optional[AnalysisSession]:
        """Look a session up without creating it."""
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
        return session

    def drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: Any) -> bool:
        return session_id in self._sessions
