"""
FastAPI entrypoint.

Routes:
- /upload          store a CSV for the caller's session (x-session-id header)
- /analyze         run the LLM pipeline on the session's table (optionally uploading first)
- /session         inspect / clear the session's view state
- /api/deepseek    local proxy: {messages} -> {text}, so the key stays server-side
"""

import io
import os
import logging
from typing import Optional

from dotenv import load_dotenv, find_dotenv

# Load environment variables from .env file (optional).
# Some editors save .env as UTF-16; support both UTF-8 and UTF-16.
_dotenv_path = find_dotenv(usecwd=True) or None
if _dotenv_path:
    try:
        load_dotenv(_dotenv_path)
    except UnicodeError:
        load_dotenv(_dotenv_path, encoding="utf-16")
else:
    # No .env found; rely on process env
    load_dotenv()

# Configure logging with environment-based level
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)
logger.info("Service starting with LOG_LEVEL=%s", LOG_LEVEL)

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Request
from fastapi.responses import PlainTextResponse

from .analyzer import AnalysisOutcome, AnalysisSession, SessionStore
from .config import load_settings
from .errors import TransportError
from .ingest import dataframe_to_rows, is_allowed_filename, load_csv
from .normalizer import strip_code_fences
from .plotly_config import charts_to_plotly
from .schemas import (
    AnalysisResponse,
    Message,
    ProviderRequest,
    ProxyRequest,
    SessionResponse,
    UploadResponse,
)

MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "50"))
DEFAULT_SESSION_ID = "default"

SETTINGS = load_settings()
_SESSIONS = SessionStore(SETTINGS)

app = FastAPI(title="CSV Chart Analyst")


@app.get("/")
def root():
    return {"ok": True, "service": "chart_analyst"}


@app.get("/healthz")
def healthz():
    return {"ok": True, "providers": list(_SESSIONS.settings.configured_providers())}


def _session_id(request: Request) -> str:
    return request.headers.get("x-session-id") or DEFAULT_SESSION_ID


def _to_response(outcome: AnalysisOutcome) -> AnalysisResponse:
    payload = outcome.payload
    return AnalysisResponse(
        state=outcome.state.value,
        provider=outcome.provider,
        analysis=payload.analysis if payload else outcome.error,
        charts=list(payload.charts) if payload else [],
        figures=charts_to_plotly(payload.charts) if payload else [],
        error=outcome.error,
        error_kind=outcome.error_kind,
        raw_text=outcome.raw_text,
    )


async def _store_upload(session: AnalysisSession, file: UploadFile) -> UploadResponse:
    filename = getattr(file, "filename", None) or "uploaded.csv"
    if not is_allowed_filename(filename):
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {filename}. Upload a .csv file.")

    content = await file.read()
    if len(content) > MAX_FILE_SIZE_MB * 1024 * 1024:
        raise HTTPException(status_code=400, detail=f"File exceeds {MAX_FILE_SIZE_MB} MB limit")

    try:
        df = load_csv(io.BytesIO(content), _SESSIONS.settings.row_limit)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Error reading uploaded CSV file: {e}")

    session.load_rows(dataframe_to_rows(df))
    logger.info("upload.stored filename=%s rows=%d cols=%d", filename, len(session.rows), len(session.columns))
    return UploadResponse(filename=filename, rows=len(session.rows), columns=session.columns)


@app.post("/upload", response_model=UploadResponse)
async def upload_endpoint(request: Request, file: UploadFile = File(...)):
    session = _SESSIONS.get(_session_id(request))
    return await _store_upload(session, file)


@app.post("/analyze", response_model=AnalysisResponse)
async def analyze_endpoint(
    request: Request,
    file: Optional[UploadFile] = File(None),
    provider: Optional[str] = Form(None),
):
    session_id = _session_id(request)
    session = _SESSIONS.get(session_id)
    logger.info(
        "analyze.request session_id=%s has_file=%s provider=%s",
        session_id,
        file is not None,
        provider,
    )

    if file is not None:
        await _store_upload(session, file)

    outcome = await session.analyze(provider=provider or None)

    logger.info(
        "analyze.response session_id=%s provider=%s state=%s error_kind=%s",
        session_id,
        outcome.provider,
        outcome.state.value,
        outcome.error_kind,
    )
    return _to_response(outcome)


@app.get("/session", response_model=SessionResponse)
def get_session(request: Request):
    session_id = _session_id(request)
    # Read-only: unknown ids are reported as empty, not created.
    session = _SESSIONS.peek(session_id)
    if session is None:
        return SessionResponse(session_id=session_id, rows=0, columns=[], generation=0, last=None)
    return SessionResponse(
        session_id=session_id,
        rows=len(session.rows),
        columns=session.columns,
        generation=session.generation,
        last=_to_response(session.outcome) if session.outcome else None,
    )


@app.delete("/session")
def clear_session(request: Request):
    session_id = _session_id(request)
    session = _SESSIONS.peek(session_id)
    if session is not None:
        session.clear()
        _SESSIONS.drop(session_id)
    logger.info("session.cleared session_id=%s", session_id)
    return {"ok": True, "session_id": session_id}


@app.post("/api/deepseek")
async def deepseek_proxy(req: ProxyRequest):
    settings = _SESSIONS.settings
    if not settings.deepseek_api_key:
        return PlainTextResponse("DeepSeek API key is not configured", status_code=500)

    messages = tuple(
        Message(role=str(m.get("role", "user")), content=str(m.get("content", "")))
        for m in req.messages
    )
    adapter = _SESSIONS.adapter_factory("deepseek", settings)
    try:
        response = await adapter.send(ProviderRequest(provider="deepseek", messages=messages))
    except TransportError as e:
        logger.error("proxy.transport_error err=%s", e.message)
        return PlainTextResponse(e.message, status_code=502)

    if not response.ok:
        return PlainTextResponse(response.text or "DeepSeek request failed", status_code=502)

    return {"text": strip_code_fences(response.text)}


def run():
    """Console entrypoint: serve the app with uvicorn on HOST:PORT."""
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info("server.start host=%s port=%d", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run()
