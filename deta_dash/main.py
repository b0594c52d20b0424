"""
FastAPI entrypoint.

Routes:
- /session: sign in (custom token or anonymous) and sign out
- /analyze: upload a CSV/JSON dataset and get an AI-designed dashboard back
- /dashboards: the signed-in user's saved dashboards, newest first

Sessions are identified by the x-session-id header returned at sign-in.
"""

import os
import logging
from dotenv import load_dotenv, find_dotenv

# Load environment variables from .env file (optional).
# Some Windows editors save .env as UTF-16; fall back to it when UTF-8 fails.
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
logger.info("Deta Dash starting with LOG_LEVEL=%s", LOG_LEVEL)

from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi import Request
from typing import List, Optional

from .analyzer import analyze
from .errors import (
    DashboardError,
    MalformedDataset,
    ParseError,
    PersistenceError,
    UnsupportedFormat,
    UpstreamParseError,
    UpstreamResponseError,
)
from .ingest import max_upload_bytes, parse_dataset, resolve_media_type
from .persistence import DASHBOARD_LIST_LIMIT, get_store
from .schemas import AnalysisResponse, DashboardConfig, SavedDashboard, SessionResponse
from .session import Session, SessionRegistry

_STATUS_BY_ERROR = {
    UnsupportedFormat: 415,
    MalformedDataset: 400,
    ParseError: 400,
    UpstreamResponseError: 502,
    UpstreamParseError: 502,
    PersistenceError: 503,
}

app = FastAPI(title="Deta Dash")

_SESSIONS = SessionRegistry()


@app.get("/")
def root():
    return {"ok": True, "service": "deta_dash"}


@app.get("/healthz")
def healthz():
    return {"ok": True}


def _http_error(e: DashboardError) -> HTTPException:
    status = next((code for kind, code in _STATUS_BY_ERROR.items() if isinstance(e, kind)), 500)
    return HTTPException(status_code=status, detail=str(e))


def _require_session(request: Request) -> Session:
    session = _SESSIONS.get(request.headers.get("x-session-id"))
    if session is None:
        raise HTTPException(status_code=401, detail="Not signed in. Call POST /session first.")
    return session


@app.post("/session", response_model=SessionResponse)
def sign_in(token: Optional[str] = Form(None)):
    session = _SESSIONS.sign_in(token)
    return SessionResponse(session_id=session.session_id, user_id=session.user_id, anonymous=session.anonymous)


@app.delete("/session")
def sign_out(request: Request):
    session = _require_session(request)
    _SESSIONS.sign_out(session.session_id)
    return {"status": "signed_out"}


@app.post("/analyze", response_model=AnalysisResponse)
def analyze_endpoint(request: Request, file: UploadFile = File(...)):
    session = _require_session(request)
    name = file.filename or "Uploaded Dataset"
    media_type = resolve_media_type(file.content_type, file.filename)
    logger.info(
        "analyze.request session_id=%s file=%s media_type=%s",
        session.session_id,
        name,
        media_type,
    )

    try:
        # One byte past the limit is enough to reject the upload
        content = file.file.read(max_upload_bytes() + 1)
        dataset = parse_dataset(content, media_type, name=name)
    except DashboardError as e:
        logger.warning("analyze.ingest_failed session_id=%s err=%s", session.session_id, e)
        raise _http_error(e)

    seq = session.begin_analysis()
    try:
        dashboard = analyze(dataset)
    except DashboardError as e:
        logger.error("analyze.failed session_id=%s seq=%d err=%s", session.session_id, seq, e)
        raise _http_error(e)

    response = AnalysisResponse(
        dataset_name=dataset.name,
        columns=dataset.columns,
        row_count=dataset.row_count,
        dashboard=dashboard,
    )

    if not session.complete_analysis(seq, dashboard):
        # A newer upload started while this one was in flight; its result wins.
        response.superseded = True
        return response

    try:
        saved = get_store().save(session.user_id, dashboard, dataset.name, dataset.columns)
    except PersistenceError as e:
        raise _http_error(e)
    response.dashboard_id = saved.id
    if not session.record_saved(seq, saved.id):
        # Saved, but a newer analysis became current while this one was being written
        response.superseded = True

    logger.info(
        "analyze.response session_id=%s dashboard_id=%s charts=%d tables=%d metrics=%d",
        session.session_id,
        saved.id,
        len(dashboard.charts),
        len(dashboard.tables),
        len(dashboard.metrics),
    )
    return response


@app.get("/dashboards", response_model=List[SavedDashboard])
def list_dashboards(request: Request, limit: int = DASHBOARD_LIST_LIMIT):
    session = _require_session(request)
    try:
        return get_store().list_for_user(session.user_id, limit=limit)
    except PersistenceError as e:
        raise _http_error(e)


@app.get("/dashboards/current", response_model=DashboardConfig)
def current_dashboard(request: Request):
    session = _require_session(request)
    if session.current_dashboard is None:
        raise HTTPException(status_code=404, detail="No dashboard generated in this session yet.")
    return session.current_dashboard


@app.get("/dashboards/{dashboard_id}", response_model=SavedDashboard)
def get_dashboard(request: Request, dashboard_id: str):
    session = _require_session(request)
    try:
        saved = get_store().get(session.user_id, dashboard_id)
    except PersistenceError as e:
        raise _http_error(e)
    if saved is None:
        raise HTTPException(status_code=404, detail="Dashboard not found")
    return saved
