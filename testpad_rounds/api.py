"""Testpad Rounds Service.

FastAPI application providing REST API for:
- Connecting with a Testpad API key
- Browsing projects and folder trees
- Dashboard totals and per-tester aggregation
- Creating test rounds (folder duplication with assigned runs)
- Runs and notes

Run locally:
  uvicorn testpad_rounds.api:app --reload
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from testpad_rounds.aggregation import aggregate
from testpad_rounds.client import TestpadClient
from testpad_rounds.config import ServiceConfig, get_config
from testpad_rounds.credentials import CredentialStore, create_credential_store
from testpad_rounds.dashboard import load_dashboard_stats, load_script_contexts
from testpad_rounds.duplication import FolderDuplicator
from testpad_rounds.errors import InvalidCredential, TestpadError
from testpad_rounds.models import (
    AggregationReport,
    ConnectRequest,
    DashboardStats,
    DuplicationResult,
    FolderNode,
    Note,
    NoteRequest,
    Project,
    RoundRequest,
    RunRequest,
)
from testpad_rounds.reminders import render_team_status
from testpad_rounds.retry import RetryPolicy
from testpad_rounds.traversal import iter_folders

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Global state ---
client: TestpadClient | None = None
duplicator: FolderDuplicator | None = None


def init_services(
    config: ServiceConfig,
    credentials: Optional[CredentialStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """(Re)build the client and duplicator from config."""
    global client, duplicator
    credentials = credentials or create_credential_store(config.testpad)
    client = TestpadClient(config.testpad, credentials, transport=transport)
    duplicator = FolderDuplicator(
        client,
        retry=RetryPolicy.from_config(config.retry),
        throttle=config.throttle,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup."""
    config = get_config()
    init_services(config)
    logger.info(
        f"Service started. Testpad: {config.testpad.base_url}, "
        f"connected: {client.is_connected}"
    )
    yield
    logger.info("Service shutdown.")


app = FastAPI(
    title="Testpad Rounds",
    description="Test round creation and tester progress for Testpad",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _client() -> TestpadClient:
    if not client:
        raise HTTPException(503, "Service not initialized")
    return client


@app.exception_handler(TestpadError)
async def testpad_error_handler(request: Request, exc: TestpadError):
    """Map client errors to responses; a rejected key is forgotten."""
    if isinstance(exc, InvalidCredential) and client:
        client.credentials.clear()
        logger.warning("Stored API key rejected by Testpad, cleared")
    if exc.status == 0:
        status = 503
    elif 400 <= exc.status < 600:
        status = exc.status
    else:
        status = 502
    return JSONResponse(status_code=status, content=exc.to_dict())


# --- Health ---


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "connected": client.is_connected if client else False,
    }


# --- Connection ---


@app.post("/api/v1/connect")
async def connect(request: ConnectRequest):
    """Store an API key after checking Testpad accepts it."""
    c = _client()
    c.credentials.set(request.api_key.strip())
    if not await c.validate_api_key():
        c.credentials.clear()
        raise HTTPException(401, "Invalid API key")
    return {"connected": True}


@app.delete("/api/v1/connect")
async def disconnect():
    _client().credentials.clear()
    return {"connected": False}


# --- Projects & folders ---


@app.get("/api/v1/projects", response_model=list[Project])
async def list_projects():
    return await _client().get_projects()


@app.get("/api/v1/projects/{project_id}", response_model=Project)
async def get_project(project_id: int):
    return await _client().get_project(project_id)


@app.get("/api/v1/projects/{project_id}/folders", response_model=FolderNode)
async def get_folders(project_id: int):
    return await _client().get_folders(project_id)


@app.get("/api/v1/projects/{project_id}/folder-options")
async def folder_options(project_id: int):
    """Flat folder list with nesting depth, for round source pickers."""
    tree = await _client().get_folders(project_id)
    return [
        {"id": folder.id, "name": folder.name, "depth": depth}
        for folder, depth in iter_folders(tree)
    ]


# --- Dashboard & aggregation ---


@app.get("/api/v1/dashboard", response_model=DashboardStats)
async def dashboard():
    config = get_config()
    return await load_dashboard_stats(
        _client(), scripts_per_project=config.rounds.scripts_per_project
    )


@app.get("/api/v1/projects/{project_id}/summary", response_model=AggregationReport)
async def project_summary(project_id: int, folder_id: Optional[str] = None):
    """Tester summaries and failed tests over each script's latest run."""
    contexts = await load_script_contexts(_client(), project_id, folder_id)
    return aggregate(contexts)


@app.get("/api/v1/projects/{project_id}/reminders", response_class=PlainTextResponse)
async def reminders(
    project_id: int, folder_id: Optional[str] = None, tester: Optional[str] = None
):
    """Reminder text for one tester, or a team status check for all."""
    contexts = await load_script_contexts(_client(), project_id, folder_id)
    testers = aggregate(contexts).testers
    if tester:
        testers = [t for t in testers if t.name == tester]
        if not testers:
            raise HTTPException(404, f"No runs assigned to {tester}")
    return render_team_status(testers, get_config().testpad.app_url)


# --- Rounds ---


@app.post("/api/v1/rounds", response_model=DuplicationResult)
async def create_round(request: RoundRequest):
    """Duplicate a folder into a new test round.

    Returns 200 with ``success=False`` for validation and partial failures;
    inspect ``created_scripts`` and ``errors``.
    """
    if not duplicator:
        raise HTTPException(503, "Service not initialized")

    def log_progress(current: int, total: int, message: str) -> None:
        logger.info(f"[round '{request.name}' {current}/{total}] {message}")

    result = await duplicator.duplicate_folder(
        project_id=request.project_id,
        source_folder_id=request.source_folder_id,
        new_folder_name=request.name,
        testers=request.testers,
        build_info=request.build_info,
        progress=log_progress,
    )
    logger.info(
        f"Round '{request.name}' {result.outcome}: "
        f"{result.created_scripts} scripts, {len(result.errors)} errors"
    )
    return result


@app.post("/api/v1/scripts/{script_id}/runs")
async def create_run(script_id: int, request: RunRequest):
    resp = await _client().create_run(script_id, request.payload())
    logger.info(f"Created run on script {script_id} for {request.tester}")
    return resp


# --- Notes ---


@app.get("/api/v1/projects/{project_id}/notes", response_model=list[Note])
async def list_notes(project_id: int, folder_id: Optional[str] = None):
    c = _client()
    if folder_id:
        return await c.get_folder_notes(project_id, folder_id)
    return await c.get_notes(project_id)


@app.post("/api/v1/projects/{project_id}/notes")
async def create_note(project_id: int, request: NoteRequest):
    return await _client().create_note(project_id, request.content, request.folder_id)


@app.patch("/api/v1/projects/{project_id}/notes/{note_id}", response_model=Note)
async def update_note(project_id: int, note_id: str, request: NoteRequest):
    return await _client().update_note(project_id, note_id, request.content)
