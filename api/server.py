"""JobSync API server."""

from __future__ import annotations

import os
import threading
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from app.utils.log import configure_logging, get_logger
from skills.job_sync.config import ConfigError, Settings, load_settings
from skills.job_sync.pipeline import create_pipeline
from skills.job_sync.reconcile import run_reconciliation
from skills.job_sync.sources.gmail_readonly import GmailSource
from skills.job_sync.store import JobStore
from skills.job_sync.telemetry import read_status_file
from skills.job_sync.tracker import set_email_category, set_job_status, update_job_notes
from skills.job_sync.types import MessageSource

logger = get_logger(__name__)


class JobUpdateRequest(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None


class EmailUpdateRequest(BaseModel):
    category: str


class SyncStartRequest(BaseModel):
    mode: str = "sync"


class SyncController:
    """At most one background run at a time, stoppable between messages."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self.mode = ""
        self.last_error = ""

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, mode: str, target: Callable[[str, threading.Event], None]) -> bool:
        with self._lock:
            if self.is_running():
                return False
            self._stop_event = threading.Event()
            self.mode = mode
            self.last_error = ""
            self._thread = threading.Thread(
                target=self._run, args=(mode, target, self._stop_event), name=f"job-sync-{mode}", daemon=True
            )
            self._thread.start()
            return True

    def _run(self, mode: str, target: Callable[[str, threading.Event], None], stop_event: threading.Event) -> None:
        try:
            target(mode, stop_event)
        except Exception as exc:  # noqa: BLE001
            self.last_error = str(exc)
            logger.exception("Background %s run failed", mode)

    def stop(self) -> bool:
        with self._lock:
            if not self.is_running():
                return False
            self._stop_event.set()
            return True

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)


app = FastAPI(title="JobSync API", version="0.1.0")
sync_controller = SyncController()

allowed_origins_raw = os.getenv("ALLOWED_ORIGINS", "*").strip()
if allowed_origins_raw == "*" or not allowed_origins_raw:
    allowed_origins = ["*"]
else:
    allowed_origins = [item.strip() for item in allowed_origins_raw.split(",") if item.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_settings() -> Settings:
    try:
        settings = load_settings(os.getenv("JOB_SYNC_ENV_FILE") or None, require_credentials=False)
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    configure_logging(settings.log_level, settings.log_dir)
    return settings


def _get_store() -> JobStore:
    return JobStore(_get_settings().database_path)


def _build_source(settings: Settings) -> MessageSource:
    return GmailSource.from_files(
        settings.gmail_credentials_path,
        settings.gmail_token_path,
        allow_interactive_auth=False,
    )


def _sync_worker(mode: str, stop_event: threading.Event) -> None:
    settings = load_settings(os.getenv("JOB_SYNC_ENV_FILE") or None)
    pipeline = create_pipeline(settings, _build_source(settings), stop_event=stop_event)
    pipeline.run(mode)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/jobs")
def list_jobs(
    status: Optional[str] = Query(default=None),
    company: Optional[str] = Query(default=None),
    job_type: Optional[str] = Query(default=None),
    work_mode: Optional[str] = Query(default=None),
    source_platform: Optional[str] = Query(default=None),
) -> dict[str, object]:
    store = _get_store()
    jobs = store.list_jobs(
        status=status,
        company=company,
        job_type=job_type,
        work_mode=work_mode,
        source_platform=source_platform,
    )
    return {"jobs": [job.to_dict() for job in jobs], "counts": store.status_counts()}


@app.get("/api/jobs/{job_id}/emails")
def list_job_emails(job_id: int) -> dict[str, object]:
    store = _get_store()
    if store.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return {"emails": [email.to_dict() for email in store.list_emails(job_id=job_id)]}


@app.patch("/api/jobs/{job_id}")
def update_job(job_id: int, payload: JobUpdateRequest) -> dict[str, object]:
    if payload.status is None and payload.notes is None:
        raise HTTPException(status_code=400, detail="Provide status and/or notes")
    store = _get_store()
    if store.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    try:
        if payload.status is not None:
            set_job_status(store, job_id, payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if payload.notes is not None:
        update_job_notes(store, job_id, payload.notes)
    job = store.get_job(job_id)
    return {"ok": True, "job": job.to_dict() if job else None}


@app.patch("/api/emails/{gmail_id}")
def update_email(gmail_id: str, payload: EmailUpdateRequest) -> dict[str, object]:
    store = _get_store()
    try:
        email = set_email_category(store, gmail_id, payload.category)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if email is None:
        raise HTTPException(status_code=404, detail=f"Email {gmail_id} not found")
    job = store.get_job(email.job_id) if email.job_id is not None else None
    return {"ok": True, "email": email.to_dict(), "job": job.to_dict() if job else None}


@app.get("/api/sync-status")
def sync_status() -> dict[str, object]:
    status = read_status_file(_get_settings().sync_status_path)
    status["is_running"] = sync_controller.is_running()
    if sync_controller.last_error:
        status["last_error"] = sync_controller.last_error
    return status


@app.post("/api/sync/start")
def start_sync(payload: SyncStartRequest) -> dict[str, object]:
    if payload.mode not in {"sync", "backfill"}:
        raise HTTPException(status_code=422, detail=f"Unknown sync mode: {payload.mode}")
    if not sync_controller.start(payload.mode, _sync_worker):
        raise HTTPException(status_code=409, detail=f"A {sync_controller.mode} run is already in progress")
    return {"ok": True, "mode": payload.mode}


@app.post("/api/sync/stop")
def stop_sync() -> dict[str, object]:
    if not sync_controller.stop():
        raise HTTPException(status_code=404, detail="No sync run is in progress")
    return {"ok": True, "mode": sync_controller.mode}


@app.post("/api/reconcile")
def reconcile() -> dict[str, object]:
    if sync_controller.is_running():
        raise HTTPException(status_code=409, detail="Stop the running sync before reconciling")
    settings = _get_settings()
    report = run_reconciliation(JobStore(settings.database_path), ghost_after_days=settings.ghost_after_days)
    return {"ok": True, "report": report.to_dict()}
