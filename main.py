# main.py
# ------------------------------------------------------------------------------------
#  FastAPI service for Moving Avatar:
#  - POST /api/moving-avatar/generate      -> start a Runway image→video task
#  - GET  /api/moving-avatar               -> all known tasks, oldest first
#  - GET  /api/moving-avatar/status/{id}   -> live task status straight from Runway
#  - GET  /health
#  - GET  /debug/config                    -> runtime config (only when DEBUG)
#  Persistence:
#    * one JSON record per task id in JOB_STORAGE (memory | local | sql | r2)
#  Background work:
#    * JobTracker owns one polling task per job id for the life of the process
# ------------------------------------------------------------------------------------

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette import status

from job_query import list_jobs
from job_store import JobStore, build_job_store
from job_tracker import InvalidInput, JobTracker, RemoteSubmissionFailed
from models import GenerateRequest, JobRecord
from runway_client import RunwayClient, RunwayError
from settings import Settings, settings as default_settings

# Logging
logFormatter = logging.Formatter("%(asctime)s [%(levelname)-5.5s] [%(name)s]  %(message)s")
logger = logging.getLogger("moving-avatar")
logger.propagate = False

if not logger.handlers:
    consoleHandler = logging.StreamHandler()
    consoleHandler.setFormatter(logFormatter)
    logger.addHandler(consoleHandler)


def create_app(
    cfg: Optional[Settings] = None,
    store: Optional[JobStore] = None,
    runway=None,
) -> FastAPI:
    """Build the app. Store and Runway client are created at startup unless injected."""
    cfg = cfg or default_settings
    logger.setLevel(cfg.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_runway = None
        if getattr(app.state, "tracker", None) is None:
            job_store = store or build_job_store(cfg)
            client = runway
            if client is None:
                client = owned_runway = RunwayClient(cfg)
            app.state.store = job_store
            app.state.runway = client
            app.state.tracker = JobTracker.from_settings(client, job_store, cfg)
        logger.info("startup storage=%s poll_interval=%.1fs", cfg.job_storage, cfg.poll_interval_seconds)
        try:
            yield
        finally:
            await app.state.tracker.shutdown()
            if owned_runway is not None:
                await owned_runway.aclose()

    app = FastAPI(title="Moving Avatar API", version="0.1.0", lifespan=lifespan)
    app.state.settings = cfg

    # Injected collaborators are wired immediately so the app also works
    # under transports that skip the lifespan.
    if store is not None and runway is not None:
        app.state.store = store
        app.state.runway = runway
        app.state.tracker = JobTracker.from_settings(runway, store, cfg)

    # 🔴 In prod, tighten this list to your domains
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app, cfg)
    return app


GENERATE_PATH = "/api/moving-avatar/generate"


# ---------- Dependencies ----------
def get_tracker(request: Request) -> JobTracker:
    return request.app.state.tracker


def get_store(request: Request) -> JobStore:
    return request.app.state.store


def get_runway(request: Request):
    return request.app.state.runway


def _register_routes(app: FastAPI, cfg: Settings) -> None:
    # A missing or unreadable body on generate gets the same 400 as a missing url.
    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        if request.url.path == GENERATE_PATH:
            return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "url is required"})
        return await request_validation_exception_handler(request, exc)

    # ---------- Health ----------
    @app.get("/health")
    def health(tracker: JobTracker = Depends(get_tracker)):
        return {"ok": True, "storage": cfg.job_storage, "active_polls": len(tracker.active_jobs)}

    # ---------- Jobs ----------
    @app.post(GENERATE_PATH, response_model=JobRecord)
    async def generate(
        payload: Optional[GenerateRequest] = Body(None),
        tracker: JobTracker = Depends(get_tracker),
    ):
        try:
            return await tracker.submit(payload.url if payload else None)
        except InvalidInput as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except RemoteSubmissionFailed:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to generate moving avatar",
            )

    @app.get("/api/moving-avatar", response_model=List[JobRecord])
    def get_all_jobs(store: JobStore = Depends(get_store)):
        jobs = list_jobs(store)
        logger.debug("Retrieved %d jobs.", len(jobs))
        return jobs

    @app.get("/api/moving-avatar/status")
    def status_without_id():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Task ID is required")

    @app.get("/api/moving-avatar/status/{task_id}", response_model=JobRecord)
    async def get_task_status(task_id: str, runway=Depends(get_runway)):
        if not task_id.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Task ID is required")
        try:
            return JobRecord.model_validate(await runway.retrieve_task(task_id))
        except RunwayError as e:
            logger.error("status lookup failed task_id=%s: %s", task_id, e)
            if e.status_code == status.HTTP_404_NOT_FOUND:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch task status",
            )

    # ---------- Debug (hide in prod) ----------
    if cfg.debug:
        @app.get("/debug/config")
        def debug_config():
            return {
                "JOB_STORAGE": cfg.job_storage,
                "RUNWAY_API_BASE": cfg.runway_api_base,
                "RUNWAY_API_VERSION": cfg.runway_api_version,
                "RUNWAY_MODEL": cfg.runway_model,
                "RUNWAY_API_KEY_SET": bool(cfg.runway_api_key),
                "POLL_INTERVAL_SECONDS": cfg.poll_interval_seconds,
                "R2_BUCKET": cfg.r2_bucket,
                "DB_URL": cfg.database_url,
            }


app = create_app()
