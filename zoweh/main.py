from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .services.followup_engine import FollowupClosedError
from .services.status_rules import InvalidOutcomeForEntityError, StatusRuleError, UnknownStatusError

from .api.ministries import router as ministries_router
from .api.people import router as people_router
from .api.checkins import router as checkins_router
from .api.reports import router as reports_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    # Creates tables for all registered SQLModel models (idempotent)
    init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Zoweh Life Follow-up API",
        version=settings.app_version,
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Status rule errors ---
    @app.exception_handler(InvalidOutcomeForEntityError)
    async def invalid_outcome_handler(request: Request, exc: InvalidOutcomeForEntityError):
        # Client sent another form's outcome; a validation error, not a bug
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "kind": exc.kind.value, "allowed": exc.allowed},
        )

    @app.exception_handler(UnknownStatusError)
    async def unknown_status_handler(request: Request, exc: UnknownStatusError):
        # Data-integrity problem: log loudly, never guess a default
        logger.error(
            "unknown status token %r in %s table (%s %s)",
            exc.token,
            exc.table,
            request.method,
            request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": f"Stored status {exc.token!r} is not recognized"},
        )

    @app.exception_handler(FollowupClosedError)
    async def followup_closed_handler(request: Request, exc: FollowupClosedError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(StatusRuleError)
    async def status_rule_handler(request: Request, exc: StatusRuleError):
        # Any other rule violation, e.g. a blocked transition
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    # --- Health / meta ---
    @app.get("/health", tags=["meta"])
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "env": settings.env,
            "api_base": settings.public_api_base,
        }

    @app.get("/version", tags=["meta"])
    def version() -> Dict[str, Any]:
        return {"version": settings.app_version}

    # --- API routers ---
    app.include_router(ministries_router)
    app.include_router(people_router)
    app.include_router(checkins_router)
    app.include_router(reports_router)

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(level=getattr(logging, str(settings.log_level).upper(), logging.INFO))
    import uvicorn

    # NOTE: init_db is handled by the lifespan hook.
    uvicorn.run(
        "zoweh.main:app",
        host=settings.host,
        port=int(settings.port),
        reload=bool(settings.reload),
    )
