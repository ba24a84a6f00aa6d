from __future__ import annotations

import asyncio
import os
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy import text

from mercato.api.v1.endpoints import webhooks
from mercato.api.v1.router import api_router
from mercato.core.config import get_settings
from mercato.core.db import engine
from mercato.core.security import require_basic_auth
from mercato.services.scheduler import pipeline_scheduler_loop


@lru_cache
def _repo_head_revision() -> str | None:
    default_alembic_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    alembic_path = Path(os.getenv("ALEMBIC_CONFIG_PATH", str(default_alembic_path)))
    if not alembic_path.exists():
        return None

    cfg = Config(str(alembic_path))
    script = ScriptDirectory.from_config(cfg)
    return script.get_current_head()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Mercato Marketplace",
        version="1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if settings.cors_origins:
        origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/healthz/deep")
    async def deep_healthz() -> JSONResponse:
        payload: dict[str, Any] = {"status": "ok", "checks": {"database": "ok"}}
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                has_alembic_version = bool(
                    await conn.scalar(text("SELECT to_regclass('public.alembic_version') IS NOT NULL"))
                )
                current_revision: str | None = None
                if has_alembic_version:
                    current_revision = await conn.scalar(text("SELECT version_num FROM alembic_version LIMIT 1"))
        except Exception as exc:
            payload["status"] = "error"
            payload["checks"]["database"] = "error"
            payload["error"] = f"{exc.__class__.__name__}: {exc}"
            return JSONResponse(status_code=503, content=payload)

        repo_head = _repo_head_revision()
        if not has_alembic_version:
            migration_state = "missing_alembic_version"
        elif repo_head is None:
            migration_state = "unknown_repo_head"
        elif current_revision == repo_head:
            migration_state = "up_to_date"
        else:
            migration_state = "behind_head"

        payload["checks"]["migration"] = {
            "state": migration_state,
            "current_revision": current_revision,
            "repo_head_revision": repo_head,
        }
        healthy = migration_state == "up_to_date"
        payload["status"] = "ok" if healthy else "degraded"
        return JSONResponse(status_code=200 if healthy else 503, content=payload)

    @app.get("/openapi.json", include_in_schema=False, dependencies=[Depends(require_basic_auth)])
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/docs", include_in_schema=False, dependencies=[Depends(require_basic_auth)])
    async def swagger_ui_html():
        return get_swagger_ui_html(openapi_url="/openapi.json", title=app.title)

    @app.on_event("startup")
    async def startup() -> None:
        settings.pdf_dir.mkdir(parents=True, exist_ok=True)
        if settings.scheduler_enabled:
            app.state.scheduler_task = asyncio.create_task(pipeline_scheduler_loop(settings))

    @app.on_event("shutdown")
    async def shutdown() -> None:
        task = getattr(app.state, "scheduler_task", None)
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    app.include_router(api_router, prefix="/api/v1")
    # Payment providers authenticate with a body signature, not Basic auth.
    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["webhooks"])
    return app


app = create_app()
