from __future__ import annotations

from fastapi import FastAPI, HTTPException

from app.api.routers import catalog, gamification, notification, procedure, task
from app.infra.db import check_db_ready
from app.infra.logging_config import configure_logging

configure_logging()

app = FastAPI(
    title="procedure-workflow",
    description="Procedure workflow, least-XP task assignment and employee gamification.",
    version="0.1.0",
)

app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])
app.include_router(procedure.router, prefix="/api/procedures", tags=["procedures"])
app.include_router(task.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(gamification.router, prefix="/api/gamification", tags=["gamification"])
app.include_router(notification.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(notification.ws_router, tags=["notifications-ws"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
