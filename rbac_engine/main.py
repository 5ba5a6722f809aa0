from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from rbac_engine.api.routers import auth, organizations, permissions, roles, users
from rbac_engine.domain.errors import StoreUnavailableError
from rbac_engine.infra.audit import AuditMiddleware
from rbac_engine.infra.db import check_db_ready
from rbac_engine.infra.logging import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="rbac-engine",
    description="Multi-organization role-based access control: identities, grants and authorization checks.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(organizations.router, prefix="/api/rbac/organizations", tags=["organizations"])
app.include_router(users.router, prefix="/api/rbac/users", tags=["users"])
app.include_router(roles.router, prefix="/api/rbac/roles", tags=["roles"])
app.include_router(permissions.router, prefix="/api/rbac/permissions", tags=["permissions"])
app.include_router(permissions.groups_router, prefix="/api/rbac/permission-groups", tags=["permissions"])


@app.exception_handler(StoreUnavailableError)
def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("rbac.store.unavailable", extra={"path": request.url.path})
    return JSONResponse(status_code=503, content={"detail": str(exc)})


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


def run() -> None:
    """Serve the application with uvicorn on ``RBAC_HOST``/``RBAC_PORT``."""
    import uvicorn

    uvicorn.run(
        "rbac_engine.main:app",
        host=os.getenv("RBAC_HOST", "127.0.0.1"),
        port=int(os.getenv("RBAC_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    run()
