"""Audit trail middleware.

Write requests (and any request a handler or guard annotated through
``set_audit_context``) produce one ``AuditLog`` row after the response is
built. Persisting the row never changes the response.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from rbac_engine.domain.models import AuditLog, now_utc
from rbac_engine.infra.db import get_engine

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
UNAUDITED_PATHS = frozenset({"/healthz", "/readyz"})
AUDIT_STATE_ATTR = "audit_context"


def persist_audit_entry(entry: AuditLog) -> None:
    with Session(get_engine()) as session:
        session.add(entry)
        session.commit()


def merge_detail(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = merge_detail(current, value)
        merged[key] = value
    return merged


def outcome_for_status(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in (401, 403):
        return "denied"
    return "rejected" if status_code >= 400 else "success"


def get_audit_context(request: Request) -> dict[str, Any]:
    context = getattr(request.state, AUDIT_STATE_ATTR, None)
    return context if isinstance(context, dict) else {}


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    context = dict(get_audit_context(request))
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        context["detail"] = merge_detail(context.get("detail") or {}, detail)
    setattr(request.state, AUDIT_STATE_ATTR, context)


def build_audit_entry(request: Request, status_code: int) -> AuditLog:
    context = get_audit_context(request)
    session_ctx = getattr(request.state, "session", None)
    organization_id = getattr(session_ctx, "organization_id", None)
    actor_id = getattr(session_ctx, "user_id", None)
    method = request.method
    path = request.url.path
    action = context.get("action") or f"{method}:{path}"
    resource = context.get("resource") or path
    route = request.scope.get("route")

    detail: dict[str, Any] = {
        "who": {"organization_id": organization_id, "actor_id": actor_id},
        "when": {"request_ts": now_utc().isoformat()},
        "where": {
            "path": path,
            "route": getattr(route, "path", path),
            "client_ip": request.client.host if request.client is not None else None,
        },
        "what": {"action": action, "resource": resource, "method": method},
        "result": {"status_code": status_code, "outcome": outcome_for_status(status_code)},
    }
    return AuditLog(
        organization_id=organization_id,
        actor_id=actor_id,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        detail=merge_detail(detail, context.get("detail") or {}),
    )


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.url.path in UNAUDITED_PATHS:
            return response
        if request.method not in WRITE_METHODS and not get_audit_context(request):
            return response

        entry = build_audit_entry(request, response.status_code)
        try:
            persist_audit_entry(entry)
        except Exception:
            logger.exception("rbac.audit.write_failed", extra={"action": entry.action})
        return response
