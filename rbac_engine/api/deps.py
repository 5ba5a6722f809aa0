from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Annotated, NoReturn

from fastapi import Cookie, Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from rbac_engine.domain.errors import (
    ConflictError,
    ForbiddenError,
    IntegrityViolationError,
    NotFoundError,
    RbacError,
    StoreUnavailableError,
    UnauthenticatedError,
)
from rbac_engine.domain.models import ResolvedPermissionsRead, RoleSummaryRead
from rbac_engine.domain.permissions import AccessMode
from rbac_engine.infra.audit import set_audit_context
from rbac_engine.infra.auth import SESSION_COOKIE_NAME
from rbac_engine.infra.context import clear_request_context, set_request_context
from rbac_engine.services.assignment_service import AssignmentService
from rbac_engine.services.authorization_service import (
    AuthorizationOutcome,
    AuthorizationService,
    ResolvedIdentity,
    ResolvedPermissions,
    authorize,
)
from rbac_engine.services.identity_service import IdentityService
from rbac_engine.services.session_service import SessionContext, SessionService

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

ORGANIZATION_HEADER = "X-Organization-Id"

_ERROR_STATUS: tuple[tuple[type[RbacError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (IntegrityViolationError, status.HTTP_409_CONFLICT),
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


def get_authorization_service() -> AuthorizationService:
    return AuthorizationService()


def get_session_service() -> SessionService:
    return SessionService()


def raise_service_error(exc: RbacError) -> NoReturn:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
            raise HTTPException(status_code=status_code, detail=str(exc), headers=headers) from exc
    raise exc


def _unauthenticated(detail: str = "not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_session(
    request: Request,
    sessions: Annotated[SessionService, Depends(get_session_service)],
    bearer: Annotated[str | None, Depends(oauth2_scheme)],
    cookie_token: Annotated[str | None, Cookie(alias=SESSION_COOKIE_NAME)] = None,
    organization_override: Annotated[str | None, Header(alias=ORGANIZATION_HEADER)] = None,
) -> SessionContext:
    # Must stay async: the request context set here is copied into the threadpool for sync handlers.
    try:
        context = sessions.resolve_session(bearer or cookie_token, organization_override)
    except UnauthenticatedError as exc:
        clear_request_context()
        set_audit_context(
            request,
            action=f"authenticate:{request.method}:{request.url.path}",
            detail={"result": {"outcome": "denied", "reason": "unauthenticated"}},
        )
        raise _unauthenticated(str(exc)) from exc
    request.state.session = context
    set_request_context(context.organization_id, context.user_id)
    return context


CurrentSession = Annotated[SessionContext, Depends(get_current_session)]


def get_current_identity(
    session_ctx: CurrentSession,
    authorization: Annotated[AuthorizationService, Depends(get_authorization_service)],
) -> ResolvedIdentity:
    identity = authorization.resolve_identity(session_ctx.user_id, session_ctx.organization_id)
    if identity is None:
        raise _unauthenticated("session user no longer exists")
    return identity


def _guard(required: tuple[str, ...], mode: AccessMode) -> Callable[..., ResolvedIdentity]:
    expected = tuple(item for item in required if item)

    def _checker(
        request: Request,
        session_ctx: CurrentSession,
        authorization: Annotated[AuthorizationService, Depends(get_authorization_service)],
    ) -> ResolvedIdentity:
        identity = authorization.resolve_identity(session_ctx.user_id, session_ctx.organization_id)
        outcome = authorize(expected, mode, identity)
        if outcome == AuthorizationOutcome.ALLOW and identity is not None:
            return identity
        reason = "missing_permission" if outcome == AuthorizationOutcome.FORBIDDEN else "unknown_user"
        set_audit_context(
            request,
            action=f"authorize:{request.method}:{request.url.path}",
            detail={"result": {"outcome": "denied", "reason": reason}},
        )
        logger.info("rbac.authorization.denied", extra={"outcome": outcome.value, "mode": mode.value})
        if outcome == AuthorizationOutcome.UNAUTHENTICATED:
            raise _unauthenticated("session user no longer exists")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")

    return _checker


def require_permissions(*permissions: str, mode: AccessMode = AccessMode.ALL) -> Callable[..., ResolvedIdentity]:
    return _guard(permissions, mode)


def require_any_permission(*permissions: str) -> Callable[..., ResolvedIdentity]:
    return _guard(permissions, AccessMode.ANY)


def resolved_permissions_read(
    user_id: str,
    organization_id: str | None,
    resolved: ResolvedPermissions,
) -> ResolvedPermissionsRead:
    return ResolvedPermissionsRead(
        user_id=user_id,
        organization_id=organization_id,
        permissions=sorted(resolved.permissions),
        roles=[RoleSummaryRead.model_validate(role) for role in resolved.roles],
        is_privileged=resolved.is_privileged,
    )
