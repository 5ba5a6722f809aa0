from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from rbac_engine.api.deps import (
    CurrentSession,
    get_assignment_service,
    get_authorization_service,
    get_current_identity,
    get_identity_service,
    get_session_service,
    raise_service_error,
    resolved_permissions_read,
)
from rbac_engine.domain.errors import ConflictError, ForbiddenError, UnauthenticatedError
from rbac_engine.domain.models import (
    BootstrapAdminRequest,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    ResolvedPermissionsRead,
    SwitchOrganizationRequest,
    SwitchOrganizationResponse,
    UserCreate,
    UserRead,
)
from rbac_engine.infra.auth import SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE, SESSION_TTL_MIN
from rbac_engine.services.assignment_service import AssignmentService
from rbac_engine.services.authorization_service import AuthorizationService, ResolvedIdentity
from rbac_engine.services.identity_service import IdentityService
from rbac_engine.services.session_service import SessionService

router = APIRouter()

Identity = Annotated[IdentityService, Depends(get_identity_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]
Authorization = Annotated[AuthorizationService, Depends(get_authorization_service)]
Sessions = Annotated[SessionService, Depends(get_session_service)]


def _set_session_cookie(response: Response, token: str, expires_at: datetime) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        expires=expires_at,
        httponly=True,
        samesite="lax",
        secure=SESSION_COOKIE_SECURE,
        path="/",
    )


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, identity: Identity) -> UserRead:
    try:
        user = identity.create_user(UserCreate(name=payload.name, email=payload.email, password=payload.password))
        return UserRead.model_validate(user)
    except ConflictError as exc:
        raise_service_error(exc)


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, identity: Identity) -> UserRead:
    try:
        user = identity.bootstrap_admin(payload)
        return UserRead.model_validate(user)
    except ConflictError as exc:
        raise_service_error(exc)


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    response: Response,
    identity: Identity,
    assignments: Assignments,
    authorization: Authorization,
    sessions: Sessions,
) -> LoginResponse:
    try:
        user = identity.authenticate(payload.email, payload.password)
    except UnauthenticatedError as exc:
        raise_service_error(exc)

    memberships = assignments.list_user_organizations(user.id)
    organization_id = memberships[0].id if memberships else None
    expires_at = datetime.now(UTC) + timedelta(minutes=SESSION_TTL_MIN)
    token = sessions.issue_session(user.id, organization_id, expires_at)
    _set_session_cookie(response, token, expires_at)
    resolved = authorization.resolve_permissions(user.id, organization_id)
    return LoginResponse(
        access_token=token,
        user=UserRead.model_validate(user),
        organization_id=organization_id,
        permissions=sorted(resolved.permissions),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout() -> Response:
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/session", response_model=ResolvedPermissionsRead)
def current_session(
    identity: Annotated[ResolvedIdentity, Depends(get_current_identity)],
) -> ResolvedPermissionsRead:
    return resolved_permissions_read(identity.user_id, identity.organization_id, identity.resolved)


@router.post("/switch-organization", response_model=SwitchOrganizationResponse)
def switch_organization(
    payload: SwitchOrganizationRequest,
    response: Response,
    session_ctx: CurrentSession,
    assignments: Assignments,
    sessions: Sessions,
) -> SwitchOrganizationResponse:
    if not assignments.is_member(session_ctx.user_id, payload.organization_id):
        raise_service_error(ForbiddenError("forbidden"))

    token = sessions.switch_organization(session_ctx, payload.organization_id)
    _set_session_cookie(response, token, session_ctx.expires_at)
    return SwitchOrganizationResponse(access_token=token, organization_id=payload.organization_id)
