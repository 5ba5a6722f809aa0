from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from rbac_engine.api.deps import (
    get_assignment_service,
    get_authorization_service,
    get_identity_service,
    raise_service_error,
    require_any_permission,
    require_permissions,
    resolved_permissions_read,
)
from rbac_engine.domain.errors import RbacError
from rbac_engine.domain.models import (
    OrganizationIdsUpdate,
    OrganizationRead,
    ResolvedPermissionsRead,
    RoleRead,
    RoleSummaryRead,
    UserCreate,
    UserGrantRead,
    UserRead,
    UserRolesUpdate,
    UserUpdate,
)
from rbac_engine.domain.permissions import (
    PERM_ORGANIZATION_WRITE,
    PERM_ROLE_READ,
    PERM_USER_READ,
    PERM_USER_WRITE,
)
from rbac_engine.services.assignment_service import AssignmentService
from rbac_engine.services.authorization_service import AuthorizationService
from rbac_engine.services.identity_service import IdentityService

router = APIRouter()

Identity = Annotated[IdentityService, Depends(get_identity_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]
Authorization = Annotated[AuthorizationService, Depends(get_authorization_service)]

_membership_write = [Depends(require_permissions(PERM_USER_WRITE, PERM_ORGANIZATION_WRITE))]


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(PERM_USER_WRITE))],
)
def create_user(payload: UserCreate, identity: Identity) -> UserRead:
    try:
        return UserRead.model_validate(identity.create_user(payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.get("", response_model=list[UserRead], dependencies=[Depends(require_permissions(PERM_USER_READ))])
def list_users(identity: Identity) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in identity.list_users()]


@router.get("/{user_id}", response_model=UserRead, dependencies=[Depends(require_permissions(PERM_USER_READ))])
def get_user(user_id: str, identity: Identity) -> UserRead:
    try:
        return UserRead.model_validate(identity.get_user(user_id))
    except RbacError as exc:
        raise_service_error(exc)


@router.patch("/{user_id}", response_model=UserRead, dependencies=[Depends(require_permissions(PERM_USER_WRITE))])
def update_user(user_id: str, payload: UserUpdate, identity: Identity) -> UserRead:
    try:
        return UserRead.model_validate(identity.update_user(user_id, payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_permissions(PERM_USER_WRITE))],
)
def delete_user(user_id: str, identity: Identity) -> Response:
    try:
        identity.delete_user(user_id)
    except RbacError as exc:
        raise_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{user_id}/organizations",
    response_model=list[OrganizationRead],
    dependencies=[Depends(require_permissions(PERM_USER_READ))],
)
def list_user_organizations(user_id: str, assignments: Assignments) -> list[OrganizationRead]:
    try:
        return [OrganizationRead.model_validate(item) for item in assignments.list_user_organizations(user_id)]
    except RbacError as exc:
        raise_service_error(exc)


@router.put("/{user_id}/organizations", response_model=list[OrganizationRead], dependencies=_membership_write)
def set_user_organizations(
    user_id: str,
    payload: OrganizationIdsUpdate,
    assignments: Assignments,
) -> list[OrganizationRead]:
    try:
        organizations = assignments.set_user_organizations(user_id, payload.organization_ids)
        return [OrganizationRead.model_validate(item) for item in organizations]
    except RbacError as exc:
        raise_service_error(exc)


@router.get(
    "/{user_id}/roles",
    response_model=list[RoleRead],
    dependencies=[Depends(require_permissions(PERM_USER_READ))],
)
def list_user_roles(
    user_id: str,
    assignments: Assignments,
    organization_id: Annotated[str | None, Query()] = None,
) -> list[RoleRead]:
    try:
        return [RoleRead.model_validate(item) for item in assignments.list_user_roles(user_id, organization_id)]
    except RbacError as exc:
        raise_service_error(exc)


@router.put("/{user_id}/roles", response_model=list[RoleRead], dependencies=_membership_write)
def set_user_roles(user_id: str, payload: UserRolesUpdate, assignments: Assignments) -> list[RoleRead]:
    try:
        roles = assignments.set_user_roles_in_organization(user_id, payload.organization_id, payload.role_ids)
        return [RoleRead.model_validate(item) for item in roles]
    except RbacError as exc:
        raise_service_error(exc)


@router.post("/{user_id}/assignments", response_model=list[RoleRead], dependencies=_membership_write)
def assign_user_to_organization(user_id: str, payload: UserRolesUpdate, assignments: Assignments) -> list[RoleRead]:
    try:
        roles = assignments.assign_user_to_organization(user_id, payload.organization_id, payload.role_ids)
        return [RoleRead.model_validate(item) for item in roles]
    except RbacError as exc:
        raise_service_error(exc)


@router.get(
    "/{user_id}/grants",
    response_model=list[UserGrantRead],
    dependencies=[Depends(require_permissions(PERM_USER_READ))],
)
def list_user_grants(user_id: str, assignments: Assignments) -> list[UserGrantRead]:
    try:
        grants = assignments.list_user_grants(user_id)
    except RbacError as exc:
        raise_service_error(exc)
    return [
        UserGrantRead(
            role=RoleSummaryRead.model_validate(role),
            organization=OrganizationRead.model_validate(organization),
        )
        for role, organization in grants
    ]


@router.get(
    "/{user_id}/permissions",
    response_model=ResolvedPermissionsRead,
    dependencies=[Depends(require_any_permission(PERM_USER_READ, PERM_ROLE_READ))],
)
def resolve_user_permissions(
    user_id: str,
    identity: Identity,
    authorization: Authorization,
    organization_id: Annotated[str | None, Query()] = None,
) -> ResolvedPermissionsRead:
    try:
        identity.get_user(user_id)
    except RbacError as exc:
        raise_service_error(exc)
    resolved = authorization.resolve_permissions(user_id, organization_id)
    return resolved_permissions_read(user_id, organization_id, resolved)
