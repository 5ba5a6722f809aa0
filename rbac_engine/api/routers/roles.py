from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from rbac_engine.api.deps import (
    get_assignment_service,
    get_identity_service,
    raise_service_error,
    require_permissions,
)
from rbac_engine.domain.errors import RbacError
from rbac_engine.domain.models import (
    OrganizationIdsUpdate,
    OrganizationRead,
    PermissionIdsUpdate,
    PermissionRead,
    RoleCreate,
    RoleRead,
    RoleUpdate,
)
from rbac_engine.domain.permissions import PERM_ROLE_READ, PERM_ROLE_WRITE
from rbac_engine.services.assignment_service import AssignmentService
from rbac_engine.services.identity_service import IdentityService

router = APIRouter()

Identity = Annotated[IdentityService, Depends(get_identity_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]

_read = [Depends(require_permissions(PERM_ROLE_READ))]
_write = [Depends(require_permissions(PERM_ROLE_WRITE))]


@router.post("", response_model=RoleRead, status_code=status.HTTP_201_CREATED, dependencies=_write)
def create_role(payload: RoleCreate, identity: Identity) -> RoleRead:
    try:
        return RoleRead.model_validate(identity.create_role(payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.get("", response_model=list[RoleRead], dependencies=_read)
def list_roles(identity: Identity) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in identity.list_roles()]


@router.get("/{role_id}", response_model=RoleRead, dependencies=_read)
def get_role(role_id: str, identity: Identity) -> RoleRead:
    try:
        return RoleRead.model_validate(identity.get_role(role_id))
    except RbacError as exc:
        raise_service_error(exc)


@router.patch("/{role_id}", response_model=RoleRead, dependencies=_write)
def update_role(role_id: str, payload: RoleUpdate, identity: Identity) -> RoleRead:
    try:
        return RoleRead.model_validate(identity.update_role(role_id, payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=_write)
def delete_role(role_id: str, identity: Identity) -> Response:
    try:
        identity.delete_role(role_id)
    except RbacError as exc:
        raise_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{role_id}/permissions", response_model=list[PermissionRead], dependencies=_read)
def list_role_permissions(role_id: str, assignments: Assignments) -> list[PermissionRead]:
    try:
        return [PermissionRead.model_validate(item) for item in assignments.list_role_permissions(role_id)]
    except RbacError as exc:
        raise_service_error(exc)


@router.put("/{role_id}/permissions", response_model=list[PermissionRead], dependencies=_write)
def set_role_permissions(role_id: str, payload: PermissionIdsUpdate, assignments: Assignments) -> list[PermissionRead]:
    try:
        permissions = assignments.set_role_permissions(role_id, payload.permission_ids)
        return [PermissionRead.model_validate(item) for item in permissions]
    except RbacError as exc:
        raise_service_error(exc)


@router.get("/{role_id}/organizations", response_model=list[OrganizationRead], dependencies=_read)
def list_role_organizations(role_id: str, assignments: Assignments) -> list[OrganizationRead]:
    try:
        return [OrganizationRead.model_validate(item) for item in assignments.list_role_organizations(role_id)]
    except RbacError as exc:
        raise_service_error(exc)


@router.put("/{role_id}/organizations", response_model=list[OrganizationRead], dependencies=_write)
def set_role_organizations(
    role_id: str,
    payload: OrganizationIdsUpdate,
    assignments: Assignments,
) -> list[OrganizationRead]:
    try:
        organizations = assignments.set_role_organizations(role_id, payload.organization_ids)
        return [OrganizationRead.model_validate(item) for item in organizations]
    except RbacError as exc:
        raise_service_error(exc)
