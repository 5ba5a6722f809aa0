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
    OrganizationCreate,
    OrganizationRead,
    OrganizationUpdate,
    RoleRead,
    UserIdsUpdate,
    UserRead,
)
from rbac_engine.domain.permissions import PERM_ORGANIZATION_READ, PERM_ORGANIZATION_WRITE, PERM_USER_WRITE
from rbac_engine.services.assignment_service import AssignmentService
from rbac_engine.services.identity_service import IdentityService

router = APIRouter()

Identity = Annotated[IdentityService, Depends(get_identity_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post(
    "",
    response_model=OrganizationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(PERM_ORGANIZATION_WRITE))],
)
def create_organization(payload: OrganizationCreate, identity: Identity) -> OrganizationRead:
    try:
        return OrganizationRead.model_validate(identity.create_organization(payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.get(
    "",
    response_model=list[OrganizationRead],
    dependencies=[Depends(require_permissions(PERM_ORGANIZATION_READ))],
)
def list_organizations(identity: Identity) -> list[OrganizationRead]:
    return [OrganizationRead.model_validate(item) for item in identity.list_organizations()]


@router.get(
    "/{organization_id}",
    response_model=OrganizationRead,
    dependencies=[Depends(require_permissions(PERM_ORGANIZATION_READ))],
)
def get_organization(organization_id: str, identity: Identity) -> OrganizationRead:
    try:
        return OrganizationRead.model_validate(identity.get_organization(organization_id))
    except RbacError as exc:
        raise_service_error(exc)


@router.patch(
    "/{organization_id}",
    response_model=OrganizationRead,
    dependencies=[Depends(require_permissions(PERM_ORGANIZATION_WRITE))],
)
def update_organization(organization_id: str, payload: OrganizationUpdate, identity: Identity) -> OrganizationRead:
    try:
        return OrganizationRead.model_validate(identity.update_organization(organization_id, payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.delete(
    "/{organization_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_permissions(PERM_ORGANIZATION_WRITE))],
)
def delete_organization(organization_id: str, identity: Identity) -> Response:
    try:
        identity.delete_organization(organization_id)
    except RbacError as exc:
        raise_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{organization_id}/users",
    response_model=list[UserRead],
    dependencies=[Depends(require_permissions(PERM_ORGANIZATION_READ))],
)
def list_organization_users(organization_id: str, assignments: Assignments) -> list[UserRead]:
    try:
        return [UserRead.model_validate(item) for item in assignments.list_organization_users(organization_id)]
    except RbacError as exc:
        raise_service_error(exc)


@router.put(
    "/{organization_id}/users",
    response_model=list[UserRead],
    dependencies=[Depends(require_permissions(PERM_USER_WRITE, PERM_ORGANIZATION_WRITE))],
)
def set_organization_users(organization_id: str, payload: UserIdsUpdate, assignments: Assignments) -> list[UserRead]:
    try:
        users = assignments.set_organization_users(organization_id, payload.user_ids)
        return [UserRead.model_validate(item) for item in users]
    except RbacError as exc:
        raise_service_error(exc)


@router.get(
    "/{organization_id}/roles",
    response_model=list[RoleRead],
    dependencies=[Depends(require_permissions(PERM_ORGANIZATION_READ))],
)
def list_organization_roles(organization_id: str, assignments: Assignments) -> list[RoleRead]:
    try:
        return [RoleRead.model_validate(item) for item in assignments.list_organization_roles(organization_id)]
    except RbacError as exc:
        raise_service_error(exc)
