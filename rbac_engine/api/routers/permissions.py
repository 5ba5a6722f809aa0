from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from rbac_engine.api.deps import get_identity_service, raise_service_error, require_permissions
from rbac_engine.domain.errors import RbacError
from rbac_engine.domain.models import (
    PermissionCreate,
    PermissionGroupCreate,
    PermissionGroupRead,
    PermissionGroupUpdate,
    PermissionRead,
    PermissionUpdate,
)
from rbac_engine.domain.permissions import PERM_PERMISSION_READ, PERM_PERMISSION_WRITE
from rbac_engine.services.identity_service import IdentityService

router = APIRouter()
groups_router = APIRouter()

Identity = Annotated[IdentityService, Depends(get_identity_service)]

_read = [Depends(require_permissions(PERM_PERMISSION_READ))]
_write = [Depends(require_permissions(PERM_PERMISSION_WRITE))]


@router.post("", response_model=PermissionRead, status_code=status.HTTP_201_CREATED, dependencies=_write)
def create_permission(payload: PermissionCreate, identity: Identity) -> PermissionRead:
    try:
        return PermissionRead.model_validate(identity.create_permission(payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.get("", response_model=list[PermissionRead], dependencies=_read)
def list_permissions(
    identity: Identity,
    group_id: Annotated[str | None, Query()] = None,
) -> list[PermissionRead]:
    return [PermissionRead.model_validate(item) for item in identity.list_permissions(group_id)]


@router.get("/{permission_id}", response_model=PermissionRead, dependencies=_read)
def get_permission(permission_id: str, identity: Identity) -> PermissionRead:
    try:
        return PermissionRead.model_validate(identity.get_permission(permission_id))
    except RbacError as exc:
        raise_service_error(exc)


@router.patch("/{permission_id}", response_model=PermissionRead, dependencies=_write)
def update_permission(permission_id: str, payload: PermissionUpdate, identity: Identity) -> PermissionRead:
    try:
        return PermissionRead.model_validate(identity.update_permission(permission_id, payload))
    except RbacError as exc:
        raise_service_error(exc)


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=_write)
def delete_permission(permission_id: str, identity: Identity) -> Response:
    try:
        identity.delete_permission(permission_id)
    except RbacError as exc:
        raise_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@groups_router.post(
    "",
    response_model=PermissionGroupRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=_write,
)
def create_permission_group(payload: PermissionGroupCreate, identity: Identity) -> PermissionGroupRead:
    try:
        return PermissionGroupRead.model_validate(identity.create_permission_group(payload))
    except RbacError as exc:
        raise_service_error(exc)


@groups_router.get("", response_model=list[PermissionGroupRead], dependencies=_read)
def list_permission_groups(identity: Identity) -> list[PermissionGroupRead]:
    return [PermissionGroupRead.model_validate(item) for item in identity.list_permission_groups()]


@groups_router.get("/{group_id}", response_model=PermissionGroupRead, dependencies=_read)
def get_permission_group(group_id: str, identity: Identity) -> PermissionGroupRead:
    try:
        return PermissionGroupRead.model_validate(identity.get_permission_group(group_id))
    except RbacError as exc:
        raise_service_error(exc)


@groups_router.patch("/{group_id}", response_model=PermissionGroupRead, dependencies=_write)
def update_permission_group(group_id: str, payload: PermissionGroupUpdate, identity: Identity) -> PermissionGroupRead:
    try:
        return PermissionGroupRead.model_validate(identity.update_permission_group(group_id, payload))
    except RbacError as exc:
        raise_service_error(exc)


@groups_router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=_write)
def delete_permission_group(group_id: str, identity: Identity) -> Response:
    try:
        identity.delete_permission_group(group_id)
    except RbacError as exc:
        raise_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
