from __future__ import annotations

import logging
from contextlib import AbstractContextManager

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from rbac_engine.domain.errors import ConflictError, NotFoundError, UnauthenticatedError
from rbac_engine.domain.models import (
    BootstrapAdminRequest,
    Organization,
    OrganizationCreate,
    OrganizationUpdate,
    Permission,
    PermissionCreate,
    PermissionGroup,
    PermissionGroupCreate,
    PermissionGroupUpdate,
    PermissionUpdate,
    Role,
    RoleCreate,
    RoleOrganization,
    RolePermission,
    RoleUpdate,
    User,
    UserCreate,
    UserOrganization,
    UserRole,
    UserUpdate,
    now_utc,
)
from rbac_engine.domain.permissions import (
    DEFAULT_PERMISSION_GROUPS,
    DEFAULT_PERMISSIONS,
    PRIVILEGED_ROLE_NAME,
)
from rbac_engine.infra.auth import hash_password, verify_password
from rbac_engine.infra.db import session_scope

logger = logging.getLogger(__name__)


class IdentityService:
    """Typed CRUD over users, organizations, roles, permissions and groups.

    Deleting a parent removes its association rows in the same transaction;
    nothing is left half-deleted.
    """

    def _session(self) -> AbstractContextManager[Session]:
        return session_scope()

    def _commit(self, session: Session, conflict_message: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(conflict_message) from exc

    def _flush(self, session: Session, conflict_message: str) -> None:
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(conflict_message) from exc

    def _ensure_group_exists(self, session: Session, group_id: str | None) -> None:
        if group_id is not None and session.get(PermissionGroup, group_id) is None:
            raise NotFoundError("permission group not found")

    def _ensure_default_permissions(self, session: Session) -> list[Permission]:
        groups = {item.name: item for item in session.exec(select(PermissionGroup)).all()}
        for name, description in DEFAULT_PERMISSION_GROUPS.items():
            if name not in groups:
                group = PermissionGroup(name=name, description=description)
                session.add(group)
                groups[name] = group
        session.flush()

        existing = {item.name: item for item in session.exec(select(Permission)).all()}
        for name, (description, group_name) in DEFAULT_PERMISSIONS.items():
            if name in existing:
                continue
            group_id = groups[group_name].id if group_name is not None else None
            permission = Permission(name=name, description=description, group_id=group_id)
            session.add(permission)
            existing[name] = permission
        session.flush()
        return [existing[name] for name in DEFAULT_PERMISSIONS]

    # organizations

    def create_organization(self, payload: OrganizationCreate) -> Organization:
        with self._session() as session:
            organization = Organization(name=payload.name, description=payload.description)
            session.add(organization)
            self._commit(session, "organization name already exists")
            session.refresh(organization)
            return organization

    def list_organizations(self) -> list[Organization]:
        with self._session() as session:
            return list(session.exec(select(Organization).order_by(Organization.name)).all())

    def get_organization(self, organization_id: str) -> Organization:
        with self._session() as session:
            organization = session.get(Organization, organization_id)
            if organization is None:
                raise NotFoundError("organization not found")
            return organization

    def update_organization(self, organization_id: str, payload: OrganizationUpdate) -> Organization:
        with self._session() as session:
            organization = session.get(Organization, organization_id)
            if organization is None:
                raise NotFoundError("organization not found")
            if payload.name is not None:
                organization.name = payload.name
            if payload.description is not None:
                organization.description = payload.description
            organization.updated_at = now_utc()
            session.add(organization)
            self._commit(session, "organization name already exists")
            session.refresh(organization)
            return organization

    def delete_organization(self, organization_id: str) -> None:
        with self._session() as session:
            organization = session.get(Organization, organization_id)
            if organization is None:
                raise NotFoundError("organization not found")
            session.execute(sa.delete(UserRole).where(col(UserRole.organization_id) == organization_id))
            session.execute(
                sa.delete(RoleOrganization).where(col(RoleOrganization.organization_id) == organization_id)
            )
            session.execute(
                sa.delete(UserOrganization).where(col(UserOrganization.organization_id) == organization_id)
            )
            session.delete(organization)
            session.commit()
        logger.info("rbac.organization.deleted", extra={"target_organization_id": organization_id})

    # users

    def create_user(self, payload: UserCreate) -> User:
        with self._session() as session:
            user = User(
                name=payload.name,
                email=payload.email,
                password_hash=hash_password(payload.password),
            )
            session.add(user)
            self._commit(session, "email already registered")
            session.refresh(user)
            return user

    def list_users(self) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).order_by(User.email)).all())

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def update_user(self, user_id: str, payload: UserUpdate) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if payload.name is not None:
                user.name = payload.name
            if payload.email is not None:
                user.email = payload.email
            if payload.password is not None:
                user.password_hash = hash_password(payload.password)
            user.updated_at = now_utc()
            session.add(user)
            self._commit(session, "email already registered")
            session.refresh(user)
            return user

    def delete_user(self, user_id: str) -> None:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            session.execute(sa.delete(UserRole).where(col(UserRole.user_id) == user_id))
            session.execute(sa.delete(UserOrganization).where(col(UserOrganization.user_id) == user_id))
            session.delete(user)
            session.commit()
        logger.info("rbac.user.deleted", extra={"target_user_id": user_id})

    def authenticate(self, email: str, password: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.email == email)).first()
        if user is None or not verify_password(password, user.password_hash):
            logger.info("rbac.auth.login.rejected")
            raise UnauthenticatedError("invalid email or password")
        return user

    # roles

    def create_role(self, payload: RoleCreate) -> Role:
        with self._session() as session:
            role = Role(
                name=payload.name,
                description=payload.description,
                is_privileged=payload.is_privileged,
            )
            session.add(role)
            self._commit(session, "role name already exists")
            session.refresh(role)
            return role

    def list_roles(self) -> list[Role]:
        with self._session() as session:
            return list(session.exec(select(Role).order_by(Role.name)).all())

    def get_role(self, role_id: str) -> Role:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            return role

    def update_role(self, role_id: str, payload: RoleUpdate) -> Role:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            if payload.name is not None:
                role.name = payload.name
            if payload.description is not None:
                role.description = payload.description
            if payload.is_privileged is not None:
                role.is_privileged = payload.is_privileged
            role.updated_at = now_utc()
            session.add(role)
            self._commit(session, "role name already exists")
            session.refresh(role)
            return role

    def delete_role(self, role_id: str) -> None:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            session.execute(sa.delete(RolePermission).where(col(RolePermission.role_id) == role_id))
            session.execute(sa.delete(UserRole).where(col(UserRole.role_id) == role_id))
            session.execute(sa.delete(RoleOrganization).where(col(RoleOrganization.role_id) == role_id))
            session.delete(role)
            session.commit()
        logger.info("rbac.role.deleted", extra={"role_id": role_id})

    # permission groups

    def create_permission_group(self, payload: PermissionGroupCreate) -> PermissionGroup:
        with self._session() as session:
            group = PermissionGroup(name=payload.name, description=payload.description)
            session.add(group)
            self._commit(session, "permission group name already exists")
            session.refresh(group)
            return group

    def list_permission_groups(self) -> list[PermissionGroup]:
        with self._session() as session:
            return list(session.exec(select(PermissionGroup).order_by(PermissionGroup.name)).all())

    def get_permission_group(self, group_id: str) -> PermissionGroup:
        with self._session() as session:
            group = session.get(PermissionGroup, group_id)
            if group is None:
                raise NotFoundError("permission group not found")
            return group

    def update_permission_group(self, group_id: str, payload: PermissionGroupUpdate) -> PermissionGroup:
        with self._session() as session:
            group = session.get(PermissionGroup, group_id)
            if group is None:
                raise NotFoundError("permission group not found")
            if payload.name is not None:
                group.name = payload.name
            if payload.description is not None:
                group.description = payload.description
            group.updated_at = now_utc()
            session.add(group)
            self._commit(session, "permission group name already exists")
            session.refresh(group)
            return group

    def delete_permission_group(self, group_id: str) -> None:
        with self._session() as session:
            group = session.get(PermissionGroup, group_id)
            if group is None:
                raise NotFoundError("permission group not found")
            # member permissions survive, ungrouped
            session.execute(
                sa.update(Permission).where(col(Permission.group_id) == group_id).values(group_id=None)
            )
            session.delete(group)
            session.commit()

    # permissions

    def create_permission(self, payload: PermissionCreate) -> Permission:
        with self._session() as session:
            self._ensure_group_exists(session, payload.group_id)
            permission = Permission(
                name=payload.name,
                description=payload.description,
                group_id=payload.group_id,
            )
            session.add(permission)
            self._commit(session, "permission name already exists")
            session.refresh(permission)
            return permission

    def list_permissions(self, group_id: str | None = None) -> list[Permission]:
        with self._session() as session:
            statement = select(Permission)
            if group_id is not None:
                statement = statement.where(Permission.group_id == group_id)
            return list(session.exec(statement.order_by(Permission.name)).all())

    def get_permission(self, permission_id: str) -> Permission:
        with self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            return permission

    def update_permission(self, permission_id: str, payload: PermissionUpdate) -> Permission:
        with self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            if payload.name is not None:
                permission.name = payload.name
            if payload.description is not None:
                permission.description = payload.description
            if "group_id" in payload.model_fields_set:
                self._ensure_group_exists(session, payload.group_id)
                permission.group_id = payload.group_id
            permission.updated_at = now_utc()
            session.add(permission)
            self._commit(session, "permission name already exists")
            session.refresh(permission)
            return permission

    def delete_permission(self, permission_id: str) -> None:
        with self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            session.execute(
                sa.delete(RolePermission).where(col(RolePermission.permission_id) == permission_id)
            )
            session.delete(permission)
            session.commit()

    # bootstrap

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            if session.exec(select(User.id)).first() is not None:
                raise ConflictError("store already initialized")

            all_permissions = self._ensure_default_permissions(session)
            organization = Organization(name=payload.organization_name, description="bootstrap organization")
            admin_role = session.exec(select(Role).where(Role.name == PRIVILEGED_ROLE_NAME)).first()
            if admin_role is None:
                admin_role = Role(
                    name=PRIVILEGED_ROLE_NAME,
                    description="bootstrap administrator role",
                    is_privileged=True,
                )
            else:
                admin_role.is_privileged = True
                admin_role.updated_at = now_utc()
            admin_user = User(
                name=payload.name,
                email=payload.email,
                password_hash=hash_password(payload.password),
            )
            session.add(organization)
            session.add(admin_role)
            session.add(admin_user)
            self._flush(session, "bootstrap organization or admin already exists")

            session.execute(sa.delete(RolePermission).where(col(RolePermission.role_id) == admin_role.id))
            for permission in all_permissions:
                session.add(RolePermission(role_id=admin_role.id, permission_id=permission.id))
            session.add(UserOrganization(user_id=admin_user.id, organization_id=organization.id))
            session.flush()
            session.add(
                UserRole(user_id=admin_user.id, role_id=admin_role.id, organization_id=organization.id)
            )
            self._commit(session, "bootstrap organization or admin already exists")
            session.refresh(admin_user)
        logger.info(
            "rbac.bootstrap.completed",
            extra={"admin_user_id": admin_user.id, "bootstrap_organization_id": organization.id},
        )
        return admin_user
