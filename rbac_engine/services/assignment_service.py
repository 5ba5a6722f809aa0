from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from contextlib import AbstractContextManager
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, select

from rbac_engine.domain.errors import IntegrityViolationError, NotFoundError
from rbac_engine.domain.models import (
    Organization,
    Permission,
    Role,
    RoleOrganization,
    RolePermission,
    User,
    UserOrganization,
    UserRole,
)
from rbac_engine.infra.db import session_scope

logger = logging.getLogger(__name__)


def _dedupe(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for item in ids:
        if item in seen:
            continue
        seen.add(item)
        ordered.append(item)
    return ordered


class AssignmentService:
    """Replace-semantics writes over the association tables.

    Every ``set_*`` call locks its owner row, validates the complete target
    list, rewrites the owner's associations and commits once. Any failure
    leaves the previous associations untouched.
    """

    def _session(self) -> AbstractContextManager[Session]:
        return session_scope()

    def _lock_owner(self, session: Session, model: type[SQLModel], owner_id: str, label: str) -> Any:
        pk = model.id  # type: ignore[attr-defined]
        owner = session.exec(select(model).where(pk == owner_id).with_for_update()).first()
        if owner is None:
            raise NotFoundError(f"{label} not found")
        return owner

    def _require_existing(
        self,
        session: Session,
        model: type[SQLModel],
        ids: Sequence[str],
        label: str,
    ) -> None:
        if not ids:
            return
        pk = model.id  # type: ignore[attr-defined]
        found = set(session.exec(select(pk).where(col(pk).in_(ids))).all())
        missing = [item for item in ids if item not in found]
        if missing:
            raise NotFoundError(f"{label} not found: {', '.join(missing)}")

    def _commit(self, session: Session) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise IntegrityViolationError("association write violates store constraints") from exc

    def _membership_ids(self, session: Session, user_id: str) -> set[str]:
        rows = session.exec(
            select(UserOrganization.organization_id).where(UserOrganization.user_id == user_id)
        ).all()
        return set(rows)

    def _replace_user_roles(
        self,
        session: Session,
        user_id: str,
        organization_id: str,
        role_ids: Sequence[str],
    ) -> None:
        session.execute(
            sa.delete(UserRole).where(
                col(UserRole.user_id) == user_id,
                col(UserRole.organization_id) == organization_id,
            )
        )
        for role_id in role_ids:
            session.add(UserRole(user_id=user_id, role_id=role_id, organization_id=organization_id))

    def _drop_memberships(self, session: Session, user_id: str, organization_ids: Iterable[str]) -> None:
        removed = list(organization_ids)
        if not removed:
            return
        session.execute(
            sa.delete(UserRole).where(
                col(UserRole.user_id) == user_id,
                col(UserRole.organization_id).in_(removed),
            )
        )
        session.execute(
            sa.delete(UserOrganization).where(
                col(UserOrganization.user_id) == user_id,
                col(UserOrganization.organization_id).in_(removed),
            )
        )

    # writes

    def set_role_permissions(self, role_id: str, permission_ids: Sequence[str]) -> list[Permission]:
        target = _dedupe(permission_ids)
        with self._session() as session:
            self._lock_owner(session, Role, role_id, "role")
            self._require_existing(session, Permission, target, "permission")
            session.execute(sa.delete(RolePermission).where(col(RolePermission.role_id) == role_id))
            for permission_id in target:
                session.add(RolePermission(role_id=role_id, permission_id=permission_id))
            self._commit(session)
        logger.info(
            "rbac.assignment.role_permissions.replaced",
            extra={"role_id": role_id, "permission_count": len(target)},
        )
        return self.list_role_permissions(role_id)

    def set_user_roles_in_organization(
        self,
        user_id: str,
        organization_id: str,
        role_ids: Sequence[str],
    ) -> list[Role]:
        target = _dedupe(role_ids)
        with self._session() as session:
            self._lock_owner(session, User, user_id, "user")
            if session.get(Organization, organization_id) is None:
                raise NotFoundError("organization not found")
            self._require_existing(session, Role, target, "role")
            if organization_id not in self._membership_ids(session, user_id):
                raise IntegrityViolationError("user is not a member of the organization")
            self._replace_user_roles(session, user_id, organization_id, target)
            self._commit(session)
        logger.info(
            "rbac.assignment.user_roles.replaced",
            extra={"target_user_id": user_id, "target_organization_id": organization_id, "role_count": len(target)},
        )
        return self.list_user_roles(user_id, organization_id)

    def set_user_organizations(self, user_id: str, organization_ids: Sequence[str]) -> list[Organization]:
        target = _dedupe(organization_ids)
        with self._session() as session:
            self._lock_owner(session, User, user_id, "user")
            self._require_existing(session, Organization, target, "organization")
            current = self._membership_ids(session, user_id)
            self._drop_memberships(session, user_id, sorted(current - set(target)))
            for organization_id in target:
                if organization_id not in current:
                    session.add(UserOrganization(user_id=user_id, organization_id=organization_id))
            self._commit(session)
        logger.info(
            "rbac.assignment.user_organizations.replaced",
            extra={"target_user_id": user_id, "organization_count": len(target)},
        )
        return self.list_user_organizations(user_id)

    def set_role_organizations(self, role_id: str, organization_ids: Sequence[str]) -> list[Organization]:
        target = _dedupe(organization_ids)
        with self._session() as session:
            self._lock_owner(session, Role, role_id, "role")
            self._require_existing(session, Organization, target, "organization")
            session.execute(sa.delete(RoleOrganization).where(col(RoleOrganization.role_id) == role_id))
            for organization_id in target:
                session.add(RoleOrganization(role_id=role_id, organization_id=organization_id))
            self._commit(session)
        logger.info(
            "rbac.assignment.role_organizations.replaced",
            extra={"role_id": role_id, "organization_count": len(target)},
        )
        return self.list_role_organizations(role_id)

    def set_organization_users(self, organization_id: str, user_ids: Sequence[str]) -> list[User]:
        target = _dedupe(user_ids)
        with self._session() as session:
            self._lock_owner(session, Organization, organization_id, "organization")
            self._require_existing(session, User, target, "user")
            current = set(
                session.exec(
                    select(UserOrganization.user_id).where(UserOrganization.organization_id == organization_id)
                ).all()
            )
            for user_id in sorted(current - set(target)):
                self._drop_memberships(session, user_id, [organization_id])
            for user_id in target:
                if user_id not in current:
                    session.add(UserOrganization(user_id=user_id, organization_id=organization_id))
            self._commit(session)
        logger.info(
            "rbac.assignment.organization_users.replaced",
            extra={"target_organization_id": organization_id, "user_count": len(target)},
        )
        return self.list_organization_users(organization_id)

    def assign_user_to_organization(
        self,
        user_id: str,
        organization_id: str,
        role_ids: Sequence[str],
    ) -> list[Role]:
        target = _dedupe(role_ids)
        with self._session() as session:
            self._lock_owner(session, User, user_id, "user")
            if session.get(Organization, organization_id) is None:
                raise NotFoundError("organization not found")
            self._require_existing(session, Role, target, "role")
            if organization_id not in self._membership_ids(session, user_id):
                session.add(UserOrganization(user_id=user_id, organization_id=organization_id))
                session.flush()
            self._replace_user_roles(session, user_id, organization_id, target)
            self._commit(session)
        logger.info(
            "rbac.assignment.user_assigned",
            extra={"target_user_id": user_id, "target_organization_id": organization_id, "role_count": len(target)},
        )
        return self.list_user_roles(user_id, organization_id)

    # reads

    def list_role_permissions(self, role_id: str) -> list[Permission]:
        with self._session() as session:
            if session.get(Role, role_id) is None:
                raise NotFoundError("role not found")
            statement = (
                select(Permission)
                .join(RolePermission, col(RolePermission.permission_id) == col(Permission.id))
                .where(RolePermission.role_id == role_id)
                .order_by(Permission.name)
            )
            return list(session.exec(statement).all())

    def list_role_organizations(self, role_id: str) -> list[Organization]:
        with self._session() as session:
            if session.get(Role, role_id) is None:
                raise NotFoundError("role not found")
            statement = (
                select(Organization)
                .join(RoleOrganization, col(RoleOrganization.organization_id) == col(Organization.id))
                .where(RoleOrganization.role_id == role_id)
                .order_by(Organization.name)
            )
            return list(session.exec(statement).all())

    def list_user_organizations(self, user_id: str) -> list[Organization]:
        with self._session() as session:
            if session.get(User, user_id) is None:
                raise NotFoundError("user not found")
            statement = (
                select(Organization)
                .join(UserOrganization, col(UserOrganization.organization_id) == col(Organization.id))
                .where(UserOrganization.user_id == user_id)
                .order_by(col(UserOrganization.created_at), Organization.name)
            )
            return list(session.exec(statement).all())

    def list_user_roles(self, user_id: str, organization_id: str | None = None) -> list[Role]:
        with self._session() as session:
            if session.get(User, user_id) is None:
                raise NotFoundError("user not found")
            statement = (
                select(Role)
                .join(UserRole, col(UserRole.role_id) == col(Role.id))
                .where(UserRole.user_id == user_id)
            )
            if organization_id is not None:
                statement = statement.where(UserRole.organization_id == organization_id)
            roles = list(session.exec(statement.order_by(Role.name)).all())
        unique: dict[str, Role] = {}
        for role in roles:
            unique.setdefault(role.id, role)
        return list(unique.values())

    def list_user_grants(self, user_id: str) -> list[tuple[Role, Organization]]:
        with self._session() as session:
            if session.get(User, user_id) is None:
                raise NotFoundError("user not found")
            statement = (
                select(Role, Organization)
                .join(UserRole, col(UserRole.role_id) == col(Role.id))
                .join(Organization, col(Organization.id) == col(UserRole.organization_id))
                .where(UserRole.user_id == user_id)
                .order_by(Organization.name, Role.name)
            )
            return [(role, organization) for role, organization in session.exec(statement).all()]

    def list_organization_users(self, organization_id: str) -> list[User]:
        with self._session() as session:
            if session.get(Organization, organization_id) is None:
                raise NotFoundError("organization not found")
            statement = (
                select(User)
                .join(UserOrganization, col(UserOrganization.user_id) == col(User.id))
                .where(UserOrganization.organization_id == organization_id)
                .order_by(User.email)
            )
            return list(session.exec(statement).all())

    def list_organization_roles(self, organization_id: str) -> list[Role]:
        with self._session() as session:
            if session.get(Organization, organization_id) is None:
                raise NotFoundError("organization not found")
            statement = (
                select(Role)
                .join(RoleOrganization, col(RoleOrganization.role_id) == col(Role.id))
                .where(RoleOrganization.organization_id == organization_id)
                .order_by(Role.name)
            )
            return list(session.exec(statement).all())

    def is_member(self, user_id: str, organization_id: str) -> bool:
        with self._session() as session:
            row = session.exec(
                select(UserOrganization.user_id).where(
                    UserOrganization.user_id == user_id,
                    UserOrganization.organization_id == organization_id,
                )
            ).first()
            return row is not None
