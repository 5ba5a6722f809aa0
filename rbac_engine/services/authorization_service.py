from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from enum import StrEnum

from sqlmodel import Session, col, select

from rbac_engine.domain.models import Permission, Role, RolePermission, User, UserRole
from rbac_engine.domain.permissions import AccessMode, has_permissions, is_privileged_grant
from rbac_engine.infra.db import session_scope


@dataclass(frozen=True)
class RoleSummary:
    id: str
    name: str
    description: str | None = None


@dataclass(frozen=True)
class ResolvedPermissions:
    permissions: frozenset[str] = frozenset()
    roles: tuple[RoleSummary, ...] = ()
    is_privileged: bool = False


@dataclass(frozen=True)
class ResolvedIdentity:
    user_id: str
    organization_id: str | None
    resolved: ResolvedPermissions = field(default_factory=ResolvedPermissions)

    @property
    def permissions(self) -> frozenset[str]:
        return self.resolved.permissions

    @property
    def is_privileged(self) -> bool:
        return self.resolved.is_privileged


class AuthorizationOutcome(StrEnum):
    ALLOW = "allow"
    FORBIDDEN = "forbidden"
    UNAUTHENTICATED = "unauthenticated"


def authorize(
    required: Sequence[str],
    mode: AccessMode,
    identity: ResolvedIdentity | None,
) -> AuthorizationOutcome:
    """Decide a request from its resolved identity.

    ``identity`` is ``None`` when session resolution failed. Empty names in
    ``required`` are ignored, and a list with nothing left allows any
    resolved identity. Privileged identities pass everything. Otherwise
    ``mode`` decides between any-of and all-of.
    """
    if identity is None:
        return AuthorizationOutcome.UNAUTHENTICATED
    expected = [item for item in required if item]
    if not expected or identity.is_privileged:
        return AuthorizationOutcome.ALLOW
    if has_permissions(identity.permissions, expected, mode):
        return AuthorizationOutcome.ALLOW
    return AuthorizationOutcome.FORBIDDEN


class AuthorizationService:
    def _session(self) -> AbstractContextManager[Session]:
        return session_scope()

    def resolve_permissions(self, user_id: str, organization_id: str | None = None) -> ResolvedPermissions:
        with self._session() as session:
            return self._resolve(session, user_id, organization_id)

    def resolve_identity(self, user_id: str, organization_id: str | None = None) -> ResolvedIdentity | None:
        with self._session() as session:
            if session.get(User, user_id) is None:
                return None
            resolved = self._resolve(session, user_id, organization_id)
        return ResolvedIdentity(user_id=user_id, organization_id=organization_id, resolved=resolved)

    def _resolve(self, session: Session, user_id: str, organization_id: str | None) -> ResolvedPermissions:
        grants = select(UserRole.role_id).where(UserRole.user_id == user_id)
        if organization_id is not None:
            grants = grants.where(UserRole.organization_id == organization_id)
        role_ids = sorted(set(session.exec(grants).all()))
        if not role_ids:
            return ResolvedPermissions()

        roles = list(session.exec(select(Role).where(col(Role.id).in_(role_ids)).order_by(Role.name)).all())
        permission_rows = session.exec(
            select(Permission.name)
            .join(RolePermission, col(RolePermission.permission_id) == col(Permission.id))
            .where(col(RolePermission.role_id).in_(role_ids))
        ).all()
        permissions = frozenset(permission_rows)
        summaries = tuple(RoleSummary(id=role.id, name=role.name, description=role.description) for role in roles)
        privileged = is_privileged_grant(
            [role.name for role in roles],
            permissions,
            role_flags=[role.is_privileged for role in roles],
        )
        return ResolvedPermissions(permissions=permissions, roles=summaries, is_privileged=privileged)
