from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str | None = Field(default=None, index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    is_privileged: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class PermissionGroup(SQLModel, table=True):
    __tablename__ = "permission_groups"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        ForeignKeyConstraint(
            ["group_id"],
            ["permission_groups.id"],
            ondelete="SET NULL",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    group_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class UserOrganization(SQLModel, table=True):
    __tablename__ = "user_organizations"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        Index("ix_user_organizations_organization", "organization_id"),
    )

    user_id: str = Field(primary_key=True)
    organization_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserRole(SQLModel, table=True):
    """A grant: the user holds the role inside one organization."""

    __tablename__ = "user_roles"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(
            ["user_id", "organization_id"],
            ["user_organizations.user_id", "user_organizations.organization_id"],
            ondelete="CASCADE",
        ),
        Index("ix_user_roles_user_organization", "user_id", "organization_id"),
        Index("ix_user_roles_role", "role_id"),
    )

    user_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    organization_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"
    __table_args__ = (
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        Index("ix_role_permissions_permission", "permission_id"),
    )

    role_id: str = Field(primary_key=True)
    permission_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RoleOrganization(SQLModel, table=True):
    __tablename__ = "role_organizations"
    __table_args__ = (
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        Index("ix_role_organizations_organization", "organization_id"),
    )

    role_id: str = Field(primary_key=True)
    organization_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OrganizationCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None


class OrganizationUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None


class OrganizationRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime


class UserCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=1)


class UserUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1)
    email: str | None = PydanticField(default=None, min_length=3)
    password: str | None = PydanticField(default=None, min_length=1)


class UserRead(ORMReadModel):
    id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None
    is_privileged: bool = False


class RoleUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None
    is_privileged: bool | None = None


class RoleRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    is_privileged: bool
    created_at: datetime
    updated_at: datetime


class RoleSummaryRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None


class PermissionGroupCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None


class PermissionGroupUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None


class PermissionGroupRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime


class PermissionCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    description: str | None = None
    group_id: str | None = None


class PermissionUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None
    group_id: str | None = None


class PermissionRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    group_id: str | None = None
    created_at: datetime
    updated_at: datetime


class PermissionIdsUpdate(BaseModel):
    permission_ids: list[str]


class RoleIdsUpdate(BaseModel):
    role_ids: list[str]


class UserRolesUpdate(BaseModel):
    organization_id: str
    role_ids: list[str]


class OrganizationIdsUpdate(BaseModel):
    organization_ids: list[str]


class UserIdsUpdate(BaseModel):
    user_ids: list[str]


class UserGrantRead(BaseModel):
    role: RoleSummaryRead
    organization: OrganizationRead


class ResolvedPermissionsRead(BaseModel):
    user_id: str
    organization_id: str | None = None
    permissions: list[str]
    roles: list[RoleSummaryRead]
    is_privileged: bool


class RegisterRequest(BaseModel):
    name: str = PydanticField(min_length=1)
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
    organization_id: str | None = None
    permissions: list[str]


class SwitchOrganizationRequest(BaseModel):
    organization_id: str


class SwitchOrganizationResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    organization_id: str


class BootstrapAdminRequest(BaseModel):
    organization_name: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=1)
