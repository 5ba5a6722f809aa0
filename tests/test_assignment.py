from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from rbac_engine.domain.errors import (
    ConflictError,
    IntegrityViolationError,
    NotFoundError,
    UnauthenticatedError,
)
from rbac_engine.domain.models import (
    BootstrapAdminRequest,
    OrganizationCreate,
    Permission,
    PermissionCreate,
    PermissionGroupCreate,
    PermissionUpdate,
    RoleCreate,
    RoleOrganization,
    RolePermission,
    User,
    UserCreate,
    UserOrganization,
    UserRole,
)
from rbac_engine.domain.permissions import DEFAULT_PERMISSIONS, PRIVILEGED_ROLE_NAME
from rbac_engine.infra import auth, db
from rbac_engine.services.assignment_service import AssignmentService
from rbac_engine.services.authorization_service import AuthorizationService
from rbac_engine.services.identity_service import IdentityService


@pytest.fixture()
def store(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    db_path = tmp_path / "assignment_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    db.enable_sqlite_foreign_keys(test_engine)
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(auth, "PASSWORD_HASH_ITERATIONS", 1000)
    yield
    test_engine.dispose()


def _count(model: type[SQLModel]) -> int:
    with Session(db.get_engine()) as session:
        return len(session.exec(select(model)).all())


def _permission_names(role_id: str) -> set[str]:
    return {item.name for item in AssignmentService().list_role_permissions(role_id)}


def test_set_role_permissions_replaces_and_is_idempotent(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    role = identity.create_role(RoleCreate(name="Editor"))
    p1 = identity.create_permission(PermissionCreate(name="P1"))
    p2 = identity.create_permission(PermissionCreate(name="P2"))
    p3 = identity.create_permission(PermissionCreate(name="P3"))

    assignments.set_role_permissions(role.id, [p1.id, p2.id])
    once = _permission_names(role.id)
    assignments.set_role_permissions(role.id, [p1.id, p2.id])
    assert _permission_names(role.id) == once == {"P1", "P2"}

    result = assignments.set_role_permissions(role.id, [p3.id])
    assert [item.name for item in result] == ["P3"]
    assert _permission_names(role.id) == {"P3"}

    assert assignments.set_role_permissions(role.id, []) == []
    assert _count(RolePermission) == 0


def test_set_role_permissions_dedupes_targets(store: None) -> None:
    identity = IdentityService()
    role = identity.create_role(RoleCreate(name="Editor"))
    p1 = identity.create_permission(PermissionCreate(name="P1"))

    result = AssignmentService().set_role_permissions(role.id, [p1.id, p1.id])
    assert [item.id for item in result] == [p1.id]


def test_set_role_permissions_unknown_target_keeps_previous_state(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    role = identity.create_role(RoleCreate(name="Editor"))
    p1 = identity.create_permission(PermissionCreate(name="P1"))
    assignments.set_role_permissions(role.id, [p1.id])

    with pytest.raises(NotFoundError) as exc_info:
        assignments.set_role_permissions(role.id, [p1.id, "missing-permission"])
    assert "missing-permission" in str(exc_info.value)
    assert _permission_names(role.id) == {"P1"}


def test_unknown_owner_is_not_found(store: None) -> None:
    assignments = AssignmentService()
    with pytest.raises(NotFoundError):
        assignments.set_role_permissions("missing-role", [])
    with pytest.raises(NotFoundError):
        assignments.set_user_organizations("missing-user", [])
    with pytest.raises(NotFoundError):
        assignments.set_organization_users("missing-org", [])


def test_user_roles_atomic_on_unknown_role(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org = identity.create_organization(OrganizationCreate(name="Acme"))
    user = identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="pw"))
    reader = identity.create_role(RoleCreate(name="Reader"))
    writer = identity.create_role(RoleCreate(name="Writer"))
    assignments.set_user_organizations(user.id, [org.id])
    assignments.set_user_roles_in_organization(user.id, org.id, [reader.id])

    with pytest.raises(NotFoundError):
        assignments.set_user_roles_in_organization(user.id, org.id, [writer.id, "missing-role"])

    assert [role.name for role in assignments.list_user_roles(user.id, org.id)] == ["Reader"]


def test_user_roles_require_membership(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org = identity.create_organization(OrganizationCreate(name="Acme"))
    user = identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="pw"))
    role = identity.create_role(RoleCreate(name="Reader"))

    with pytest.raises(IntegrityViolationError):
        assignments.set_user_roles_in_organization(user.id, org.id, [role.id])
    assert _count(UserRole) == 0


def test_commit_time_violation_rolls_back_replace(store: None, monkeypatch: pytest.MonkeyPatch) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    role = identity.create_role(RoleCreate(name="Editor"))
    p1 = identity.create_permission(PermissionCreate(name="P1"))
    p2 = identity.create_permission(PermissionCreate(name="P2"))
    assignments.set_role_permissions(role.id, [p1.id])

    monkeypatch.setattr(AssignmentService, "_require_existing", lambda self, session, model, ids, label: None)
    with pytest.raises(IntegrityViolationError):
        assignments.set_role_permissions(role.id, [p2.id, "vanished-permission"])

    assert _permission_names(role.id) == {"P1"}
    assert _count(RolePermission) == 1


def test_assign_user_to_organization_creates_membership(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org = identity.create_organization(OrganizationCreate(name="Acme"))
    user = identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="pw"))
    reader = identity.create_role(RoleCreate(name="Reader"))
    writer = identity.create_role(RoleCreate(name="Writer"))

    roles = assignments.assign_user_to_organization(user.id, org.id, [reader.id])
    assert [role.name for role in roles] == ["Reader"]
    assert assignments.is_member(user.id, org.id)

    roles = assignments.assign_user_to_organization(user.id, org.id, [writer.id])
    assert [role.name for role in roles] == ["Writer"]
    assert _count(UserOrganization) == 1


def test_set_user_organizations_drops_grants_of_removed_memberships(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org_x = identity.create_organization(OrganizationCreate(name="Org X"))
    org_y = identity.create_organization(OrganizationCreate(name="Org Y"))
    org_z = identity.create_organization(OrganizationCreate(name="Org Z"))
    user = identity.create_user(UserCreate(name="Sam", email="sam@example.test", password="pw"))
    role = identity.create_role(RoleCreate(name="Reader"))
    assignments.set_user_organizations(user.id, [org_x.id, org_y.id])
    assignments.set_user_roles_in_organization(user.id, org_x.id, [role.id])
    assignments.set_user_roles_in_organization(user.id, org_y.id, [role.id])

    result = assignments.set_user_organizations(user.id, [org_y.id, org_z.id, org_z.id])

    assert {item.name for item in result} == {"Org Y", "Org Z"}
    grants = assignments.list_user_grants(user.id)
    assert [(role_item.name, org_item.name) for role_item, org_item in grants] == [("Reader", "Org Y")]
    assert not assignments.is_member(user.id, org_x.id)

    assert assignments.set_user_organizations(user.id, []) == []
    assert _count(UserRole) == 0


def test_set_organization_users_replaces_members(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org = identity.create_organization(OrganizationCreate(name="Acme"))
    jane = identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="pw"))
    john = identity.create_user(UserCreate(name="John", email="john@acme.test", password="pw"))
    role = identity.create_role(RoleCreate(name="Reader"))
    assignments.assign_user_to_organization(jane.id, org.id, [role.id])

    members = assignments.set_organization_users(org.id, [john.id])

    assert [item.email for item in members] == ["john@acme.test"]
    assert assignments.list_user_roles(jane.id) == []
    with pytest.raises(NotFoundError):
        assignments.set_organization_users(org.id, [john.id, "missing-user"])
    assert [item.email for item in assignments.list_organization_users(org.id)] == ["john@acme.test"]


def test_set_role_organizations_is_informational(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org_x = identity.create_organization(OrganizationCreate(name="Org X"))
    org_y = identity.create_organization(OrganizationCreate(name="Org Y"))
    role = identity.create_role(RoleCreate(name="Reader"))
    user = identity.create_user(UserCreate(name="Sam", email="sam@example.test", password="pw"))

    assignments.set_role_organizations(role.id, [org_x.id])
    assert [item.name for item in assignments.list_organization_roles(org_x.id)] == ["Reader"]
    assert assignments.list_organization_roles(org_y.id) == []

    roles = assignments.assign_user_to_organization(user.id, org_y.id, [role.id])
    assert [item.name for item in roles] == ["Reader"]

    assert [item.name for item in assignments.set_role_organizations(role.id, [org_y.id])] == ["Org Y"]
    assert [item.name for item in assignments.list_role_organizations(role.id)] == ["Org Y"]


def test_delete_organization_cascades_associations(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org = identity.create_organization(OrganizationCreate(name="Acme"))
    user = identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="pw"))
    role = identity.create_role(RoleCreate(name="Reader"))
    assignments.assign_user_to_organization(user.id, org.id, [role.id])
    assignments.set_role_organizations(role.id, [org.id])

    identity.delete_organization(org.id)

    assert _count(UserOrganization) == 0
    assert _count(UserRole) == 0
    assert _count(RoleOrganization) == 0
    assert identity.get_user(user.id).email == "jane@acme.test"
    with pytest.raises(NotFoundError):
        identity.delete_organization(org.id)


def test_delete_user_cascades_grants(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    org = identity.create_organization(OrganizationCreate(name="Acme"))
    user = identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="pw"))
    role = identity.create_role(RoleCreate(name="Reader"))
    assignments.assign_user_to_organization(user.id, org.id, [role.id])

    identity.delete_user(user.id)

    assert _count(UserOrganization) == 0
    assert _count(UserRole) == 0
    assert AuthorizationService().resolve_identity(user.id, org.id) is None


def test_delete_permission_group_ungroups_permissions(store: None) -> None:
    identity = IdentityService()
    group = identity.create_permission_group(PermissionGroupCreate(name="Orders"))
    permission = identity.create_permission(PermissionCreate(name="ORDER_READ", group_id=group.id))

    identity.delete_permission_group(group.id)

    assert identity.get_permission(permission.id).group_id is None
    assert _count(Permission) == 1


def test_permission_group_reference_is_validated(store: None) -> None:
    identity = IdentityService()
    with pytest.raises(NotFoundError):
        identity.create_permission(PermissionCreate(name="ORDER_READ", group_id="missing-group"))

    group = identity.create_permission_group(PermissionGroupCreate(name="Orders"))
    permission = identity.create_permission(PermissionCreate(name="ORDER_READ", group_id=group.id))
    cleared = identity.update_permission(permission.id, PermissionUpdate(group_id=None))
    assert cleared.group_id is None


def test_delete_permission_removes_role_links(store: None) -> None:
    identity = IdentityService()
    assignments = AssignmentService()
    role = identity.create_role(RoleCreate(name="Editor"))
    p1 = identity.create_permission(PermissionCreate(name="P1"))
    p2 = identity.create_permission(PermissionCreate(name="P2"))
    assignments.set_role_permissions(role.id, [p1.id, p2.id])

    identity.delete_permission(p1.id)

    assert _permission_names(role.id) == {"P2"}


def test_unique_names_conflict(store: None) -> None:
    identity = IdentityService()
    identity.create_organization(OrganizationCreate(name="Acme"))
    with pytest.raises(ConflictError):
        identity.create_organization(OrganizationCreate(name="Acme"))
    identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="pw"))
    with pytest.raises(ConflictError):
        identity.create_user(UserCreate(name="Other Jane", email="jane@acme.test", password="pw"))


def test_bootstrap_admin_seeds_store_once(store: None) -> None:
    identity = IdentityService()
    payload = BootstrapAdminRequest(
        organization_name="Acme",
        name="Admin",
        email="admin@acme.test",
        password="admin-pass",
    )
    admin = identity.bootstrap_admin(payload)

    assert {item.name for item in identity.list_permissions()} == set(DEFAULT_PERMISSIONS)
    grants = AssignmentService().list_user_grants(admin.id)
    assert len(grants) == 1
    role, org = grants[0]
    assert role.name == PRIVILEGED_ROLE_NAME
    assert role.is_privileged is True
    assert org.name == "Acme"
    resolved = AuthorizationService().resolve_permissions(admin.id, org.id)
    assert resolved.is_privileged is True
    assert resolved.permissions == set(DEFAULT_PERMISSIONS)

    with pytest.raises(ConflictError):
        identity.bootstrap_admin(payload)


def test_authenticate_rejects_bad_credentials(store: None) -> None:
    identity = IdentityService()
    identity.create_user(UserCreate(name="Jane", email="jane@acme.test", password="jane-pass"))

    assert identity.authenticate("jane@acme.test", "jane-pass").name == "Jane"
    with pytest.raises(UnauthenticatedError):
        identity.authenticate("jane@acme.test", "wrong")
    with pytest.raises(UnauthenticatedError):
        identity.authenticate("nobody@acme.test", "jane-pass")


def test_bootstrap_admin_conflicting_organization_name(store: None) -> None:
    identity = IdentityService()
    identity.create_organization(OrganizationCreate(name="Acme"))

    with pytest.raises(ConflictError):
        identity.bootstrap_admin(
            BootstrapAdminRequest(
                organization_name="Acme",
                name="Admin",
                email="admin@acme.test",
                password="admin-pass",
            )
        )

    assert _count(User) == 0
    assert _count(Permission) == 0
    assert [org.name for org in identity.list_organizations()] == ["Acme"]


def test_bootstrap_admin_flags_existing_privileged_role(store: None) -> None:
    identity = IdentityService()
    existing = identity.create_role(RoleCreate(name=PRIVILEGED_ROLE_NAME))
    assert existing.is_privileged is False

    admin = identity.bootstrap_admin(
        BootstrapAdminRequest(
            organization_name="Acme",
            name="Admin",
            email="admin@acme.test",
            password="admin-pass",
        )
    )

    assert identity.get_role(existing.id).is_privileged is True
    role, _ = AssignmentService().list_user_grants(admin.id)[0]
    assert role.id == existing.id
