from __future__ import annotations

import pytest

from rbac_engine.domain import permissions
from rbac_engine.domain.permissions import AccessMode, has_permissions, is_privileged_grant
from rbac_engine.services.authorization_service import (
    AuthorizationOutcome,
    ResolvedIdentity,
    ResolvedPermissions,
    RoleSummary,
    authorize,
)


def _identity(*names: str, privileged: bool = False) -> ResolvedIdentity:
    return ResolvedIdentity(
        user_id="user-1",
        organization_id="org-1",
        resolved=ResolvedPermissions(
            permissions=frozenset(names),
            roles=(RoleSummary(id="role-1", name="Editor"),),
            is_privileged=privileged,
        ),
    )


@pytest.mark.parametrize("mode", [AccessMode.ANY, AccessMode.ALL])
def test_empty_requirement_allows_any_identity(mode: AccessMode) -> None:
    assert authorize([], mode, _identity()) == AuthorizationOutcome.ALLOW
    assert authorize(["", ""], mode, _identity()) == AuthorizationOutcome.ALLOW


@pytest.mark.parametrize("mode", [AccessMode.ANY, AccessMode.ALL])
def test_privileged_identity_passes_everything(mode: AccessMode) -> None:
    identity = _identity(privileged=True)
    assert authorize(["anything", "ORDER_DELETE"], mode, identity) == AuthorizationOutcome.ALLOW


def test_all_mode_requires_every_permission() -> None:
    identity = _identity("ORDER_READ", "ORDER_UPDATE")
    assert authorize(["ORDER_READ", "ORDER_UPDATE"], AccessMode.ALL, identity) == AuthorizationOutcome.ALLOW
    assert authorize(["ORDER_READ", "ORDER_DELETE"], AccessMode.ALL, identity) == AuthorizationOutcome.FORBIDDEN


def test_any_mode_requires_one_permission() -> None:
    identity = _identity("ORDER_READ", "ORDER_UPDATE")
    assert authorize(["ORDER_DELETE", "ORDER_READ"], AccessMode.ANY, identity) == AuthorizationOutcome.ALLOW
    assert authorize(["ORDER_DELETE"], AccessMode.ANY, identity) == AuthorizationOutcome.FORBIDDEN


def test_missing_identity_is_unauthenticated_not_forbidden() -> None:
    assert authorize(["ORDER_READ"], AccessMode.ANY, None) == AuthorizationOutcome.UNAUTHENTICATED
    assert authorize([], AccessMode.ALL, None) == AuthorizationOutcome.UNAUTHENTICATED


def test_has_permissions_ignores_blank_entries() -> None:
    assert has_permissions({"A"}, ["A", ""], AccessMode.ALL)
    assert not has_permissions(set(), ["A"], AccessMode.ANY)
    assert has_permissions(set(), [], AccessMode.ANY)


def test_privileged_grant_rules() -> None:
    assert is_privileged_grant(["Editor"], {"ORDER_READ"}, role_flags=[True])
    assert is_privileged_grant(["Editor"], {"ALL_ACCESS"}, name_based=False)
    assert is_privileged_grant(["SUPER_ADMIN"], set(), name_based=True)
    assert is_privileged_grant(["Editor"], {"user_admin_panel"}, name_based=True)
    assert not is_privileged_grant(["Editor"], {"ORDER_READ"}, role_flags=[False], name_based=True)


def test_name_heuristic_can_be_disabled() -> None:
    assert not is_privileged_grant(["Super Admin"], {"ADMIN_PANEL"}, name_based=False)


def test_name_heuristic_follows_module_switch(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(permissions, "NAME_BASED_BYPASS", False)
    assert not is_privileged_grant(["superuser"], set())
    monkeypatch.setattr(permissions, "NAME_BASED_BYPASS", True)
    assert is_privileged_grant(["superuser"], set())


def test_blank_names_do_not_count_as_requirements() -> None:
    identity = _identity("ORDER_READ")
    assert authorize([""], AccessMode.ALL, identity) == AuthorizationOutcome.ALLOW
    assert authorize(["", "ORDER_DELETE"], AccessMode.ALL, identity) == AuthorizationOutcome.FORBIDDEN
    assert authorize(["", "ORDER_READ"], AccessMode.ALL, identity) == AuthorizationOutcome.ALLOW
