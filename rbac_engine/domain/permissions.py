from __future__ import annotations

import os
from collections.abc import Collection, Iterable, Sequence
from enum import StrEnum

PERM_ALL_ACCESS = "ALL_ACCESS"
PERM_USER_READ = "USER_READ"
PERM_USER_WRITE = "USER_WRITE"
PERM_ORGANIZATION_READ = "ORGANIZATION_READ"
PERM_ORGANIZATION_WRITE = "ORGANIZATION_WRITE"
PERM_ROLE_READ = "ROLE_READ"
PERM_ROLE_WRITE = "ROLE_WRITE"
PERM_PERMISSION_READ = "PERMISSION_READ"
PERM_PERMISSION_WRITE = "PERMISSION_WRITE"

GROUP_USER_MANAGEMENT = "User Management"
GROUP_ACCESS_MANAGEMENT = "Access Management"

# name -> (description, group name)
DEFAULT_PERMISSIONS: dict[str, tuple[str, str | None]] = {
    PERM_ALL_ACCESS: ("unrestricted access", None),
    PERM_USER_READ: ("list and view users", GROUP_USER_MANAGEMENT),
    PERM_USER_WRITE: ("create, update and delete users", GROUP_USER_MANAGEMENT),
    PERM_ORGANIZATION_READ: ("list and view organizations", GROUP_USER_MANAGEMENT),
    PERM_ORGANIZATION_WRITE: ("create, update and delete organizations", GROUP_USER_MANAGEMENT),
    PERM_ROLE_READ: ("list and view roles", GROUP_ACCESS_MANAGEMENT),
    PERM_ROLE_WRITE: ("create, update and delete roles", GROUP_ACCESS_MANAGEMENT),
    PERM_PERMISSION_READ: ("list and view permissions", GROUP_ACCESS_MANAGEMENT),
    PERM_PERMISSION_WRITE: ("create, update and delete permissions", GROUP_ACCESS_MANAGEMENT),
}

DEFAULT_PERMISSION_GROUPS: dict[str, str] = {
    GROUP_USER_MANAGEMENT: "permissions related to users and organizations",
    GROUP_ACCESS_MANAGEMENT: "permissions related to roles and permissions",
}

PRIVILEGED_ROLE_NAME = "Super Admin"
PRIVILEGED_ROLE_MARKER = "super"
PRIVILEGED_PERMISSION_MARKER = "admin"

NAME_BASED_BYPASS = os.getenv("RBAC_NAME_BASED_BYPASS", "1") != "0"


class AccessMode(StrEnum):
    ANY = "ANY"
    ALL = "ALL"


def is_privileged_grant(
    role_names: Iterable[str],
    permission_names: Collection[str],
    *,
    role_flags: Iterable[bool] = (),
    name_based: bool | None = None,
) -> bool:
    """Return True when the held roles/permissions carry the privileged bypass.

    The explicit role flag and the ``ALL_ACCESS`` sentinel always count. The
    substring rules ("super" in a role name, "admin" in a permission name) are
    applied unless disabled through ``RBAC_NAME_BASED_BYPASS=0``.
    """
    if any(role_flags):
        return True
    if PERM_ALL_ACCESS in permission_names:
        return True
    if name_based is None:
        name_based = NAME_BASED_BYPASS
    if not name_based:
        return False
    if any(PRIVILEGED_ROLE_MARKER in name.casefold() for name in role_names):
        return True
    return any(PRIVILEGED_PERMISSION_MARKER in name.casefold() for name in permission_names)


def has_permissions(
    granted: Collection[str],
    required: Sequence[str],
    mode: AccessMode = AccessMode.ALL,
) -> bool:
    """Check ``required`` against ``granted``.

    Empty names are dropped before the check, so a list holding only blanks
    counts as no requirement at all.
    """
    expected = [item for item in required if item]
    if not expected:
        return True
    if mode == AccessMode.ANY:
        return any(permission in granted for permission in expected)
    return all(permission in granted for permission in expected)
