from __future__ import annotations


class RbacError(Exception):
    pass


class NotFoundError(RbacError):
    """An owner id or association target does not exist."""


class ConflictError(RbacError):
    """A uniqueness rule would be broken (duplicate name, store already initialized)."""


class IntegrityViolationError(RbacError):
    """An association would break a cascade or ordering invariant."""


class UnauthenticatedError(RbacError):
    """No resolvable session."""


class ForbiddenError(RbacError):
    """A session was resolved but it lacks the permission."""


class StoreUnavailableError(RbacError):
    """Transient store failure. Safe to retry at the caller's discretion."""
