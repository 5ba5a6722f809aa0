from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from rbac_engine.domain.errors import UnauthenticatedError
from rbac_engine.infra import auth
from rbac_engine.services.session_service import SessionService


def test_issue_and_resolve_round_trip() -> None:
    service = SessionService()
    token = service.issue_session("user-1", "org-1")

    context = service.resolve_session(token)

    assert context.user_id == "user-1"
    assert context.organization_id == "org-1"
    assert context.expires_at > datetime.now(UTC)


def test_default_lifetime_follows_ttl() -> None:
    before = datetime.now(UTC)
    context = SessionService().resolve_session(SessionService().issue_session("user-1"))

    assert context.organization_id is None
    expected = before + timedelta(minutes=auth.SESSION_TTL_MIN)
    assert abs((context.expires_at - expected).total_seconds()) < 5


def test_explicit_organization_overrides_for_one_call_only() -> None:
    service = SessionService()
    token = service.issue_session("user-1", "org-1")

    assert service.resolve_session(token, "org-2").organization_id == "org-2"
    assert service.resolve_session(token).organization_id == "org-1"


@pytest.mark.parametrize("token", [None, "", "not-a-token"])
def test_missing_or_malformed_token_is_unauthenticated(token: str | None) -> None:
    with pytest.raises(UnauthenticatedError):
        SessionService().resolve_session(token)


def test_expired_token_is_unauthenticated() -> None:
    service = SessionService()
    token = service.issue_session("user-1", "org-1", datetime.now(UTC) - timedelta(minutes=1))

    with pytest.raises(UnauthenticatedError):
        service.resolve_session(token)


def test_foreign_signature_is_unauthenticated() -> None:
    expires = datetime.now(UTC) + timedelta(minutes=5)
    forged = jwt.encode(
        {"sub": "user-1", "org_id": "org-1", "exp": int(expires.timestamp())},
        "someone-elses-secret",
        algorithm="HS256",
    )

    with pytest.raises(UnauthenticatedError):
        SessionService().resolve_session(forged)


def test_token_without_subject_is_unauthenticated() -> None:
    expires = datetime.now(UTC) + timedelta(minutes=5)
    token = jwt.encode(
        {"org_id": "org-1", "exp": int(expires.timestamp())},
        auth.SESSION_SECRET,
        algorithm=auth.SESSION_ALGORITHM,
    )

    with pytest.raises(UnauthenticatedError):
        SessionService().resolve_session(token)


def test_switch_organization_keeps_expiry() -> None:
    service = SessionService()
    expires = datetime.now(UTC) + timedelta(hours=2)
    context = service.resolve_session(service.issue_session("user-1", "org-1", expires))

    switched = service.resolve_session(service.switch_organization(context, "org-2"))

    assert switched.user_id == "user-1"
    assert switched.organization_id == "org-2"
    assert switched.expires_at == context.expires_at


def test_password_hash_round_trip(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth, "PASSWORD_HASH_ITERATIONS", 1000)
    hashed = auth.hash_password("s3cret")

    assert hashed.startswith("pbkdf2_sha256$1000$")
    assert auth.verify_password("s3cret", hashed)
    assert not auth.verify_password("wrong", hashed)
    assert not auth.verify_password("s3cret", "garbage")
