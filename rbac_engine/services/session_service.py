from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import jwt

from rbac_engine.domain.errors import UnauthenticatedError
from rbac_engine.infra.auth import create_session_token, decode_session_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    organization_id: str | None
    expires_at: datetime


class SessionService:
    """Issues and resolves session tokens.

    An explicit organization id passed to ``resolve_session`` applies to that
    call only; ``switch_organization`` is the one way to persist a new
    selection, by re-issuing the token.
    """

    def issue_session(
        self,
        user_id: str,
        organization_id: str | None = None,
        expires_at: datetime | None = None,
    ) -> str:
        return create_session_token(
            user_id=user_id,
            organization_id=organization_id,
            expires_at=expires_at,
        )

    def resolve_session(self, token: str | None, explicit_organization_id: str | None = None) -> SessionContext:
        if not token:
            raise UnauthenticatedError("missing session")
        try:
            record = decode_session_token(token)
        except (jwt.PyJWTError, ValueError) as exc:
            logger.info("rbac.session.rejected", extra={"reason": type(exc).__name__})
            raise UnauthenticatedError("invalid session") from exc
        return SessionContext(
            user_id=record.user_id,
            organization_id=explicit_organization_id or record.organization_id,
            expires_at=record.expires_at,
        )

    def switch_organization(self, context: SessionContext, organization_id: str) -> str:
        token = create_session_token(
            user_id=context.user_id,
            organization_id=organization_id,
            expires_at=context.expires_at,
        )
        logger.info(
            "rbac.session.organization_switched",
            extra={"target_organization_id": organization_id},
        )
        return token
