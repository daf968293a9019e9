"""Session/identity gate.

A decoded token, or a principal object cached by a client, is not proof
of a live session: the session may have been ended elsewhere. Every
privileged decision asks this gate, which re-checks signature, expiry and
the revocation list on each call.
"""

import logging

from pydantic import BaseModel

from menuguard.auth.jwt import decode_token
from menuguard.auth.revocation import TokenRevocation
from menuguard.middleware.exceptions import SessionExpired

logger = logging.getLogger(__name__)


class Session(BaseModel):
    """A session that was live at the moment it was checked."""

    principal_id: str
    token_id: str
    issued_at: int | None = None
    expires_at: int

    model_config = {"frozen": True}


def principal_id_from_token(token: str | None) -> str | None:
    """Read the claimed principal without checking liveness."""
    if not token:
        return None
    return decode_token(token).get("sub")


class IdentityGate:
    def __init__(self, revocation=TokenRevocation):
        self.revocation = revocation

    async def current_session(self, token: str | None) -> Session | None:
        """Return the live session behind `token`, or None."""
        if not token:
            return None

        payload = decode_token(token)
        principal_id = payload.get("sub")
        token_id = payload.get("jti")
        if not principal_id or not token_id or payload.get("type") != "access":
            return None

        if await self.revocation.is_revoked(token_id):
            logger.debug(f"Session {token_id} was revoked")
            return None

        issued_at = payload.get("iat")
        if await self.revocation.is_user_revoked(principal_id, issued_at):
            logger.debug(f"All sessions for {principal_id} were revoked")
            return None

        return Session(
            principal_id=principal_id,
            token_id=token_id,
            issued_at=issued_at,
            expires_at=int(payload["exp"]),
        )

    async def is_session_live(self, token: str | None) -> bool:
        return await self.current_session(token) is not None

    async def require_live_session(self, token: str | None) -> Session:
        session = await self.current_session(token)
        if session is None:
            raise SessionExpired()
        return session

    async def end_session(self, session: Session) -> bool:
        return await self.revocation.revoke_token(session.token_id, session.expires_at)

    async def end_all_sessions(self, principal_id: str, duration: int) -> bool:
        return await self.revocation.revoke_all_user_sessions(principal_id, duration)
