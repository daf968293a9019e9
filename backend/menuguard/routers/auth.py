"""Session endpoints.

Sign-in is handled by the identity provider; this service only ends
sessions so that every later check through the identity gate fails.

Endpoints:
    POST   /api/auth/logout        End the current session
    POST   /api/auth/logout-all    End every session of the caller
"""

from fastapi import APIRouter, Depends, status

from menuguard.auth.deps import get_current_session, get_identity_gate
from menuguard.auth.session import IdentityGate, Session
from menuguard.config import settings

router = APIRouter()


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    session: Session = Depends(get_current_session),
    gate: IdentityGate = Depends(get_identity_gate),
):
    await gate.end_session(session)


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT)
async def logout_all(
    session: Session = Depends(get_current_session),
    gate: IdentityGate = Depends(get_identity_gate),
):
    await gate.end_all_sessions(
        session.principal_id,
        duration=settings.access_token_expire_minutes * 60,
    )
