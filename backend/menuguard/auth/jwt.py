"""JWT access tokens.

Token claims:
  - sub:    principal (user) ID
  - jti:    unique token ID, the key used by the revocation list
  - type:   "access"
  - iat:    issued-at timestamp
  - exp:    expiry timestamp

Tokens carry identity only. Permissions are always resolved from the
store, so a revoked role never survives inside a still-valid token.
"""

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from menuguard.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: str,
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "jti": uuid.uuid4().hex,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
