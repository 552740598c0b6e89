"""
MaintainOps Security Utilities

JWT handling for the tenant context that scopes every API call.
Identity is issued by an external provider; this module only signs and
verifies the bearer tokens the API accepts.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

REQUIRED_CLAIMS = ("sub", "tenant_id")


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a bearer token. Returns None when invalid."""
    runtime_settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None
    if any(not payload.get(claim) for claim in REQUIRED_CLAIMS):
        return None
    return payload
