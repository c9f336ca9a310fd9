"""
Security Utilities

Verification of the bearer tokens sent by the dashboard. Tokens are issued
by the external auth provider with the user id in the "sub" claim; this
service never issues tokens to end users. create_access_token is kept for
service-to-service calls and tests.
"""

from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt

from core.config import get_settings

settings = get_settings()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign data as a JWT expiring after expires_delta (ACCESS_TOKEN_EXPIRE_MINUTES by default)."""
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.utcnow() + lifetime}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """
    Verify a token and return its claims.

    Returns:
        dict: Claims of a valid access token, or None for an invalid,
        expired or refresh token
    """
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if claims.get("type") == "refresh":
        return None
    return claims


def get_token_subject(token: str) -> Optional[str]:
    """User id carried by a valid access token, or None."""
    claims = decode_access_token(token)
    if not claims or not claims.get("sub"):
        return None
    return str(claims["sub"])
