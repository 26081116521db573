"""JWT token creation and verification.

Learn: In "jwt" identity mode the provider signs access tokens with a
secret we share (HS256). Verification is local and can't suffer a
transient outage, which is why it's the default for development.

create_access_token() mints tokens in the provider's format. It's used by
`taskroom mint-token` and the test-suite, never by request handling.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from taskroom.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    subject_id: str,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a provider-style JWT access token for `subject_id`."""
    now = datetime.now(timezone.utc)
    expires = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": subject_id,
        "exp": expires,
        "iat": now,
    }
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    options = {"require": ["sub", "exp"]}
    kwargs = {}
    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        options["verify_aud"] = False
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options=options,
            **kwargs,
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
