"""Identity verifier — bearer credential → stable subject id.

Learn: Both the HTTP entry path and the WebSocket handshake call
`verify()`. It has exactly three outcomes:

1. VerifiedIdentity — the credential is good
2. InvalidCredentialError — the credential is bad (→ 401 / close 4001)
3. IdentityUnavailableError — we couldn't ask (→ 503 / close 1013)

Outcome 3 must never be folded into 2. A provider outage is retryable;
telling the client its token is invalid would make it log out.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import structlog

from taskroom.auth.jwt import TokenError, verify_token
from taskroom.config import Settings
from taskroom.errors import AuthRequiredError, UpstreamUnavailableError

logger = structlog.get_logger()


class InvalidCredentialError(AuthRequiredError):
    """The provider rejected the credential."""


class IdentityUnavailableError(UpstreamUnavailableError):
    """The provider could not be reached or answered with a server error."""


@dataclass(frozen=True)
class VerifiedIdentity:
    subject_id: str
    email: Optional[str] = None


class IdentityVerifier(Protocol):
    async def verify(self, credential: str) -> VerifiedIdentity: ...

    async def aclose(self) -> None: ...


class JwtIdentityVerifier:
    """Verifies provider-signed JWTs locally."""

    async def verify(self, credential: str) -> VerifiedIdentity:
        if not credential:
            raise InvalidCredentialError("Authentication required")
        try:
            payload = verify_token(credential)
        except TokenError as e:
            raise InvalidCredentialError(str(e))
        return VerifiedIdentity(
            subject_id=str(payload["sub"]),
            email=payload.get("email"),
        )

    async def aclose(self) -> None:
        return None


class HttpIdentityVerifier:
    """Asks the identity provider's user endpoint about every credential.

    Learn: Transport errors and 5xx answers are retried with exponential
    backoff; 401/403 are final. Anything still failing after the last
    attempt becomes IdentityUnavailableError.
    """

    USER_PATH = "/auth/v1/user"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        retries: int = 2,
        backoff: float = 0.2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"apikey": api_key} if api_key else {}
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self.retries = retries
        self.backoff = backoff

    async def verify(self, credential: str) -> VerifiedIdentity:
        if not credential:
            raise InvalidCredentialError("Authentication required")

        last_error = "no attempt made"
        for attempt in range(self.retries + 1):
            if attempt:
                await asyncio.sleep(self.backoff * (2 ** (attempt - 1)))
            try:
                resp = await self.client.get(
                    self.USER_PATH,
                    headers={"Authorization": f"Bearer {credential}"},
                )
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "identity.transport_error", attempt=attempt, error=last_error
                )
                continue

            if resp.status_code in (401, 403):
                raise InvalidCredentialError("Invalid or expired token")
            if resp.status_code >= 500:
                last_error = f"provider returned {resp.status_code}"
                logger.warning(
                    "identity.provider_error",
                    attempt=attempt,
                    status=resp.status_code,
                )
                continue
            if resp.status_code != 200:
                raise InvalidCredentialError(
                    f"Credential rejected by provider ({resp.status_code})"
                )

            try:
                user = resp.json()
                return VerifiedIdentity(
                    subject_id=str(user["id"]), email=user.get("email")
                )
            except (ValueError, KeyError, TypeError):
                # 200 with a body we can't read is the provider misbehaving,
                # not the caller's credential being wrong.
                last_error = "malformed provider response"
                logger.warning("identity.malformed_response", attempt=attempt)

        raise IdentityUnavailableError(
            f"Identity provider unavailable ({last_error})"
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def build_identity_verifier(cfg: Settings) -> IdentityVerifier:
    """Construct the verifier selected by TASKROOM_IDENTITY_MODE."""
    if cfg.identity_mode == "http":
        return HttpIdentityVerifier(
            base_url=cfg.identity_url,
            api_key=cfg.identity_api_key,
            timeout=cfg.identity_timeout_seconds,
            retries=cfg.identity_retries,
            backoff=cfg.identity_retry_backoff_seconds,
        )
    return JwtIdentityVerifier()
