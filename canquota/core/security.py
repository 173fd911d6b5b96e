"""Bearer-credential verification and JWT minting."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Protocol

from jose import JWTError, jwt

from .config import Settings, get_settings


class CredentialRejected(Exception):
    """The bearer credential could not be verified."""


class VerifiedCredential(dict):
    """Claims of a verified credential; `subject` is the stable user id."""

    @property
    def subject(self) -> str:
        return str(self["sub"])

    @property
    def email(self) -> str | None:
        value = self.get("email")
        return str(value).lower() if value else None


class CredentialVerifier(Protocol):
    async def verify(self, token: str) -> VerifiedCredential:
        ...


def create_access_token(
    data: Dict[str, Any],
    expires_delta: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    """Create a signed JWT access token for the provided payload."""

    settings = settings or get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    if settings.jwt_audience and "aud" not in to_encode:
        to_encode["aud"] = settings.jwt_audience
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """Decode a JWT access token and return its payload."""

    settings = settings or get_settings()
    options = {"verify_aud": bool(settings.jwt_audience)}
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience or None,
        options=options,
    )


class JwtCredentialVerifier:
    """Verifies HS-signed JWTs issued by the auth provider."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def verify(self, token: str) -> VerifiedCredential:
        if not self._settings.jwt_secret:
            raise CredentialRejected("credential verification is not configured")
        try:
            payload = decode_access_token(token, self._settings)
        except JWTError as exc:
            raise CredentialRejected("invalid token") from exc
        if not payload.get("sub"):
            raise CredentialRejected("token has no subject")
        return VerifiedCredential(payload)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer ...` header value."""

    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
