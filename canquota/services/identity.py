"""Caller identity resolution for the enforcement boundary.

Authenticated callers are identified by the subject of a verified bearer
credential. Everyone else gets a privacy-preserving anonymous id: the SHA-256
of the client IP and a sanitized, client-supplied fingerprint. The
fingerprint is an untrusted hint; it only narrows the anonymous bucket and
never grants anything by itself.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping

import structlog

from ..core.config import Settings
from ..core.errors import InvalidRequest
from ..core.security import CredentialRejected, CredentialVerifier, bearer_token
from ..domain.identity import Identity

logger = structlog.get_logger(__name__)

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")

# Checked in order; the first non-empty value wins.
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def sanitize_fingerprint(raw: str | None, max_length: int = 500) -> str:
    """Validate a client fingerprint and reduce it to `[A-Za-z0-9]{0,max_length}`."""

    if not raw:
        raise InvalidRequest("Fingerprint required")
    if len(raw) > max_length:
        raise InvalidRequest("Invalid fingerprint")
    return _NON_ALPHANUMERIC.sub("", raw)[:max_length]


def anonymous_id_for(ip_address: str, sanitized_fingerprint: str) -> str:
    combined = f"{ip_address}:{sanitized_fingerprint}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def extract_client_ip(
    headers: Mapping[str, str],
    client_host: str | None = None,
    *,
    trust_socket_address: bool = False,
) -> str:
    """Pick the caller's IP from trusted proxy headers."""

    lowered = {key.lower(): value for key, value in headers.items()}
    for header in CLIENT_IP_HEADERS:
        value = lowered.get(header)
        if not value:
            continue
        candidate = value.split(",")[0].strip()
        if candidate and candidate.lower() != "unknown":
            return candidate
    if trust_socket_address and client_host:
        return client_host
    raise InvalidRequest("Invalid request")


class IdentityResolver:
    """Turns request metadata into an `Identity`."""

    def __init__(self, settings: Settings, verifier: CredentialVerifier) -> None:
        self._settings = settings
        self._verifier = verifier

    async def resolve(
        self,
        *,
        headers: Mapping[str, str],
        fingerprint: str | None,
        client_host: str | None = None,
        authorization: str | None = None,
    ) -> Identity:
        ip_address = extract_client_ip(
            headers,
            client_host,
            trust_socket_address=self._settings.trust_socket_address,
        )
        sanitized = sanitize_fingerprint(fingerprint, self._settings.max_fingerprint_length)

        token = bearer_token(authorization)
        if token is not None:
            try:
                credential = await self._verifier.verify(token)
            except CredentialRejected as exc:
                # Bad credentials degrade to anonymous; they never block usage.
                logger.warning("identity.credential_rejected", reason=str(exc))
            else:
                return Identity.authenticated(
                    credential.subject,
                    ip_address=ip_address,
                    fingerprint=sanitized,
                    email=credential.email,
                )

        return Identity.anonymous(
            anonymous_id_for(ip_address, sanitized),
            ip_address=ip_address,
            fingerprint=sanitized,
        )
