"""Caller authentication for the queue endpoint."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from applypass.config import AuthSettings
from applypass.queue.errors import UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class UserIdentity:
    owner_id: str
    email: str | None = None


class UserTokenVerifier(Protocol):
    """Resolves a bearer token to the task owner it belongs to."""

    def verify(self, token: str) -> UserIdentity:
        """Return the identity or raise UnauthorizedError."""


class StaticTokenVerifier:
    """Token → owner map configured through ``APPLYPASS_USER_TOKENS``."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self.tokens = dict(tokens)

    def verify(self, token: str) -> UserIdentity:
        for known, owner_id in self.tokens.items():
            if hmac.compare_digest(known.encode("utf-8"), token.encode("utf-8")):
                return UserIdentity(owner_id=owner_id)
        raise UnauthorizedError("Invalid user token")


class SupabaseTokenVerifier:
    """Validate access tokens against the Supabase auth ``/user`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        anon_key: str,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.user_url = f"{base_url.rstrip('/')}/auth/v1/user"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"apikey": anon_key},
            transport=transport,
        )

    def verify(self, token: str) -> UserIdentity:
        try:
            response = self._client.get(
                self.user_url,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Supabase token check failed: %s", exc)
            raise UnauthorizedError("Could not verify user token") from exc

        if not response.is_success:
            raise UnauthorizedError("Invalid user token")
        try:
            body = response.json()
        except ValueError as exc:
            raise UnauthorizedError("Invalid user token") from exc
        owner_id = str(body.get("id") or "").strip() if isinstance(body, dict) else ""
        if not owner_id:
            raise UnauthorizedError("Invalid user token")
        email = body.get("email")
        return UserIdentity(owner_id=owner_id, email=email if isinstance(email, str) else None)

    def close(self) -> None:
        self._client.close()


def build_user_verifier(settings: AuthSettings) -> UserTokenVerifier:
    if settings.supabase_url and settings.supabase_anon_key:
        return SupabaseTokenVerifier(
            base_url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
        )
    return StaticTokenVerifier(settings.user_tokens)


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def check_worker_token(presented: str | None, configured: str) -> None:
    """Reject unless ``presented`` matches a non-empty configured secret."""

    if not configured:
        raise UnauthorizedError("Worker token is not configured")
    if not presented or not hmac.compare_digest(
        presented.encode("utf-8"),
        configured.encode("utf-8"),
    ):
        raise UnauthorizedError("Invalid worker token")
