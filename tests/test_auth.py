from __future__ import annotations

import allure
import httpx
import pytest

from applypass.api.auth import (
    StaticTokenVerifier,
    SupabaseTokenVerifier,
    UserIdentity,
    bearer_token,
    build_user_verifier,
    check_worker_token,
)
from applypass.config import AuthSettings
from applypass.queue.errors import UnauthorizedError

pytestmark = [
    allure.epic("Queue Endpoint"),
    allure.feature("Action Dispatch & Auth"),
]


def _supabase(handler) -> SupabaseTokenVerifier:
    return SupabaseTokenVerifier(
        base_url="https://project.supabase.co/",
        anon_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Bearer abc", "abc"),
        ("bearer   abc ", "abc"),
        ("Basic abc", None),
        ("Bearer ", None),
        (None, None),
    ],
)
def test_bearer_token(header: str | None, expected: str | None) -> None:
    assert bearer_token(header) == expected


def test_check_worker_token() -> None:
    check_worker_token("secret", "secret")

    with pytest.raises(UnauthorizedError, match="Invalid worker token"):
        check_worker_token("wrong", "secret")
    with pytest.raises(UnauthorizedError, match="Invalid worker token"):
        check_worker_token(None, "secret")
    with pytest.raises(UnauthorizedError, match="not configured"):
        check_worker_token("", "")


def test_static_verifier_maps_token_to_owner() -> None:
    verifier = StaticTokenVerifier({"tok-a": "owner-a"})

    assert verifier.verify("tok-a") == UserIdentity(owner_id="owner-a")
    with pytest.raises(UnauthorizedError):
        verifier.verify("tok-b")


def test_supabase_verifier_resolves_user() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "user-123", "email": "ada@example.com"})

    identity = _supabase(handler).verify("access-token")

    assert identity == UserIdentity(owner_id="user-123", email="ada@example.com")
    assert str(seen[0].url) == "https://project.supabase.co/auth/v1/user"
    assert seen[0].headers["apikey"] == "anon-key"
    assert seen[0].headers["authorization"] == "Bearer access-token"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"msg": "invalid JWT"}),
        httpx.Response(200, json={"email": "no-id@example.com"}),
        httpx.Response(200, text="not json"),
    ],
)
def test_supabase_verifier_rejects_bad_tokens(response: httpx.Response) -> None:
    verifier = _supabase(lambda _: response)

    with pytest.raises(UnauthorizedError, match="Invalid user token"):
        verifier.verify("access-token")


def test_supabase_verifier_maps_transport_errors() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UnauthorizedError, match="Could not verify"):
        _supabase(refuse).verify("access-token")


def test_build_user_verifier_prefers_supabase() -> None:
    supabase = build_user_verifier(
        AuthSettings(supabase_url="https://project.supabase.co", supabase_anon_key="anon"),
    )
    static = build_user_verifier(AuthSettings(user_tokens={"tok": "owner"}))

    assert isinstance(supabase, SupabaseTokenVerifier)
    assert isinstance(static, StaticTokenVerifier)
