"""Settings parsing, credential verification and the operator CLI."""

from datetime import timedelta

import pytest

from canquota.core.config import get_settings
from canquota.core.security import (
    CredentialRejected,
    JwtCredentialVerifier,
    bearer_token,
    create_access_token,
    decode_access_token,
)
from canquota.manage import main

from .conftest import make_settings


def test_admin_emails_and_origins_are_parsed():
    settings = make_settings(
        admin_emails_raw=" Admin@Example.com , ops@example.com,",
        cors_origins_raw="https://a.example.com, https://b.example.com",
    )

    assert settings.admin_emails == ["admin@example.com", "ops@example.com"]
    assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]
    assert settings.daily_limit_for(False) == 5
    assert settings.daily_limit_for(True) == 10


def test_environment_prefix(monkeypatch):
    monkeypatch.setenv("CANQUOTA_ANONYMOUS_DAILY_LIMIT", "3")
    monkeypatch.setenv("CANQUOTA_ADMIN_EMAILS", "root@example.com")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.anonymous_daily_limit == 3
        assert settings.admin_emails == ["root@example.com"]
    finally:
        get_settings.cache_clear()


def test_bearer_token_parsing():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("bearer  abc ") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer ") is None
    assert bearer_token(None) is None


async def test_verifier_accepts_valid_token():
    settings = make_settings()
    token = create_access_token({"sub": "user-1", "email": "A@B.com"}, settings=settings)

    credential = await JwtCredentialVerifier(settings).verify(token)

    assert credential.subject == "user-1"
    assert credential.email == "a@b.com"
    assert decode_access_token(token, settings)["aud"] == "authenticated"


async def test_verifier_rejects_expired_token():
    settings = make_settings()
    token = create_access_token(
        {"sub": "user-1"}, expires_delta=timedelta(minutes=-5), settings=settings
    )

    with pytest.raises(CredentialRejected):
        await JwtCredentialVerifier(settings).verify(token)


async def test_verifier_rejects_token_without_subject():
    settings = make_settings()
    token = create_access_token({"email": "a@b.com"}, settings=settings)

    with pytest.raises(CredentialRejected):
        await JwtCredentialVerifier(settings).verify(token)


async def test_verifier_without_secret_rejects_everything():
    settings = make_settings(jwt_secret="")

    with pytest.raises(CredentialRejected):
        await JwtCredentialVerifier(settings).verify("anything")


def test_manage_issue_token(monkeypatch, capsys):
    monkeypatch.setenv("CANQUOTA_JWT_SECRET", "cli-secret")
    get_settings.cache_clear()
    try:
        main(["issue-token", "user-9", "user9@example.com"])
        token = capsys.readouterr().out.strip().splitlines()[-1]
        payload = decode_access_token(token, get_settings())
    finally:
        get_settings.cache_clear()

    assert payload["sub"] == "user-9"
    assert payload["email"] == "user9@example.com"


def test_manage_unknown_command_exits(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["frobnicate"])

    assert excinfo.value.code == 1
    assert "Unknown command" in capsys.readouterr().out


def test_otlp_headers_parsing():
    from canquota.telemetry import otlp_headers

    assert otlp_headers("api-key=abc, x-team = quota,broken,=skip") == {
        "api-key": "abc",
        "x-team": "quota",
    }
    assert otlp_headers(None) == {}
