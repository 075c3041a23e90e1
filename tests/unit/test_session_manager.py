"""Unit tests for SessionManager refresh/login fallback."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.delivery_collector.auth.credential_store import CredentialStore
from src.delivery_collector.auth.providers import TokenGrant
from src.delivery_collector.auth.session import SessionManager, redact_text
from src.delivery_collector.exceptions import AuthenticationImpossibleError, AuthRejectedError
from src.delivery_collector.schemas.accounts import (
    Account,
    CredentialBundle,
    GojekProfile,
    GrabProfile,
    Platform,
)


def make_provider(supports_refresh=True):
    provider = MagicMock()
    provider.supports_refresh = supports_refresh
    provider.refresh = AsyncMock()
    provider.login = AsyncMock()
    return provider


@pytest.fixture
def credential_store(tmp_path):
    return CredentialStore(tmp_path / "stats.db")


@pytest.fixture
def gojek_account():
    return Account(
        name="resto",
        gojek=GojekProfile(
            credentials=CredentialBundle(
                access_token="old-access",
                refresh_token="old-refresh",
                username="owner@example.com",
                password="hunter2",
            ),
            merchant_id="M-1",
        ),
    )


@pytest.mark.asyncio
async def test_ensure_valid_refreshes_exactly_once(credential_store, gojek_account):
    """A valid refresh token gives one refresh call, then the cache answers."""
    provider = make_provider()
    provider.refresh.return_value = TokenGrant(access_token="new-access", refresh_token="new-refresh")
    manager = SessionManager(MagicMock(), credential_store, {Platform.GOJEK: provider})

    first = await manager.ensure_valid(gojek_account, Platform.GOJEK)
    second = await manager.ensure_valid(gojek_account, Platform.GOJEK)

    assert provider.refresh.await_count == 1
    provider.login.assert_not_awaited()
    assert first.access_token == "new-access"
    assert second is first


@pytest.mark.asyncio
async def test_new_tokens_are_persisted_before_return(credential_store, gojek_account):
    provider = make_provider()
    provider.refresh.return_value = TokenGrant(access_token="new-access", refresh_token="new-refresh")
    manager = SessionManager(MagicMock(), credential_store, {Platform.GOJEK: provider})

    await manager.ensure_valid(gojek_account, Platform.GOJEK)

    stored = credential_store.load(gojek_account, Platform.GOJEK)
    assert stored.access_token == "new-access"
    assert stored.refresh_token == "new-refresh"
    assert stored.updated_at is not None


@pytest.mark.asyncio
async def test_refresh_failure_falls_back_to_login(credential_store, gojek_account):
    provider = make_provider()
    provider.refresh.side_effect = AuthRejectedError("refresh token revoked")
    provider.login.return_value = TokenGrant(access_token="login-access", refresh_token="login-refresh")
    manager = SessionManager(MagicMock(), credential_store, {Platform.GOJEK: provider})

    bundle = await manager.ensure_valid(gojek_account, Platform.GOJEK)

    assert bundle.access_token == "login-access"
    provider.login.assert_awaited_once()


@pytest.mark.asyncio
async def test_refresh_and_login_failing_raises(credential_store, gojek_account):
    provider = make_provider()
    provider.refresh.side_effect = AuthRejectedError("refresh refused")
    provider.login.side_effect = AuthRejectedError("bad password")
    manager = SessionManager(MagicMock(), credential_store, {Platform.GOJEK: provider})

    with pytest.raises(AuthenticationImpossibleError) as exc_info:
        await manager.ensure_valid(gojek_account, Platform.GOJEK)

    assert "account=resto" in str(exc_info.value)
    assert "platform=gojek" in str(exc_info.value)


@pytest.mark.asyncio
async def test_errors_do_not_leak_password(credential_store, gojek_account):
    provider = make_provider()
    provider.refresh.side_effect = AuthRejectedError("refresh refused")
    provider.login.side_effect = AuthRejectedError("rejected hunter2 for owner")
    manager = SessionManager(MagicMock(), credential_store, {Platform.GOJEK: provider})

    with pytest.raises(AuthenticationImpossibleError) as exc_info:
        await manager.ensure_valid(gojek_account, Platform.GOJEK)

    assert "hunter2" not in str(exc_info.value)
    assert "[REDACTED]" in str(exc_info.value)


@pytest.mark.asyncio
async def test_grab_logs_in_without_refresh(credential_store):
    account = Account(
        name="resto",
        grab=GrabProfile(credentials=CredentialBundle(username="owner", password="pw")),
    )
    provider = make_provider(supports_refresh=False)
    provider.login.return_value = TokenGrant(access_token="jwt-token")
    manager = SessionManager(MagicMock(), credential_store, {Platform.GRAB: provider})

    bundle = await manager.ensure_valid(account, Platform.GRAB)

    assert bundle.access_token == "jwt-token"
    provider.refresh.assert_not_awaited()


@pytest.mark.asyncio
async def test_stored_token_used_when_nothing_to_renew_with(credential_store):
    account = Account(
        name="resto",
        grab=GrabProfile(credentials=CredentialBundle(access_token="configured-jwt")),
    )
    provider = make_provider(supports_refresh=False)
    manager = SessionManager(MagicMock(), credential_store, {Platform.GRAB: provider})

    bundle = await manager.ensure_valid(account, Platform.GRAB)

    assert bundle.access_token == "configured-jwt"
    provider.login.assert_not_awaited()


@pytest.mark.asyncio
async def test_forced_refresh_requires_renewal(credential_store):
    """After a 401 an unrenewable stored token is not good enough."""
    account = Account(
        name="resto",
        grab=GrabProfile(credentials=CredentialBundle(access_token="expired-jwt")),
    )
    provider = make_provider(supports_refresh=False)
    manager = SessionManager(MagicMock(), credential_store, {Platform.GRAB: provider})

    with pytest.raises(AuthenticationImpossibleError):
        await manager.refresh(account, Platform.GRAB)


@pytest.mark.asyncio
async def test_forced_refresh_replaces_cached_bundle(credential_store, gojek_account):
    provider = make_provider()
    provider.refresh.side_effect = [
        TokenGrant(access_token="first", refresh_token="r1"),
        TokenGrant(access_token="second", refresh_token="r2"),
    ]
    manager = SessionManager(MagicMock(), credential_store, {Platform.GOJEK: provider})

    await manager.ensure_valid(gojek_account, Platform.GOJEK)
    await manager.refresh(gojek_account, Platform.GOJEK)
    cached = await manager.ensure_valid(gojek_account, Platform.GOJEK)

    assert cached.access_token == "second"
    assert provider.refresh.await_count == 2


def test_redact_text_replaces_every_secret():
    text = "token=abc refresh=def password=ghi"

    assert redact_text(text, ["abc", None, "ghi"]) == "token=[REDACTED] refresh=def password=[REDACTED]"
