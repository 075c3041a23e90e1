"""Per-account, per-platform credential lifecycle."""
import asyncio
import logging
from typing import Optional

import aiohttp

from ..exceptions import AuthenticationImpossibleError, AuthRejectedError
from ..schemas.accounts import Account, CredentialBundle, Platform
from .credential_store import CredentialStore
from .providers import AuthProvider, TokenGrant, default_providers


logger = logging.getLogger(__name__)


def redact_text(text: str, secrets: list[Optional[str]]) -> str:
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


class SessionManager:
    """Hands out credentials that were validated during this process.

    The first ``ensure_valid`` call for an (account, platform) pair goes to
    the network: refresh when a refresh token exists, otherwise (or when the
    refresh is refused) a username/password login. New tokens are written to
    the credential store before they are returned. Later calls reuse the
    cached bundle until ``refresh`` is forced after an unauthorized response.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        credential_store: CredentialStore,
        providers: Optional[dict[Platform, AuthProvider]] = None,
    ) -> None:
        """Initialize session manager.

        Args:
            session: Injected aiohttp ClientSession
            credential_store: Durable store for rotated tokens
            providers: Token endpoint clients per platform (defaults to the
                real GoJek and Grab endpoints)
        """
        self.session = session
        self.credential_store = credential_store
        self.providers = providers or default_providers(session)
        self._validated: dict[tuple[str, Platform], CredentialBundle] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, account_name: str) -> asyncio.Lock:
        lock = self._locks.get(account_name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_name] = lock
        return lock

    async def ensure_valid(self, account: Account, platform: Platform) -> CredentialBundle:
        """Return a credential validated earlier in this process.

        Raises:
            AuthenticationImpossibleError: If refresh and login both fail
        """
        key = (account.name, platform)
        cached = self._validated.get(key)
        if cached is not None:
            return cached

        async with self._lock_for(account.name):
            cached = self._validated.get(key)
            if cached is not None:
                return cached

            bundle = self.credential_store.load(account, platform)
            renewed = await self._renew(account, platform, bundle, allow_unverified=True)
            self._validated[key] = renewed
            return renewed

    async def refresh(self, account: Account, platform: Platform) -> CredentialBundle:
        """Force a refresh-then-login cycle after an unauthorized response.

        Raises:
            AuthenticationImpossibleError: If refresh and login both fail
        """
        key = (account.name, platform)
        async with self._lock_for(account.name):
            self._validated.pop(key, None)
            bundle = self.credential_store.load(account, platform)
            renewed = await self._renew(account, platform, bundle, allow_unverified=False)
            self._validated[key] = renewed
            return renewed

    async def _renew(
        self,
        account: Account,
        platform: Platform,
        bundle: CredentialBundle,
        allow_unverified: bool,
    ) -> CredentialBundle:
        provider = self.providers.get(platform)
        if provider is None:
            raise AuthenticationImpossibleError(
                account.name, platform.value, "no auth provider registered"
            )

        errors: list[str] = []

        if bundle.refresh_token and provider.supports_refresh:
            try:
                grant = await provider.refresh(bundle)
                logger.info("Refreshed %s token for account=%s", platform.value, account.name)
                return await self._persist(account, platform, bundle, grant)
            except AuthRejectedError as exc:
                message = redact_text(str(exc), bundle.secrets())
                errors.append(f"refresh: {message}")
                logger.warning(
                    "Token refresh failed for account=%s, platform=%s: %s",
                    account.name,
                    platform.value,
                    message,
                )

        if bundle.can_login:
            try:
                grant = await provider.login(bundle)
                logger.info("Logged in to %s for account=%s", platform.value, account.name)
                return await self._persist(account, platform, bundle, grant)
            except AuthRejectedError as exc:
                message = redact_text(str(exc), bundle.secrets())
                errors.append(f"login: {message}")
                logger.warning(
                    "Login failed for account=%s, platform=%s: %s",
                    account.name,
                    platform.value,
                    message,
                )

        if not errors and allow_unverified and bundle.access_token:
            # Nothing to renew with; the stored token is checked by the first fetch.
            logger.info(
                "Using stored %s token for account=%s without renewal",
                platform.value,
                account.name,
            )
            return bundle

        reason = "; ".join(errors) or "no refresh token or login credentials"
        raise AuthenticationImpossibleError(account.name, platform.value, reason)

    async def _persist(
        self,
        account: Account,
        platform: Platform,
        bundle: CredentialBundle,
        grant: TokenGrant,
    ) -> CredentialBundle:
        updated = bundle.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token or bundle.refresh_token,
            }
        )
        return await self.credential_store.save(account.name, platform, updated)
