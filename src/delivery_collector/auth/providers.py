"""Platform token endpoints: GoJek refresh/login and Grab login."""
import asyncio
import logging
from typing import Any, Optional

import aiohttp
from pydantic import BaseModel

from ..exceptions import AuthRejectedError
from ..schemas.accounts import CredentialBundle, Platform


logger = logging.getLogger(__name__)


GOJEK_REFRESH_URL = "https://api.gobiz.co.id/gobiz/goid/token"
GOJEK_LOGIN_URL = "https://api.gobiz.co.id/goid/token"
GOJEK_DEFAULT_CLIENT_ID = "YEZympJ5WqYRh7Hs"
GOJEK_LOGIN_CLIENT_ID = "go-biz-web-new"

GRAB_LOGIN_URL = "https://merchant.grab.com/mex-core-api/user-profile/v1/login"

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

GOJEK_AUTH_HEADERS = {
    "Content-Type": "application/json",
    "x-user-type": "merchant",
    "x-appid": "go-biz-web-dashboard",
    "x-deviceos": "Web",
    "x-platform": "Web",
    "x-user-locale": "en-GB",
}

GRAB_AUTH_HEADERS = {
    "Content-Type": "application/json",
    "x-grabkit-clientid": "GrabMerchant-Portal",
    "x-client-id": "GrabMerchant-Portal",
    "Origin": "https://merchant.grab.com",
}


class TokenGrant(BaseModel):
    """Tokens returned by a successful refresh or login."""

    access_token: str
    refresh_token: Optional[str] = None


class AuthProvider:
    """Token endpoint client for one platform."""

    platform: Platform
    supports_refresh: bool = True

    def __init__(self, session: aiohttp.ClientSession) -> None:
        self.session = session

    async def refresh(self, bundle: CredentialBundle) -> TokenGrant:
        raise NotImplementedError

    async def login(self, bundle: CredentialBundle) -> TokenGrant:
        raise NotImplementedError

    async def _post_token(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        try:
            async with self.session.post(url, json=payload, headers=headers) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise AuthRejectedError(
                        f"{self.platform.value} token endpoint returned HTTP {resp.status}: "
                        f"{body[:200]}"
                    )
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise AuthRejectedError(
                f"{self.platform.value} token endpoint unreachable: {exc}"
            ) from exc
        except ValueError as exc:
            raise AuthRejectedError(
                f"{self.platform.value} token endpoint returned invalid JSON"
            ) from exc

        if not isinstance(data, dict):
            raise AuthRejectedError(f"{self.platform.value} token response is not an object")
        return data


class GojekAuthProvider(AuthProvider):
    """GoBiz GoID token endpoints."""

    platform = Platform.GOJEK

    async def refresh(self, bundle: CredentialBundle) -> TokenGrant:
        if not bundle.refresh_token:
            raise AuthRejectedError("No GoJek refresh token available")

        payload = {
            "client_id": bundle.client_id or GOJEK_DEFAULT_CLIENT_ID,
            "grant_type": "refresh_token",
            "data": {"refresh_token": bundle.refresh_token},
        }
        data = await self._post_token(GOJEK_REFRESH_URL, payload, GOJEK_AUTH_HEADERS)
        return self._grant(data)

    async def login(self, bundle: CredentialBundle) -> TokenGrant:
        if not bundle.can_login:
            raise AuthRejectedError("No GoJek username/password configured")

        payload = {
            "client_id": GOJEK_LOGIN_CLIENT_ID,
            "grant_type": "password",
            "data": {"email": bundle.username, "password": bundle.password},
        }
        data = await self._post_token(GOJEK_LOGIN_URL, payload, GOJEK_AUTH_HEADERS)
        return self._grant(data)

    @staticmethod
    def _grant(data: dict[str, Any]) -> TokenGrant:
        access_token = data.get("access_token")
        if not access_token:
            raise AuthRejectedError("GoJek token response missing access_token")
        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
        )


class GrabAuthProvider(AuthProvider):
    """Grab merchant portal login. Grab issues a JWT without a refresh grant."""

    platform = Platform.GRAB
    supports_refresh = False

    async def refresh(self, bundle: CredentialBundle) -> TokenGrant:
        raise AuthRejectedError("Grab does not support token refresh")

    async def login(self, bundle: CredentialBundle) -> TokenGrant:
        if not bundle.can_login:
            raise AuthRejectedError("No Grab username/password configured")

        payload = {
            "username": bundle.username,
            "password": bundle.password,
            "without_force_logout": False,
            "login_source": "TROY_PORTAL_MAIN_USERNAME_PASSWORD",
            "session_data": {
                "web_session_data": {
                    "user_agent": USER_AGENT,
                    "human_readable_user_agent": "Chrome",
                }
            },
        }
        data = await self._post_token(GRAB_LOGIN_URL, payload, GRAB_AUTH_HEADERS)

        body = data.get("data") or {}
        if not body.get("success"):
            raise AuthRejectedError("Grab login was not successful")

        jwt = (body.get("data") or {}).get("jwt")
        if not jwt:
            raise AuthRejectedError("Grab login response missing jwt")
        return TokenGrant(access_token=jwt)


def default_providers(session: aiohttp.ClientSession) -> dict[Platform, AuthProvider]:
    return {
        Platform.GOJEK: GojekAuthProvider(session),
        Platform.GRAB: GrabAuthProvider(session),
    }
