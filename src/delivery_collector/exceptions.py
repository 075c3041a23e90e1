"""Custom exceptions for the delivery stats collector."""
from typing import Optional


class CollectorError(Exception):
    """Base exception for all collector errors."""


class ConfigurationError(CollectorError):
    """Raised when account or runtime configuration is missing or invalid."""


class AuthRejectedError(CollectorError):
    """Raised by an auth provider when a refresh or login call is refused."""


class AuthenticationImpossibleError(CollectorError):
    """Raised when neither token refresh nor login yields a credential."""

    def __init__(self, account_name: str, platform: str, reason: str = ""):
        self.account_name = account_name
        self.platform = platform
        self.reason = reason
        message = f"Authentication impossible for account={account_name}, platform={platform}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PlatformApiError(CollectorError):
    """Raised for non-2xx responses from a platform analytics backend."""

    def __init__(self, status: int, body: str, url: Optional[str] = None):
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status} from {url or 'platform'}: {body[:200]}")

    @property
    def is_unauthorized(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_transient(self) -> bool:
        return self.status == 429 or 500 <= self.status < 600


class MissingDataError(CollectorError):
    """Raised by a parser when the platform has no data for the requested day."""


class MalformedResponseError(CollectorError):
    """Raised when a response does not have the expected shape."""


class AccountLockedError(CollectorError):
    """Raised when another run already holds the lock for an account."""

    def __init__(self, account_name: str, lock_key: str):
        self.account_name = account_name
        self.lock_key = lock_key
        super().__init__(
            f"Collection lock already held for account={account_name}, key={lock_key}"
        )


class ExportError(CollectorError):
    """Raised when a batch cannot be delivered to the central stats store."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)
