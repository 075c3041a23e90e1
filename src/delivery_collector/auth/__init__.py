"""Credential lifecycle: token endpoints, durable storage and session cache."""
from .credential_store import CredentialStore
from .providers import AuthProvider, GojekAuthProvider, GrabAuthProvider, TokenGrant
from .session import SessionManager

__all__ = [
    "AuthProvider",
    "CredentialStore",
    "GojekAuthProvider",
    "GrabAuthProvider",
    "SessionManager",
    "TokenGrant",
]
