"""
Credential storage, session restore and refresh orchestration.
"""
from .token_store import AuthStatus, Credential, TokenStore
from .mirror import TokenMirror
from .session import AuthSession

__all__ = [
    "AuthStatus",
    "Credential",
    "TokenStore",
    "TokenMirror",
    "AuthSession",
]
