"""
Bearer credential holder.

Every authenticated request reads the credential from here at send time.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger("auth.token_store")


class AuthStatus(Enum):
    """Session state."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class Credential:
    """Opaque bearer token plus the wall-clock time it was issued."""
    token: str
    issued_at: float

    def age(self, now: float) -> float:
        return now - self.issued_at


Listener = Callable[[Optional[Credential], AuthStatus], None]


class TokenStore:
    """
    Holds the current credential and the session status.

    When a mirror is attached, every change is written through to it so the
    session can be restored after a restart.
    """

    def __init__(self, mirror=None, clock: Callable[[], float] = time.time):
        self._mirror = mirror
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._status = AuthStatus.UNAUTHENTICATED
        self._listeners: List[Listener] = []

    @property
    def status(self) -> AuthStatus:
        return self._status

    def get(self) -> Optional[Credential]:
        return self._credential

    def get_token(self) -> Optional[str]:
        return self._credential.token if self._credential else None

    def set(self, token: str, issued_at: Optional[float] = None) -> Credential:
        """Store a new credential and mark the session authenticated."""
        credential = Credential(token=token, issued_at=self._clock() if issued_at is None else issued_at)
        self._credential = credential
        self._status = AuthStatus.AUTHENTICATED
        if self._mirror is not None:
            self._mirror.save(credential)
        logger.info("Credential stored")
        self._notify()
        return credential

    def clear(self) -> None:
        """Drop the credential; the session becomes unauthenticated."""
        had_credential = self._credential is not None
        self._credential = None
        self._status = AuthStatus.UNAUTHENTICATED
        if self._mirror is not None:
            self._mirror.clear()
        if had_credential:
            logger.info("Credential cleared")
        self._notify()

    def mark_refreshing(self) -> None:
        self._status = AuthStatus.REFRESHING
        self._notify()

    def restore(self) -> Optional[Credential]:
        """Load the mirrored credential, if any, keeping its original issue time."""
        if self._mirror is None:
            return None
        credential = self._mirror.load()
        if credential is None:
            return None
        self._credential = credential
        self._status = AuthStatus.AUTHENTICATED
        logger.info("Credential restored from mirror")
        self._notify()
        return credential

    def is_older_than(self, max_age: float) -> bool:
        return self._credential is not None and self._credential.age(self._clock()) >= max_age

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._credential, self._status)
