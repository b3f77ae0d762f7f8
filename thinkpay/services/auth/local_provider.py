"""
Authentication Provider

DESIGN DECISION: Authentication sits behind a narrow interface.
The vault and payment logic only ever sees an opaque identity string;
whether it came from a hosted identity service or the local provider
below makes no difference to them.

The local provider keeps salted PBKDF2 hashes in memory. It is used
for tests, demos and single-user deployments.
"""

import hashlib
import hmac
import os
from abc import ABC, abstractmethod
from typing import Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class AuthenticationError(Exception):
    """Credentials were rejected."""
    pass


class IdentityExistsError(AuthenticationError):
    """An identity with this email is already registered."""
    pass


class Identity(BaseModel):
    """An authenticated principal."""

    user_id: str = Field(..., min_length=1)
    email: str


IdentityCallback = Callable[[Optional[Identity]], None]


class AuthProviderInterface(ABC):
    """Operations the session layer needs from an identity service."""

    @abstractmethod
    async def register(self, username: str, email: str, password: str) -> Identity:
        """Create an identity and sign it in."""
        pass

    @abstractmethod
    async def verify(self, email: str, password: str) -> Identity:
        """Check credentials and sign the identity in."""
        pass

    @abstractmethod
    async def logout(self) -> None:
        pass

    @abstractmethod
    def current_identity(self) -> Optional[Identity]:
        pass

    @abstractmethod
    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        """
        Subscribe to sign-in/sign-out changes.

        Returns:
            A function that removes the subscription
        """
        pass


class LocalAuthProvider(AuthProviderInterface):
    """In-process identity store with salted password hashes."""

    _ITERATIONS = 200_000

    def __init__(self):
        # email (lowercased) -> (identity, salt, hash)
        self._accounts: dict[str, tuple[Identity, bytes, bytes]] = {}
        self._current: Optional[Identity] = None
        self._listeners: list[IdentityCallback] = []

    def _hash(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            salt,
            self._ITERATIONS,
        )

    def _set_current(self, identity: Optional[Identity]) -> None:
        self._current = identity
        for listener in list(self._listeners):
            listener(identity)

    async def register(self, username: str, email: str, password: str) -> Identity:
        key = email.strip().lower()
        if key in self._accounts:
            raise IdentityExistsError("This email is already registered.")

        salt = os.urandom(16)
        identity = Identity(user_id=uuid4().hex, email=key)
        self._accounts[key] = (identity, salt, self._hash(password, salt))
        self._set_current(identity)
        return identity

    async def verify(self, email: str, password: str) -> Identity:
        account = self._accounts.get(email.strip().lower())
        if account is None:
            raise AuthenticationError("User not found. Try registering.")

        identity, salt, expected = account
        if not hmac.compare_digest(self._hash(password, salt), expected):
            raise AuthenticationError("Invalid email or password.")

        self._set_current(identity)
        return identity

    async def logout(self) -> None:
        self._set_current(None)

    def current_identity(self) -> Optional[Identity]:
        return self._current

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe
