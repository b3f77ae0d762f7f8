"""Authentication services package."""

from thinkpay.services.auth.local_provider import (
    AuthenticationError,
    AuthProviderInterface,
    Identity,
    IdentityExistsError,
    LocalAuthProvider,
)

__all__ = [
    "AuthenticationError",
    "AuthProviderInterface",
    "Identity",
    "IdentityExistsError",
    "LocalAuthProvider",
]
