"""Services package."""

from thinkpay.services.auth import (
    AuthenticationError,
    AuthProviderInterface,
    Identity,
    IdentityExistsError,
    LocalAuthProvider,
)
from thinkpay.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
)

__all__ = [
    # Auth services
    "AuthenticationError",
    "AuthProviderInterface",
    "Identity",
    "IdentityExistsError",
    "LocalAuthProvider",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStoreInterface",
    "NotFoundError",
    "PermissionDeniedError",
    "StorageError",
]
