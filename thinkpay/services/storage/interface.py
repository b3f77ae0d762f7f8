"""
Storage contracts

The session, vault engine and payment flow talk to these abstract
classes only. Google Sheets backs them in production and an in-memory
store backs them in tests and offline runs.

DESIGN DECISION: Stores hold no vault or payment rules.
They read and replace records keyed by user identity.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from thinkpay.models.audit import AuditEvent
from thinkpay.models.ledger import (
    Notification,
    NotificationPriority,
    Transaction,
    User,
    Vault,
)


class LedgerStoreInterface(ABC):
    """
    Per-user ledger: profile, vaults, transactions and notifications.

    Reads must be pure: two reads with no write in between return
    identical data.
    """

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[User]:
        """
        Retrieve a user's profile.

        Returns:
            The profile if found, None otherwise
        """
        pass

    @abstractmethod
    async def create_profile(self, user_id: str, user: User) -> User:
        """
        Store the profile of a newly registered identity.

        Raises:
            DuplicateError: If a profile already exists for this identity
        """
        pass

    @abstractmethod
    async def update_profile(self, user_id: str, updates: dict[str, Any]) -> User:
        """
        Apply a partial update to a profile.

        Args:
            user_id: Identity to update
            updates: Field name -> new value (e.g. {"current_balance": ...})

        Returns:
            The profile after the update

        Raises:
            NotFoundError: If no profile exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_vaults(self, user_id: str) -> list[Vault]:
        """List all vaults of one identity."""
        pass

    @abstractmethod
    async def replace_vaults(self, user_id: str, vaults: list[Vault]) -> None:
        """
        Overwrite the stored vault list.

        Full overwrite on every call, not an incremental patch.
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        limit: int = 50,
    ) -> list[Transaction]:
        """
        List recent transactions.

        Returns:
            At most `limit` transactions, newest first
        """
        pass

    @abstractmethod
    async def append_transaction(self, user_id: str, transaction: Transaction) -> None:
        """Append a transaction to the history. History is append-only."""
        pass

    @abstractmethod
    async def list_notifications(self, user_id: str) -> list[Notification]:
        """List notifications, newest first."""
        pass

    @abstractmethod
    async def mark_notifications_read(self, user_id: str, ids: list[str]) -> None:
        """Set read=True on the given notifications. Unknown ids are ignored."""
        pass

    @abstractmethod
    async def append_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> Notification:
        """
        Create a notification.

        The store assigns id and timestamp; read is always False.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one payment attempt).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events, optionally for one identity.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """A store read or write failed."""
    pass


class NotFoundError(StorageError):
    """The requested record does not exist."""
    pass


class DuplicateError(StorageError):
    """A record with the same key is already stored."""
    pass


class ConnectionError(StorageError):
    """The backend could not be reached."""
    pass


class PermissionDeniedError(StorageError):
    """The backend refused access (credentials or sharing rules)."""
    pass
