"""
In-Memory Storage Implementation

Used by tests and local runs without Google credentials.
Every read hands out deep copies so callers can never mutate
stored state by accident, which keeps reads pure.
"""

from collections import defaultdict
from typing import Any, Optional
from uuid import UUID, uuid4

from thinkpay.models.audit import AuditEvent
from thinkpay.models.ledger import (
    Notification,
    NotificationPriority,
    Transaction,
    User,
    Vault,
    utcnow,
)
from thinkpay.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
)


class InMemoryLedgerStore(LedgerStoreInterface):
    """Dictionary-backed ledger keyed by user id."""

    def __init__(self):
        self._profiles: dict[str, User] = {}
        self._vaults: dict[str, list[Vault]] = defaultdict(list)
        self._transactions: dict[str, list[Transaction]] = defaultdict(list)
        self._notifications: dict[str, list[Notification]] = defaultdict(list)

    async def get_profile(self, user_id: str) -> Optional[User]:
        profile = self._profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def create_profile(self, user_id: str, user: User) -> User:
        if user_id in self._profiles:
            raise DuplicateError(f"Profile already exists: {user_id}")
        self._profiles[user_id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def update_profile(self, user_id: str, updates: dict[str, Any]) -> User:
        profile = self._profiles.get(user_id)
        if profile is None:
            raise NotFoundError(f"Profile not found: {user_id}")
        # Re-validate so bad updates fail here, not on the next read
        updated = User.model_validate({**profile.model_dump(), **updates})
        self._profiles[user_id] = updated
        return updated.model_copy(deep=True)

    async def list_vaults(self, user_id: str) -> list[Vault]:
        return [v.model_copy(deep=True) for v in self._vaults.get(user_id, [])]

    async def replace_vaults(self, user_id: str, vaults: list[Vault]) -> None:
        self._vaults[user_id] = [v.model_copy(deep=True) for v in vaults]

    async def list_transactions(
        self,
        user_id: str,
        limit: int = 50,
    ) -> list[Transaction]:
        history = sorted(
            self._transactions.get(user_id, []),
            key=lambda t: t.timestamp,
            reverse=True,
        )
        # Transactions are frozen, no copy needed
        return history[:limit]

    async def append_transaction(self, user_id: str, transaction: Transaction) -> None:
        self._transactions[user_id].append(transaction)

    async def list_notifications(self, user_id: str) -> list[Notification]:
        notifications = sorted(
            self._notifications.get(user_id, []),
            key=lambda n: n.timestamp,
            reverse=True,
        )
        return [n.model_copy(deep=True) for n in notifications]

    async def mark_notifications_read(self, user_id: str, ids: list[str]) -> None:
        wanted = set(ids)
        self._notifications[user_id] = [
            n.model_copy(update={"read": True}) if n.id in wanted else n
            for n in self._notifications.get(user_id, [])
        ]

    async def append_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> Notification:
        notification = Notification(
            id=uuid4().hex[:12],
            title=title,
            message=message,
            priority=priority,
            timestamp=utcnow(),
            read=False,
        )
        self._notifications[user_id].append(notification)
        return notification.model_copy(deep=True)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if user_id is None or e.user_id == user_id
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
