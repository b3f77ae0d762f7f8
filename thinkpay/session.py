"""
Session Bootstrap

DESIGN DECISION: There is no global "current user" state.
Authentication produces an identity; `SessionManager.load()` turns that
identity into an explicit `SessionContext` which is passed to the vault
engine and the payment flow. The context is the in-memory source of
truth until it is refreshed from the store.

Configuration and connectivity failures while loading (missing profile,
permission denied, backend unreachable) are raised as `SetupError`:
nothing the user does inside the session can fix them.
"""

import asyncio
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field

from thinkpay.audit import AuditLogger
from thinkpay.config import get_settings
from thinkpay.models.ledger import (
    DerivedBalances,
    Notification,
    NotificationPriority,
    Transaction,
    User,
    Vault,
    build_default_vaults,
    utcnow,
)
from thinkpay.services.auth import (
    AuthenticationError,
    AuthProviderInterface,
)
from thinkpay.services.storage import (
    ConnectionError,
    LedgerStoreInterface,
    PermissionDeniedError,
    StorageError,
)
from thinkpay.vaults.engine import compute_derived


logger = structlog.get_logger("thinkpay.session")


class SetupError(Exception):
    """The session cannot be established. Fatal for the session."""

    def __init__(self, message: str, user_id: Optional[str] = None):
        self.user_id = user_id
        super().__init__(message)


class SessionContext(BaseModel):
    """
    Everything loaded for one authenticated identity.

    Collections are kept newest first. Derived balances are properties,
    recomputed on every access. `committed_attempts` survives `refresh`.
    """
    model_config = ConfigDict(validate_assignment=True)

    user_id: str = Field(..., min_length=1)
    user: User
    vaults: list[Vault] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)
    # Attempts already turned into transactions; never committed twice
    committed_attempts: set[UUID] = Field(default_factory=set)

    @property
    def derived(self) -> DerivedBalances:
        return compute_derived(self.user, self.vaults)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def vault(self, vault_id: str) -> Optional[Vault]:
        return next((v for v in self.vaults if v.id == vault_id), None)


class Notifier:
    """
    Appends system notifications to the store and the session.

    A failed write still produces a local notification so the user
    sees the event; the failure is logged and audited.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    async def notify(
        self,
        session: SessionContext,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> Notification:
        try:
            notification = await self._store.append_notification(
                session.user_id, title, message, priority
            )
        except StorageError as e:
            logger.warning(
                "notification_persistence_failed",
                user_id=session.user_id,
                title=title,
                error=str(e),
            )
            await self._audit.log_persistence_failed(
                user_id=session.user_id,
                operation="append_notification",
                error_message=str(e),
            )
            notification = Notification(
                title=title,
                message=message,
                priority=priority,
                timestamp=utcnow(),
            )

        session.notifications = [notification, *session.notifications]
        return notification


class SessionManager:
    """
    Registration, sign-in and loading of session contexts.

    Usage:
        manager = SessionManager(store, auth)
        session = await manager.login("me@example.com", "secret1")
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        auth: AuthProviderInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._auth = auth
        self._audit = audit_logger or AuditLogger()
        self._settings = get_settings().app

    def _check_credentials(self, email: str, password: str) -> str:
        email = (email or "").strip()
        if not email or "@" not in email:
            raise AuthenticationError("Enter a valid email address")
        if len(password or "") < self._settings.min_password_length:
            raise AuthenticationError(
                f"Password must be {self._settings.min_password_length}+ characters"
            )
        return email

    async def register(self, username: str, email: str, password: str) -> SessionContext:
        """
        Create an identity, its profile, the default vaults and a
        welcome notification, then load the session.

        Raises:
            AuthenticationError: Invalid input or the email is taken
            SetupError: The store refused the initial writes
        """
        email = self._check_credentials(email, password)
        username = (username or "").strip()
        if not username:
            raise AuthenticationError("Display Name is required")

        identity = await self._auth.register(username, email, password)
        user_id = identity.user_id

        profile = User(
            username=username,
            email=identity.email,
            created_at=utcnow(),
            total_budget=self._settings.default_total_budget,
            current_balance=self._settings.default_opening_balance,
        )

        try:
            await self._store.create_profile(user_id, profile)
            await self._store.replace_vaults(user_id, build_default_vaults(user_id))
            await self._store.append_notification(
                user_id,
                "Cloud Identity Established",
                "Your biometric-ready vaults are synced and ready for deployment.",
                NotificationPriority.NORMAL,
            )
        except StorageError as e:
            await self._audit.log_setup_error(user_id, str(e))
            raise SetupError(f"Could not create account data: {e}", user_id) from e

        await self._audit.log_user_registered(user_id, username)
        return await self.load(user_id)

    async def login(self, email: str, password: str) -> SessionContext:
        """
        Verify credentials and load the session.

        Raises:
            AuthenticationError: Bad input or credentials
            SetupError: Session could not be loaded
        """
        email = self._check_credentials(email, password)
        identity = await self._auth.verify(email, password)
        return await self.load(identity.user_id)

    async def logout(self, session: Optional[SessionContext] = None) -> None:
        await self._auth.logout()
        if session is not None:
            await self._audit.log_session_ended(session.user_id)

    async def load(self, user_id: str) -> SessionContext:
        """
        Read profile, vaults, transactions and notifications concurrently.

        Raises:
            SetupError: Missing profile, permission denied, or the
                        backend could not be reached
            StorageError: Any other store failure, audited as a system error
        """
        try:
            profile, vaults, transactions, notifications = await asyncio.gather(
                self._store.get_profile(user_id),
                self._store.list_vaults(user_id),
                self._store.list_transactions(
                    user_id, limit=self._settings.transaction_history_limit
                ),
                self._store.list_notifications(user_id),
            )
        except (PermissionDeniedError, ConnectionError) as e:
            await self._audit.log_setup_error(user_id, str(e))
            raise SetupError(str(e), user_id) from e
        except StorageError as e:
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"user_id": user_id, "operation": "load_session"},
            )
            raise

        if profile is None:
            message = f"No profile found for identity {user_id}"
            await self._audit.log_setup_error(user_id, message)
            raise SetupError(message, user_id)

        session = SessionContext(
            user_id=user_id,
            user=profile,
            vaults=vaults,
            transactions=transactions,
            notifications=notifications,
        )
        await self._audit.log_session_started(user_id, len(vaults))
        return session

    async def refresh(self, session: SessionContext) -> SessionContext:
        """Reload the session's collections from the store, in place."""
        fresh = await self.load(session.user_id)
        session.user = fresh.user
        session.vaults = fresh.vaults
        session.transactions = fresh.transactions
        session.notifications = fresh.notifications
        return session

    async def mark_all_read(self, session: SessionContext) -> int:
        """
        Mark every unread notification as read.

        Returns:
            Number of notifications that changed
        """
        unread = [n.id for n in session.notifications if not n.read]
        if not unread:
            return 0

        session.notifications = [
            n.model_copy(update={"read": True}) if not n.read else n
            for n in session.notifications
        ]

        try:
            await self._store.mark_notifications_read(session.user_id, unread)
        except StorageError as e:
            logger.warning(
                "mark_read_failed",
                user_id=session.user_id,
                error=str(e),
            )
            await self._audit.log_persistence_failed(
                user_id=session.user_id,
                operation="mark_notifications_read",
                error_message=str(e),
            )

        return len(unread)
