"""
Shared fixtures.

No network in tests: the in-memory store, a stub oracle and the local
auth provider stand in for the external services.
"""

import os
from decimal import Decimal
from typing import Optional

import pytest

# Settings are read from the environment; give the required ones a value
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.setdefault("GOOGLE_SHEETS_SPREADSHEET_ID", "test-sheet")

from thinkpay.agents import CategorizationOracle  # noqa: E402
from thinkpay.audit import AuditLogger  # noqa: E402
from thinkpay.config import get_settings  # noqa: E402
from thinkpay.models.ledger import (  # noqa: E402
    CategorySuggestion,
    MonthlyInsights,
    NotificationPriority,
    User,
    VaultType,
    build_default_vaults,
)
from thinkpay.orchestrator import PaymentFlow  # noqa: E402
from thinkpay.services.storage import (  # noqa: E402
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    StorageError,
)
from thinkpay.session import Notifier, SessionContext  # noqa: E402
from thinkpay.vaults import VaultLedgerEngine  # noqa: E402


USER_ID = "user-1"


class StubOracle(CategorizationOracle):
    """Oracle with a fixed answer; records every call."""

    def __init__(
        self,
        suggestion: Optional[CategorySuggestion] = None,
        error: Optional[Exception] = None,
    ):
        self.suggestion = suggestion or CategorySuggestion(
            category="Dining",
            confidence=0.9,
            suggested_vault=VaultType.FOOD,
            explanation="Cafe purchase",
        )
        self.error = error
        self.calls: list[tuple] = []

    async def categorize(self, merchant, amount):
        self.calls.append(("categorize", merchant, amount))
        if self.error:
            raise self.error
        return self.suggestion

    async def monthly_insights(self, transactions, vaults):
        self.calls.append(("monthly_insights", len(transactions), len(vaults)))
        return MonthlyInsights(
            tips=["Cook at home"],
            summary=f"{len(transactions)} transactions",
            savings_potential="₹500",
        )


class FailingStore(InMemoryLedgerStore):
    """In-memory store whose writes can be switched off one by one."""

    def __init__(self):
        super().__init__()
        self.fail: set[str] = set()

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail:
            raise StorageError(f"{operation} unavailable")

    async def replace_vaults(self, user_id, vaults):
        self._maybe_fail("replace_vaults")
        await super().replace_vaults(user_id, vaults)

    async def append_transaction(self, user_id, transaction):
        self._maybe_fail("append_transaction")
        await super().append_transaction(user_id, transaction)

    async def update_profile(self, user_id, updates):
        self._maybe_fail("update_profile")
        return await super().update_profile(user_id, updates)

    async def append_notification(
        self, user_id, title, message, priority=NotificationPriority.NORMAL
    ):
        self._maybe_fail("append_notification")
        return await super().append_notification(user_id, title, message, priority)


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    return FailingStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def notifier(store, audit_logger):
    return Notifier(store, audit_logger)


@pytest.fixture
def oracle():
    return StubOracle()


@pytest.fixture
def user():
    return User(
        username="asha",
        email="asha@example.com",
        total_budget=Decimal("100000"),
        current_balance=Decimal("50000"),
    )


@pytest.fixture
async def session(store, user):
    """Default-template session, mirrored in the store."""
    vaults = build_default_vaults(USER_ID)
    await store.create_profile(USER_ID, user)
    await store.replace_vaults(USER_ID, vaults)
    return SessionContext(user_id=USER_ID, user=user, vaults=vaults)


@pytest.fixture
def engine(store, notifier, audit_logger):
    return VaultLedgerEngine(store, notifier, audit_logger)


@pytest.fixture
def flow(session, store, oracle, notifier, audit_logger):
    return PaymentFlow(
        session=session,
        store=store,
        oracle=oracle,
        notifier=notifier,
        audit_logger=audit_logger,
    )
