"""
Tests for the storage backends.

The Google Sheets store runs against a fake client whose worksheets
keep rows in lists, so row layout and filtering can be checked
without a network.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import USER_ID
from thinkpay.models.audit import AuditEventBuilder
from thinkpay.models.ledger import (
    NotificationPriority,
    PaymentGateway,
    Transaction,
    User,
    VaultAllocation,
    build_default_vaults,
)
from thinkpay.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStore,
    InMemoryLedgerStore,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
)
from thinkpay.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    NOTIFICATION_COLUMNS,
    TRANSACTION_COLUMNS,
    USER_COLUMNS,
    VAULT_COLUMNS,
    _to_storage_error,
)


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the store."""

    def __init__(self, columns):
        self.rows = [list(columns)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append([str(cell) for cell in row])

    def append_rows(self, rows, value_input_option=None):
        for row in rows:
            self.append_row(row)

    def delete_rows(self, index):
        del self.rows[index - 1]

    def update(self, range_name, values, value_input_option=None):
        index = int(range_name[1:])
        self.rows[index - 1] = [str(cell) for cell in values[0]]

    def update_cell(self, row, col, value):
        self.rows[row - 1][col - 1] = str(value)


class FakeSheetsClient:
    def __init__(self):
        self.users = FakeWorksheet(USER_COLUMNS)
        self.vaults = FakeWorksheet(VAULT_COLUMNS)
        self.transactions = FakeWorksheet(TRANSACTION_COLUMNS)
        self.notifications = FakeWorksheet(NOTIFICATION_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_users_sheet(self):
        return self.users

    def get_vaults_sheet(self):
        return self.vaults

    def get_transactions_sheet(self):
        return self.transactions

    def get_notifications_sheet(self):
        return self.notifications

    def get_audit_sheet(self):
        return self.audit


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeApiError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.response = FakeResponse(status_code)


@pytest.fixture
def sheets():
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(sheets):
    return GoogleSheetsLedgerStore(sheets)


def _transaction(**overrides):
    data = {
        "amount": Decimal("1200"),
        "merchant": "Cafe X",
        "category": "Dining",
        "vault_allocations": (VaultAllocation(vault_id="v2", amount=Decimal("1200")),),
        "timestamp": datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        "gateway": PaymentGateway.RAZORPAY,
    }
    data.update(overrides)
    return Transaction(**data)


class TestInMemoryStore:
    """Dictionary-backed store."""

    @pytest.mark.asyncio
    async def test_reads_are_pure(self, user):
        store = InMemoryLedgerStore()
        await store.create_profile(USER_ID, user)
        await store.replace_vaults(USER_ID, build_default_vaults(USER_ID))

        first = await store.list_vaults(USER_ID)
        second = await store.list_vaults(USER_ID)
        assert first == second

        first[0].is_locked = True
        profile = await store.get_profile(USER_ID)
        profile.username = "changed"

        assert not (await store.list_vaults(USER_ID))[0].is_locked
        assert (await store.get_profile(USER_ID)).username == "asha"

    @pytest.mark.asyncio
    async def test_duplicate_profile(self, user):
        store = InMemoryLedgerStore()
        await store.create_profile(USER_ID, user)
        with pytest.raises(DuplicateError):
            await store.create_profile(USER_ID, user)

    @pytest.mark.asyncio
    async def test_update_missing_profile(self):
        with pytest.raises(NotFoundError):
            await InMemoryLedgerStore().update_profile("ghost", {"current_balance": 1})

    @pytest.mark.asyncio
    async def test_transactions_newest_first_and_limited(self):
        store = InMemoryLedgerStore()
        for day in (1, 3, 2):
            await store.append_transaction(USER_ID, _transaction(
                timestamp=datetime(2026, 3, day, tzinfo=timezone.utc),
            ))

        history = await store.list_transactions(USER_ID, limit=2)

        assert [t.timestamp.day for t in history] == [3, 2]

    @pytest.mark.asyncio
    async def test_users_are_isolated(self):
        store = InMemoryLedgerStore()
        await store.replace_vaults("a", build_default_vaults("a"))
        assert await store.list_vaults("b") == []


class TestGoogleSheetsLedgerStore:
    """Row layout and per-identity filtering."""

    @pytest.mark.asyncio
    async def test_profile_round_trip(self, sheets_store, sheets, user):
        await sheets_store.create_profile(USER_ID, user)

        assert sheets.users.rows[1][:3] == [USER_ID, "asha", "asha@example.com"]
        assert await sheets_store.get_profile(USER_ID) == user
        assert await sheets_store.get_profile("someone-else") is None

    @pytest.mark.asyncio
    async def test_duplicate_profile(self, sheets_store, user):
        await sheets_store.create_profile(USER_ID, user)
        with pytest.raises(DuplicateError):
            await sheets_store.create_profile(USER_ID, user)

    @pytest.mark.asyncio
    async def test_update_profile_rewrites_row(self, sheets_store, sheets, user):
        await sheets_store.create_profile(USER_ID, user)

        updated = await sheets_store.update_profile(
            USER_ID, {"current_balance": Decimal("48800")}
        )

        assert updated.current_balance == Decimal("48800")
        assert len(sheets.users.rows) == 2
        assert sheets.users.rows[1][5] == "48800.00"

    @pytest.mark.asyncio
    async def test_update_missing_profile(self, sheets_store):
        with pytest.raises(NotFoundError):
            await sheets_store.update_profile(USER_ID, {"current_balance": 1})

    @pytest.mark.asyncio
    async def test_replace_vaults_only_touches_own_rows(self, sheets_store, sheets):
        await sheets_store.replace_vaults("other", build_default_vaults("other"))
        await sheets_store.replace_vaults(USER_ID, build_default_vaults(USER_ID))

        vaults = build_default_vaults(USER_ID)
        vaults[1] = vaults[1].model_copy(update={"spent": Decimal("1200")})
        await sheets_store.replace_vaults(USER_ID, vaults)

        mine = await sheets_store.list_vaults(USER_ID)
        assert mine == vaults
        assert mine[2].is_locked and mine[2].pin == "1234"
        assert len(await sheets_store.list_vaults("other")) == 5
        assert len(sheets.vaults.rows) == 11

    @pytest.mark.asyncio
    async def test_transaction_round_trip(self, sheets_store):
        tx = _transaction(explanation="Coffee")
        await sheets_store.append_transaction(USER_ID, tx)

        assert await sheets_store.list_transactions(USER_ID) == [tx]

    @pytest.mark.asyncio
    async def test_malformed_transaction_rows_are_skipped(self, sheets_store, sheets):
        await sheets_store.append_transaction(USER_ID, _transaction())
        sheets.transactions.rows.append([USER_ID, "bad", "not-a-number"])

        assert len(await sheets_store.list_transactions(USER_ID)) == 1

    @pytest.mark.asyncio
    async def test_notifications(self, sheets_store):
        first = await sheets_store.append_notification(USER_ID, "A", "a")
        second = await sheets_store.append_notification(
            USER_ID, "B", "b", NotificationPriority.HIGH
        )

        await sheets_store.mark_notifications_read(USER_ID, [first.id])
        stored = {n.id: n for n in await sheets_store.list_notifications(USER_ID)}

        assert stored[first.id].read
        assert not stored[second.id].read
        assert stored[second.id].priority == NotificationPriority.HIGH

    @pytest.mark.asyncio
    async def test_profile_row_conversion(self):
        user = User(username="a", email="a@x.io", current_balance=Decimal("10.50"))
        row = GoogleSheetsLedgerStore._user_to_row(USER_ID, user)
        assert row[0] == USER_ID
        assert row[5] == "10.50"
        assert GoogleSheetsLedgerStore._row_to_user(row) == user


class TestGoogleSheetsAuditStorage:

    @pytest.mark.asyncio
    async def test_events_by_correlation_id(self, sheets):
        storage = GoogleSheetsAuditStorage(sheets)
        correlation_id = uuid4()
        started = AuditEventBuilder.payment_started(
            USER_ID, "1200.00", "Cafe X", False, correlation_id
        )
        unrelated = AuditEventBuilder.session_started(USER_ID, 5)

        await storage.append_event(started)
        await storage.append_event(unrelated)

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_id for e in events] == [started.event_id]
        assert events[0].details == started.details

    @pytest.mark.asyncio
    async def test_recent_events_for_user(self, sheets):
        storage = GoogleSheetsAuditStorage(sheets)
        await storage.append_event(AuditEventBuilder.session_started(USER_ID, 5))
        await storage.append_event(AuditEventBuilder.session_started("other", 5))

        events = await storage.get_recent_events(user_id=USER_ID)

        assert [e.user_id for e in events] == [USER_ID]


class TestErrorMapping:

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failures_are_permission_denied(self, status):
        error = _to_storage_error("list vaults", FakeApiError(status))
        assert isinstance(error, PermissionDeniedError)

    def test_other_failures(self):
        error = _to_storage_error("list vaults", FakeApiError(500))
        assert type(error) is StorageError

    def test_storage_errors_pass_through(self):
        original = NotFoundError("gone")
        assert _to_storage_error("x", original) is original
