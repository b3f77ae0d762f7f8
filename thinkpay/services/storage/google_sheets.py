"""
Google Sheets ledger and audit storage

DESIGN DECISION: The hosted ledger is a spreadsheet the user can open.
One worksheet per entity (Users, Vaults, Transactions, Notifications,
AuditLog), created with a header row on first use.

LIMITS:
- Writes are not transactional. The three writes of a payment commit
  can land partially; the payment flow audits and tolerates that.
- Queries read the whole worksheet and filter rows here.

Every worksheet has user_id in column A; one identity never sees
another identity's rows.
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from thinkpay.config import get_settings
from thinkpay.models.audit import AuditEvent, AuditEventType, AuditSeverity
from thinkpay.models.ledger import (
    Notification,
    NotificationPriority,
    PaymentGateway,
    Transaction,
    TransactionStatus,
    User,
    Vault,
    VaultAllocation,
    VaultType,
    to_money,
    utcnow,
)
from thinkpay.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
)


USER_COLUMNS = [
    "user_id",
    "username",
    "email",
    "created_at",
    "total_budget",
    "current_balance",
]

VAULT_COLUMNS = [
    "user_id",
    "vault_id",
    "owner_id",
    "type",
    "name",
    "icon",
    "limit",
    "spent",
    "is_locked",
    "pin",
    "biometric_enabled",
]

TRANSACTION_COLUMNS = [
    "user_id",
    "id",
    "amount",
    "merchant",
    "category",
    "allocations_json",
    "timestamp",
    "status",
    "gateway",
    "explanation",
]

NOTIFICATION_COLUMNS = [
    "user_id",
    "id",
    "title",
    "message",
    "priority",
    "timestamp",
    "read",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _to_storage_error(action: str, error: Exception) -> StorageError:
    """Map a gspread failure onto the storage exception hierarchy."""
    if isinstance(error, StorageError):
        return error
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if status in (401, 403):
        return PermissionDeniedError(f"Permission denied while trying to {action}: {error}")
    return StorageError(f"Failed to {action}: {error}")


class GoogleSheetsClient:
    """
    Lazily authorized gspread handle on the ledger spreadsheet.

    Connecting is retried with exponential backoff.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authorize with the service account key file."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Open the spreadsheet named by `spreadsheet_id`, once."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
            except gspread.exceptions.APIError as e:
                raise _to_storage_error("open spreadsheet", e)
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_users_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.users_sheet_name, USER_COLUMNS)

    def get_vaults_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.vaults_sheet_name, VAULT_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=5000,
        )

    def get_notifications_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.notifications_sheet_name,
            NOTIFICATION_COLUMNS,
            rows=5000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,
        )


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    One row per record. Allocations are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _user_to_row(user_id: str, user: User) -> list:
        return [
            user_id,
            user.username,
            user.email,
            user.created_at.isoformat(),
            str(user.total_budget),
            str(user.current_balance),
        ]

    @staticmethod
    def _row_to_user(row: list) -> User:
        return User(
            username=_safe_get(row, 1),
            email=_safe_get(row, 2),
            created_at=datetime.fromisoformat(_safe_get(row, 3)),
            total_budget=to_money(_safe_get(row, 4, "0")),
            current_balance=to_money(_safe_get(row, 5, "0")),
        )

    @staticmethod
    def _vault_to_row(user_id: str, vault: Vault) -> list:
        return [
            user_id,
            vault.id,
            vault.owner_id,
            vault.type.value,
            vault.name or "",
            vault.icon or "",
            str(vault.limit),
            str(vault.spent),
            str(vault.is_locked),
            vault.pin or "",
            str(vault.biometric_enabled),
        ]

    @staticmethod
    def _row_to_vault(row: list) -> Vault:
        return Vault(
            id=_safe_get(row, 1),
            owner_id=_safe_get(row, 2),
            type=VaultType(_safe_get(row, 3)),
            name=_safe_get(row, 4) or None,
            icon=_safe_get(row, 5) or None,
            limit=to_money(_safe_get(row, 6)),
            spent=to_money(_safe_get(row, 7, "0")),
            is_locked=_safe_get(row, 8).lower() == "true",
            pin=_safe_get(row, 9) or None,
            biometric_enabled=_safe_get(row, 10).lower() == "true",
        )

    @staticmethod
    def _transaction_to_row(user_id: str, tx: Transaction) -> list:
        return [
            user_id,
            tx.id,
            str(tx.amount),
            tx.merchant,
            tx.category,
            json.dumps([
                {"vault_id": a.vault_id, "amount": str(a.amount)}
                for a in tx.vault_allocations
            ]),
            tx.timestamp.isoformat(),
            tx.status.value,
            tx.gateway.value if tx.gateway else "",
            tx.explanation or "",
        ]

    @staticmethod
    def _row_to_transaction(row: list) -> Transaction:
        allocations_json = _safe_get(row, 5, "[]")
        gateway = _safe_get(row, 8)
        return Transaction(
            id=_safe_get(row, 1),
            amount=to_money(_safe_get(row, 2)),
            merchant=_safe_get(row, 3),
            category=_safe_get(row, 4),
            vault_allocations=[
                VaultAllocation(vault_id=a["vault_id"], amount=to_money(a["amount"]))
                for a in json.loads(allocations_json)
            ],
            timestamp=datetime.fromisoformat(_safe_get(row, 6)),
            status=TransactionStatus(_safe_get(row, 7, "completed")),
            gateway=PaymentGateway(gateway) if gateway else None,
            explanation=_safe_get(row, 9) or None,
        )

    @staticmethod
    def _notification_to_row(user_id: str, notification: Notification) -> list:
        return [
            user_id,
            notification.id,
            notification.title,
            notification.message,
            notification.priority.value,
            notification.timestamp.isoformat(),
            str(notification.read),
        ]

    @staticmethod
    def _row_to_notification(row: list) -> Notification:
        return Notification(
            id=_safe_get(row, 1),
            title=_safe_get(row, 2),
            message=_safe_get(row, 3),
            priority=NotificationPriority(_safe_get(row, 4, "normal")),
            timestamp=datetime.fromisoformat(_safe_get(row, 5)),
            read=_safe_get(row, 6).lower() == "true",
        )

    @staticmethod
    def _user_rows(all_rows: list[list], user_id: str) -> list[tuple[int, list]]:
        """(sheet row number, row) pairs for one identity, header skipped."""
        return [
            (idx, row)
            for idx, row in enumerate(all_rows[1:], start=2)  # row 1 is header
            if row and row[0] == user_id
        ]

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> Optional[User]:
        try:
            sheet = self._client.get_users_sheet()
            for _, row in self._user_rows(sheet.get_all_values(), user_id):
                return self._row_to_user(row)
            return None
        except Exception as e:
            raise _to_storage_error("get profile", e)

    async def create_profile(self, user_id: str, user: User) -> User:
        try:
            sheet = self._client.get_users_sheet()
            if self._user_rows(sheet.get_all_values(), user_id):
                raise DuplicateError(f"Profile already exists: {user_id}")
            sheet.append_row(self._user_to_row(user_id, user), value_input_option="RAW")
            return user
        except Exception as e:
            raise _to_storage_error("create profile", e)

    async def update_profile(self, user_id: str, updates: dict[str, Any]) -> User:
        try:
            sheet = self._client.get_users_sheet()
            for idx, row in self._user_rows(sheet.get_all_values(), user_id):
                current = self._row_to_user(row)
                updated = User.model_validate({**current.model_dump(), **updates})
                sheet.update(
                    range_name=f"A{idx}",
                    values=[self._user_to_row(user_id, updated)],
                    value_input_option="RAW",
                )
                return updated
            raise NotFoundError(f"Profile not found: {user_id}")
        except Exception as e:
            raise _to_storage_error("update profile", e)

    # -------------------------------------------------------------------------
    # Vaults
    # -------------------------------------------------------------------------

    async def list_vaults(self, user_id: str) -> list[Vault]:
        try:
            sheet = self._client.get_vaults_sheet()
            return [
                self._row_to_vault(row)
                for _, row in self._user_rows(sheet.get_all_values(), user_id)
            ]
        except Exception as e:
            raise _to_storage_error("list vaults", e)

    async def replace_vaults(self, user_id: str, vaults: list[Vault]) -> None:
        try:
            sheet = self._client.get_vaults_sheet()
            existing = self._user_rows(sheet.get_all_values(), user_id)
            # Bottom-up so earlier row numbers stay valid
            for idx, _ in sorted(existing, reverse=True):
                sheet.delete_rows(idx)
            if vaults:
                sheet.append_rows(
                    [self._vault_to_row(user_id, v) for v in vaults],
                    value_input_option="RAW",
                )
        except Exception as e:
            raise _to_storage_error("replace vaults", e)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def list_transactions(
        self,
        user_id: str,
        limit: int = 50,
    ) -> list[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            transactions = []
            for _, row in self._user_rows(sheet.get_all_values(), user_id):
                try:
                    transactions.append(self._row_to_transaction(row))
                except (ValueError, KeyError):
                    continue

            transactions.sort(key=lambda t: t.timestamp, reverse=True)
            return transactions[:limit]
        except Exception as e:
            raise _to_storage_error("list transactions", e)

    async def append_transaction(self, user_id: str, transaction: Transaction) -> None:
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(
                self._transaction_to_row(user_id, transaction),
                value_input_option="RAW",
            )
        except Exception as e:
            raise _to_storage_error("append transaction", e)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def list_notifications(self, user_id: str) -> list[Notification]:
        try:
            sheet = self._client.get_notifications_sheet()
            notifications = []
            for _, row in self._user_rows(sheet.get_all_values(), user_id):
                try:
                    notifications.append(self._row_to_notification(row))
                except ValueError:
                    continue

            notifications.sort(key=lambda n: n.timestamp, reverse=True)
            return notifications
        except Exception as e:
            raise _to_storage_error("list notifications", e)

    async def mark_notifications_read(self, user_id: str, ids: list[str]) -> None:
        wanted = set(ids)
        read_col = NOTIFICATION_COLUMNS.index("read") + 1
        try:
            sheet = self._client.get_notifications_sheet()
            for idx, row in self._user_rows(sheet.get_all_values(), user_id):
                if _safe_get(row, 1) in wanted:
                    sheet.update_cell(idx, read_col, "True")
        except Exception as e:
            raise _to_storage_error("mark notifications read", e)

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
        try:
            sheet = self._client.get_notifications_sheet()
            sheet.append_row(
                self._notification_to_row(user_id, notification),
                value_input_option="RAW",
            )
            return notification
        except Exception as e:
            raise _to_storage_error("append notification", e)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit trail in the AuditLog worksheet. Rows are only ever appended.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Inverse of `AuditEvent.to_sheets_row`."""
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            user_id=_safe_get(row, 4) or None,
            entity_type=_safe_get(row, 5) or None,
            entity_id=_safe_get(row, 6) or None,
            correlation_id=UUID(_safe_get(row, 7)) if _safe_get(row, 7) else None,
            description=_safe_get(row, 8),
            details=json.loads(_safe_get(row, 9)) if _safe_get(row, 9) else {},
            error_message=_safe_get(row, 10) or None,
            is_user_action=_safe_get(row, 11).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise _to_storage_error("write audit event", e)

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one payment attempt, oldest first."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]

            events = []
            for row in all_rows:
                if row and len(row) > 7 and row[7] == str(correlation_id):
                    try:
                        events.append(self._row_to_event(row))
                    except ValueError:
                        continue

            # Sort chronologically
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise _to_storage_error("get audit events", e)

    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]

            events = []
            for row in all_rows:
                if not row or not row[0]:
                    continue
                if user_id is not None and _safe_get(row, 4) != user_id:
                    continue
                try:
                    events.append(self._row_to_event(row))
                except ValueError:
                    continue

            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise _to_storage_error("get audit events", e)
