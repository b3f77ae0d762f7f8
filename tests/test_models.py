"""
Tests for ThinkPay models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (with in-memory stores and a stub oracle)
3. No real API calls in tests
"""

import json
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from thinkpay.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from thinkpay.models.ledger import (
    CategorySuggestion,
    Transaction,
    User,
    UtilizationStatus,
    Vault,
    VaultAllocation,
    VaultType,
    build_default_vaults,
    to_money,
)
from thinkpay.models.payment import (
    AllocationCheck,
    PaymentAttempt,
    RejectionReason,
    ValidationIssue,
    ValidationResult,
)


class TestMoney:
    """Tests for the money conversion."""

    def test_quantizes_to_cents(self):
        """Test that amounts are rounded half up to two places."""
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(3) == Decimal("3.00")

    def test_rejects_booleans(self):
        """Test that True is not accepted as 1."""
        with pytest.raises(ValueError):
            to_money(True)

    def test_money_field_on_models(self):
        """Test that Money fields accept and round strings."""
        user = User(username="a", email="a@x.io", current_balance="12.345")
        assert user.current_balance == Decimal("12.35")


class TestVaultModels:
    """Tests for vault-related Pydantic models."""

    def test_default_template(self):
        """Test the five vaults every account starts with."""
        vaults = build_default_vaults("user-9")

        assert [v.type for v in vaults] == [
            VaultType.LIFESTYLE,
            VaultType.FOOD,
            VaultType.EMERGENCY,
            VaultType.BUSINESS,
            VaultType.BILLS,
        ]
        assert [v.limit for v in vaults] == [
            Decimal("10000"), Decimal("5000"), Decimal("20000"),
            Decimal("15000"), Decimal("8000"),
        ]
        assert all(v.owner_id == "user-9" for v in vaults)
        assert all(v.spent == 0 for v in vaults)

        emergency = vaults[2]
        assert emergency.is_locked
        assert emergency.pin == "1234"
        assert not any(v.is_locked for v in vaults if v is not emergency)

    def test_label_and_icon_defaults(self):
        """Test display attributes fall back to the type's."""
        vault = Vault(id="v", owner_id="u", type=VaultType.FOOD, limit=100)
        assert vault.label == "Food"
        assert vault.display_icon == "🍔"

        named = vault.model_copy(update={"name": "Groceries", "icon": "🥦"})
        assert named.label == "Groceries"
        assert named.display_icon == "🥦"

    def test_limit_must_be_positive(self):
        """Test that a zero limit is refused."""
        with pytest.raises(ValidationError):
            Vault(id="v", owner_id="u", type=VaultType.FOOD, limit=0)

    @pytest.mark.parametrize("spent, status", [
        ("850", UtilizationStatus.NORMAL),
        ("851", UtilizationStatus.HIGH),
        ("1000", UtilizationStatus.HIGH),
        ("1000.01", UtilizationStatus.OVERSPENT),
    ])
    def test_utilization_status(self, spent, status):
        """Test the 85% and 100% utilization thresholds."""
        vault = Vault(id="v", owner_id="u", type=VaultType.FOOD,
                      limit=1000, spent=spent)
        assert vault.utilization_status == status

    def test_remaining_never_negative(self):
        vault = Vault(id="v", owner_id="u", type=VaultType.FOOD, limit=10, spent=25)
        assert vault.remaining == Decimal("0")


class TestTransactionModels:
    """Tests for transactions."""

    def test_transaction_is_immutable(self):
        """Test that committed history cannot be edited."""
        tx = Transaction(amount=10, merchant="Shop", category="General")
        with pytest.raises(ValidationError):
            tx.amount = Decimal("20")

    def test_transaction_requires_positive_amount(self):
        with pytest.raises(ValidationError):
            Transaction(amount=0, merchant="Shop", category="General")

    def test_allocated_total(self):
        tx = Transaction(
            amount=100,
            merchant="Shop",
            category="General",
            vault_allocations=[
                VaultAllocation(vault_id="v1", amount="60"),
                VaultAllocation(vault_id="v2", amount="40"),
            ],
        )
        assert tx.allocated_total == Decimal("100")

    def test_fallback_suggestion(self):
        """Test the deterministic oracle fallback."""
        fallback = CategorySuggestion.fallback()
        assert fallback.category == "Uncategorized"
        assert fallback.confidence == 0.0
        assert fallback.suggested_vault == VaultType.LIFESTYLE


class TestPaymentModels:
    """Tests for attempt and validation models."""

    def test_attempt_remaining(self):
        attempt = PaymentAttempt(
            amount="100",
            allocations=[VaultAllocation(vault_id="v1", amount="70")],
        )
        assert attempt.allocated_total == Decimal("70")
        assert attempt.remaining == Decimal("30")

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(issues=[
            ValidationIssue(
                field="amount",
                reason=RejectionReason.INVALID_AMOUNT,
                message="Amount required",
                severity="error",
            ),
        ])
        assert result.has_errors is True
        assert result.error_count == 1
        assert not result.can_proceed

    def test_validation_result_warnings_only(self):
        """Test that warnings don't block."""
        result = ValidationResult(issues=[
            ValidationIssue(
                field="allocations.v2",
                reason=RejectionReason.LIMIT_EXCEEDED,
                message="Food vault will exceed its limit",
                severity="warning",
            ),
        ])
        assert result.has_errors is False
        assert result.can_proceed
        assert result.warnings == ["Food vault will exceed its limit"]

    def test_info_issue_gates_without_error(self):
        """Test that an open remainder stops progress but is no error."""
        result = ValidationResult(issues=[
            ValidationIssue(
                field="allocations",
                reason=RejectionReason.ALLOCATION_INCOMPLETE,
                message="remaining ₹10.00",
                severity="info",
            ),
        ])
        assert not result.has_errors
        assert not result.can_proceed

    def test_severity_is_checked(self):
        with pytest.raises(ValidationError):
            ValidationIssue(
                field="x",
                reason=RejectionReason.INVALID_AMOUNT,
                message="x",
                severity="fatal",
            )

    def test_allocation_check_kinds(self):
        over = AllocationCheck(
            vault_id="v", accepted=False, reason=RejectionReason.LIMIT_EXCEEDED
        )
        locked = AllocationCheck(
            vault_id="v", accepted=False, reason=RejectionReason.VAULT_LOCKED
        )
        assert over.is_warning and not over.is_blocking
        assert locked.is_blocking and not locked.is_warning


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SESSION_STARTED,
            description="Session started",
        )
        assert event.event_type == AuditEventType.SESSION_STARTED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None
        assert event.timestamp.tzinfo is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        correlation_id = uuid4()
        event = AuditEventBuilder.persistence_failed(
            "user-1", "replace_vaults", "quota", correlation_id
        )
        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "persistence_failed"
        assert log_dict["severity"] == "error"
        assert log_dict["correlation_id"] == str(correlation_id)
        assert log_dict["details"] == {"operation": "replace_vaults"}

    def test_audit_event_to_sheets_row(self):
        """Test conversion to Google Sheets row."""
        event = AuditEventBuilder.vault_unlocked("user-1", "v3", "Emergency", True)
        row = event.to_sheets_row()

        assert len(row) == 12
        assert row[2] == "vault_unlocked"
        assert row[6] == "v3"
        assert json.loads(row[9]) == {"pin_verified": True}
        assert row[11] == "True"

    def test_audit_event_builder_vault_locked(self):
        """Test AuditEventBuilder.vault_locked."""
        event = AuditEventBuilder.vault_locked("user-1", "v1", "Lifestyle")

        assert event.event_type == AuditEventType.VAULT_LOCKED
        assert event.entity_type == "vault"
        assert event.entity_id == "v1"
        assert event.is_user_action is True

    def test_audit_event_builder_pin_rejected(self):
        """Test that PIN rejections are warnings carrying the attempt count."""
        event = AuditEventBuilder.pin_rejected("user-1", "v3", 2)

        assert event.severity == AuditSeverity.WARNING
        assert event.details == {"failed_attempts": 2}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
