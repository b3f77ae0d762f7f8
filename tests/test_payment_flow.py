"""
Tests for the payment orchestrator.

Covers the step machine, the SOS shortcut, manual splits, commit and
its best-effort persistence.
"""

from decimal import Decimal

import pytest

from conftest import USER_ID, StubOracle
from thinkpay.models.audit import AuditEventType
from thinkpay.models.ledger import (
    CategorySuggestion,
    NotificationPriority,
    PaymentGateway,
    TransactionStatus,
    VaultAllocation,
    VaultType,
)
from thinkpay.models.payment import PaymentStep, RejectionReason
from thinkpay.orchestrator import PaymentFlow, PaymentRejectedError


async def _to_gateway(flow, amount, merchant="Cafe X"):
    attempt, _ = await flow.begin(amount, merchant)
    attempt, _ = await flow.suggest_category(attempt)
    attempt, _ = await flow.confirm_allocation(attempt)
    attempt, _ = await flow.select_gateway(attempt, PaymentGateway.RAZORPAY)
    return attempt


class TestEntry:
    """Amount and merchant checks."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -10, "abc", ""])
    async def test_invalid_amount_blocks(self, flow, amount):
        attempt, result = await flow.begin(amount, "Shop")
        assert result.has_reason(RejectionReason.INVALID_AMOUNT)
        assert not result.can_proceed
        assert attempt.step == PaymentStep.ENTRY

    @pytest.mark.asyncio
    async def test_empty_merchant_blocks(self, flow):
        attempt, result = await flow.begin("100", "   ")
        assert result.has_reason(RejectionReason.INVALID_MERCHANT)
        assert attempt.step == PaymentStep.ENTRY

    @pytest.mark.asyncio
    async def test_amount_above_cash_is_hard_block(self, flow):
        attempt, result = await flow.begin("50000.01", "Car dealer")
        assert result.has_reason(RejectionReason.INSUFFICIENT_LIQUIDITY)
        assert attempt.step == PaymentStep.ENTRY

    @pytest.mark.asyncio
    async def test_dipping_into_reserves_is_a_warning(self, flow, session):
        # Emergency vault (20000) is locked: spendable is 30000
        assert session.derived.spendable_balance == Decimal("30000")

        attempt, result = await flow.begin("35000", "Laptop store")

        assert result.can_proceed
        assert result.has_reason(RejectionReason.DIPPING_INTO_RESERVES)
        assert attempt.step == PaymentStep.CATEGORY_SUGGESTION
        assert attempt.warnings

    @pytest.mark.asyncio
    async def test_begin_does_not_touch_session(self, flow, session):
        before = session.model_copy(deep=True)
        await flow.begin("1200", "Cafe X")
        assert session == before


class TestCategorySuggestion:
    """Oracle consultation and vault routing."""

    @pytest.mark.asyncio
    async def test_suggested_vault_receives_whole_amount(self, flow):
        attempt, _ = await flow.begin("1200", "Cafe X")
        attempt, result = await flow.suggest_category(attempt)

        assert result.can_proceed
        assert attempt.step == PaymentStep.ALLOCATION
        assert attempt.category == "Dining"
        assert attempt.allocations == [
            VaultAllocation(vault_id="v2", amount=Decimal("1200"))
        ]

    @pytest.mark.asyncio
    async def test_locked_suggestion_falls_back_to_first_unlocked(
        self, session, store, notifier, audit_logger
    ):
        oracle = StubOracle(CategorySuggestion(
            category="Hospital",
            confidence=0.8,
            suggested_vault=VaultType.EMERGENCY,
        ))
        flow = PaymentFlow(session, store, oracle, notifier, audit_logger)

        attempt, _ = await flow.begin("500", "Clinic")
        attempt, _ = await flow.suggest_category(attempt)

        assert attempt.allocations[0].vault_id == "v1"

    @pytest.mark.asyncio
    async def test_oracle_error_uses_fallback_category(
        self, session, store, notifier, audit_logger, audit_storage
    ):
        oracle = StubOracle(error=RuntimeError("quota"))
        flow = PaymentFlow(session, store, oracle, notifier, audit_logger)

        attempt, _ = await flow.begin("500", "Unknown shop")
        attempt, result = await flow.suggest_category(attempt)

        assert result.can_proceed
        assert attempt.category == "Uncategorized"
        # Fallback suggests Lifestyle, which is unlocked
        assert attempt.allocations[0].vault_id == "v1"
        assert any(
            e.event_type == AuditEventType.ORACLE_FALLBACK
            for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_all_locked_aborts_to_entry(self, flow, session, store):
        session.vaults = [v.model_copy(update={"is_locked": True}) for v in session.vaults]

        attempt, result = await flow.begin("100", "Shop")
        attempt, result = await flow.suggest_category(attempt)

        assert result.has_reason(RejectionReason.NO_UNLOCKED_VAULT)
        assert attempt.step == PaymentStep.ENTRY
        assert attempt.allocations == []
        assert session.transactions == []
        assert session.user.current_balance == Decimal("50000")
        assert await store.list_transactions(USER_ID) == []

    @pytest.mark.asyncio
    async def test_wrong_step(self, flow):
        attempt, _ = await flow.begin("100", "Shop", emergency=True)
        _, result = await flow.suggest_category(attempt)
        assert result.has_reason(RejectionReason.INVALID_STEP)

    @pytest.mark.asyncio
    async def test_limit_overrun_is_reported(self, flow):
        attempt, _ = await flow.begin("6000", "Caterer")
        attempt, result = await flow.suggest_category(attempt)

        assert result.can_proceed
        assert result.has_reason(RejectionReason.LIMIT_EXCEEDED)


class TestManualAllocation:
    """Splitting one payment across vaults."""

    @pytest.mark.asyncio
    async def test_split_must_add_up_before_advancing(self, flow):
        attempt, _ = await flow.begin("1000", "Market")
        attempt, _ = await flow.suggest_category(attempt)

        attempt, result = await flow.update_allocations(attempt, [
            {"vault_id": "v2", "amount": "600"},
            {"vault_id": "v1", "amount": "300"},
        ])
        assert result.has_reason(RejectionReason.ALLOCATION_INCOMPLETE)
        assert attempt.remaining == Decimal("100")

        attempt, result = await flow.confirm_allocation(attempt)
        assert not result.can_proceed
        assert attempt.step == PaymentStep.ALLOCATION

        attempt, _ = await flow.set_allocation_amount(attempt, "v1", "400")
        attempt, result = await flow.confirm_allocation(attempt)
        assert result.can_proceed
        assert attempt.step == PaymentStep.GATEWAY_SELECTION

    @pytest.mark.asyncio
    async def test_over_allocation_blocks(self, flow):
        attempt, _ = await flow.begin("1000", "Market")
        attempt, _ = await flow.suggest_category(attempt)
        attempt, _ = await flow.update_allocations(attempt, [
            VaultAllocation(vault_id="v2", amount=Decimal("1000")),
            VaultAllocation(vault_id="v1", amount=Decimal("1")),
        ])

        attempt, result = await flow.confirm_allocation(attempt)
        assert result.has_reason(RejectionReason.ALLOCATION_INCOMPLETE)
        assert attempt.step == PaymentStep.ALLOCATION

    @pytest.mark.asyncio
    async def test_three_way_split_to_the_cent(self, flow):
        attempt, _ = await flow.begin("100", "Market")
        attempt, _ = await flow.suggest_category(attempt)
        attempt, _ = await flow.update_allocations(attempt, [
            {"vault_id": "v2", "amount": "33.33"},
            {"vault_id": "v1", "amount": "33.33"},
            {"vault_id": "v4", "amount": "33.34"},
        ])
        _, result = await flow.confirm_allocation(attempt)
        assert result.can_proceed

    @pytest.mark.asyncio
    async def test_locked_vault_cannot_be_added(self, flow):
        attempt, _ = await flow.begin("100", "Market")
        attempt, _ = await flow.suggest_category(attempt)

        updated, result = await flow.add_allocation(attempt, "v3")

        assert result.has_reason(RejectionReason.VAULT_LOCKED)
        assert updated.allocations == attempt.allocations

    @pytest.mark.asyncio
    async def test_add_and_remove(self, flow):
        attempt, _ = await flow.begin("100", "Market")
        attempt, _ = await flow.suggest_category(attempt)

        attempt, _ = await flow.add_allocation(attempt, "v4")
        assert [a.vault_id for a in attempt.allocations] == ["v2", "v4"]
        attempt, _ = await flow.add_allocation(attempt, "v4")
        assert len(attempt.allocations) == 2

        attempt, _ = await flow.remove_allocation(attempt, "v2")
        assert [a.vault_id for a in attempt.allocations] == ["v4"]

    @pytest.mark.asyncio
    async def test_same_vault_twice_counts_against_limit(self, flow):
        attempt, _ = await flow.begin("6000", "Market")
        attempt, _ = await flow.suggest_category(attempt)

        attempt, result = await flow.update_allocations(attempt, [
            {"vault_id": "v2", "amount": "3000"},
            {"vault_id": "v2", "amount": "3000"},
        ])

        assert result.has_reason(RejectionReason.LIMIT_EXCEEDED)
        assert attempt.allocated_total == Decimal("6000")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["-500", "lots"])
    async def test_bad_split_amount_is_rejected(self, flow, amount):
        attempt, _ = await flow.begin("2000", "Market")
        attempt, _ = await flow.suggest_category(attempt)

        updated, result = await flow.update_allocations(attempt, [
            {"vault_id": "v2", "amount": amount},
            {"vault_id": "v1", "amount": "1500"},
        ])

        assert result.has_errors
        assert result.has_reason(RejectionReason.INVALID_AMOUNT)
        assert updated == attempt
        assert updated.step == PaymentStep.ALLOCATION

    @pytest.mark.asyncio
    async def test_unknown_vault_rejected(self, flow):
        attempt, _ = await flow.begin("100", "Market")
        attempt, _ = await flow.suggest_category(attempt)
        _, result = await flow.update_allocations(
            attempt, [{"vault_id": "ghost", "amount": "100"}]
        )
        assert result.has_reason(RejectionReason.VAULT_NOT_FOUND)


class TestCommit:
    """Executing a payment."""

    @pytest.mark.asyncio
    async def test_end_to_end_food_payment(self, flow, session, store):
        attempt = await _to_gateway(flow, "1200", "Cafe X")

        tx = await flow.commit(attempt)

        assert tx.amount == Decimal("1200")
        assert tx.merchant == "Cafe X"
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.gateway == PaymentGateway.RAZORPAY
        assert list(tx.vault_allocations) == [
            VaultAllocation(vault_id="v2", amount=Decimal("1200"))
        ]
        assert session.vault("v2").spent == Decimal("1200")
        assert session.user.current_balance == Decimal("48800")
        assert session.transactions == [tx]

        authorized = [n for n in session.notifications if n.title == "Payment Authorized"]
        assert len(authorized) == 1
        assert authorized[0].priority == NotificationPriority.NORMAL

        assert await store.list_transactions(USER_ID) == [tx]
        stored_vaults = {v.id: v for v in await store.list_vaults(USER_ID)}
        assert stored_vaults["v2"].spent == Decimal("1200")
        assert (await store.get_profile(USER_ID)).current_balance == Decimal("48800")

    @pytest.mark.asyncio
    async def test_attempt_commits_only_once(self, flow, session, store):
        attempt = await _to_gateway(flow, "1200", "Cafe X")
        tx = await flow.commit(attempt)

        with pytest.raises(PaymentRejectedError) as exc:
            await flow.commit(attempt)
        assert exc.value.reason == RejectionReason.INVALID_STEP

        other_flow = PaymentFlow(session=session, store=store, oracle=StubOracle())
        with pytest.raises(PaymentRejectedError):
            await other_flow.commit(attempt)

        assert session.transactions == [tx]
        assert session.user.current_balance == Decimal("48800")
        assert session.vault("v2").spent == Decimal("1200")
        assert await store.list_transactions(USER_ID) == [tx]

    @pytest.mark.asyncio
    async def test_large_payment_is_high_priority(self, flow, session):
        attempt = await _to_gateway(flow, "10000.01", "Jeweller")
        await flow.commit(attempt)
        assert session.notifications[0].priority == NotificationPriority.HIGH

    @pytest.mark.asyncio
    async def test_split_payment_sums_to_amount(self, flow, session):
        attempt, _ = await flow.begin("900", "Market")
        attempt, _ = await flow.suggest_category(attempt)
        attempt, _ = await flow.update_allocations(attempt, [
            {"vault_id": "v2", "amount": "600"},
            {"vault_id": "v5", "amount": "300"},
        ])
        attempt, _ = await flow.confirm_allocation(attempt)
        attempt, _ = await flow.select_gateway(attempt, "Stripe")

        tx = await flow.commit(attempt)

        assert abs(tx.allocated_total - tx.amount) < Decimal("0.01")
        assert session.vault("v2").spent == Decimal("600")
        assert session.vault("v5").spent == Decimal("300")

    @pytest.mark.asyncio
    async def test_requires_gateway(self, flow, session):
        attempt, _ = await flow.begin("100", "Shop")
        attempt, _ = await flow.suggest_category(attempt)
        attempt, _ = await flow.confirm_allocation(attempt)

        with pytest.raises(PaymentRejectedError) as exc:
            await flow.commit(attempt)

        assert exc.value.reason == RejectionReason.GATEWAY_REQUIRED
        assert session.transactions == []

    @pytest.mark.asyncio
    async def test_unknown_gateway(self, flow):
        attempt, _ = await flow.begin("100", "Shop", emergency=True)
        attempt, result = await flow.select_gateway(attempt, "Bitcoin")
        assert result.has_reason(RejectionReason.GATEWAY_REQUIRED)
        assert attempt.gateway is None

    @pytest.mark.asyncio
    async def test_balance_drop_after_entry_blocks_commit(self, flow, session):
        attempt = await _to_gateway(flow, "1200")
        session.user = session.user.model_copy(update={"current_balance": Decimal("1000")})

        with pytest.raises(PaymentRejectedError) as exc:
            await flow.commit(attempt)

        assert exc.value.reason == RejectionReason.INSUFFICIENT_LIQUIDITY
        assert session.vault("v2").spent == Decimal("0")
        assert session.transactions == []

    @pytest.mark.asyncio
    async def test_vault_locked_after_allocation_blocks_commit(self, flow, session):
        attempt = await _to_gateway(flow, "1200")
        session.vaults = [
            v.model_copy(update={"is_locked": True}) if v.id == "v2" else v
            for v in session.vaults
        ]

        with pytest.raises(PaymentRejectedError) as exc:
            await flow.commit(attempt)
        assert exc.value.reason == RejectionReason.VAULT_LOCKED

    @pytest.mark.asyncio
    async def test_persistence_failure_is_not_rolled_back(
        self, flow, session, store, audit_storage
    ):
        store.fail.update({"append_transaction", "update_profile"})
        attempt = await _to_gateway(flow, "1200")

        tx = await flow.commit(attempt)

        assert session.transactions == [tx]
        assert session.user.current_balance == Decimal("48800")
        # The vault write went through, the others didn't
        stored_vaults = {v.id: v for v in await store.list_vaults(USER_ID)}
        assert stored_vaults["v2"].spent == Decimal("1200")
        assert await store.list_transactions(USER_ID) == []
        failed = {
            e.details["operation"]
            for e in audit_storage.events
            if e.event_type == AuditEventType.PERSISTENCE_FAILED
        }
        assert failed == {"append_transaction", "update_profile"}

    @pytest.mark.asyncio
    async def test_notification_failure_falls_back_to_local(self, flow, session, store):
        store.fail.add("append_notification")
        attempt = await _to_gateway(flow, "100")

        await flow.commit(attempt)

        assert session.notifications[0].title == "Payment Authorized"
        assert await store.list_notifications(USER_ID) == []

    @pytest.mark.asyncio
    async def test_commit_is_audited_under_one_correlation_id(
        self, flow, audit_storage
    ):
        attempt = await _to_gateway(flow, "100")
        await flow.commit(attempt)

        events = await audit_storage.get_events_by_correlation_id(attempt.correlation_id)
        types = [e.event_type for e in events]
        assert types[0] == AuditEventType.PAYMENT_STARTED
        assert AuditEventType.CATEGORY_SUGGESTED in types
        assert types[-1] == AuditEventType.PAYMENT_COMMITTED


class TestEmergencyPayment:
    """SOS shortcut."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("locked", [True, False])
    async def test_sos_draws_from_emergency_vault(self, flow, session, oracle, locked):
        session.vaults = [
            v.model_copy(update={"is_locked": locked}) if v.id == "v3" else v
            for v in session.vaults
        ]

        attempt, result = await flow.begin("3000", "Hospital", emergency=True)
        assert result.can_proceed
        assert attempt.step == PaymentStep.GATEWAY_SELECTION
        assert attempt.category == "Emergency"

        attempt, _ = await flow.select_gateway(attempt, PaymentGateway.RAZORPAY)
        tx = await flow.commit(attempt)

        assert list(tx.vault_allocations) == [
            VaultAllocation(vault_id="v3", amount=Decimal("3000"))
        ]
        assert session.vault("v3").spent == Decimal("3000")
        assert session.user.current_balance == Decimal("47000")
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_no_emergency_vault(self, flow, session):
        session.vaults = [v for v in session.vaults if v.type != VaultType.EMERGENCY]

        attempt, result = await flow.begin("3000", "Hospital", emergency=True)

        assert result.has_reason(RejectionReason.NO_EMERGENCY_VAULT)
        assert attempt.step == PaymentStep.ENTRY
        assert attempt.allocations == []

    @pytest.mark.asyncio
    async def test_sos_still_respects_cash_balance(self, flow):
        attempt, result = await flow.begin("60000", "Hospital", emergency=True)
        assert result.has_reason(RejectionReason.INSUFFICIENT_LIQUIDITY)
        assert attempt.step == PaymentStep.ENTRY


class TestCancelAndInstantPay:
    """Abandoning attempts and the one-tap path."""

    @pytest.mark.asyncio
    async def test_cancel_has_no_side_effects(self, flow, session, store):
        before = session.model_copy(deep=True)
        attempt = await _to_gateway(flow, "500")

        attempt = await flow.cancel(attempt)

        assert attempt.step == PaymentStep.ENTRY
        assert attempt.allocations == []
        assert session == before
        assert await store.list_transactions(USER_ID) == []

    @pytest.mark.asyncio
    async def test_instant_pay(self, flow, session):
        tx = await flow.instant_pay("250", "Cafe X")

        assert tx.gateway == PaymentGateway.RAZORPAY
        assert tx.vault_allocations[0].vault_id == "v2"
        assert session.user.current_balance == Decimal("49750")

    @pytest.mark.asyncio
    async def test_instant_sos(self, flow, session):
        tx = await flow.instant_pay("3000", "Ambulance", emergency=True)
        assert tx.category == "Emergency"
        assert session.vault("v3").spent == Decimal("3000")

    @pytest.mark.asyncio
    async def test_instant_pay_above_cash(self, flow, session):
        with pytest.raises(PaymentRejectedError) as exc:
            await flow.instant_pay("99999", "Car dealer")
        assert exc.value.reason == RejectionReason.INSUFFICIENT_LIQUIDITY
        assert session.transactions == []

    @pytest.mark.asyncio
    async def test_instant_pay_all_locked(self, flow, session):
        session.vaults = [v.model_copy(update={"is_locked": True}) for v in session.vaults]

        with pytest.raises(PaymentRejectedError) as exc:
            await flow.instant_pay("100", "Shop")

        assert exc.value.reason == RejectionReason.NO_UNLOCKED_VAULT
        assert session.user.current_balance == Decimal("50000")
        assert session.transactions == []
