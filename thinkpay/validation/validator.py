"""
Payment Validation

DESIGN DECISION: Validation of a payment happens at three points:

ENTRY:
- Amount is a positive number
- Merchant is present
- Amount is covered by physical cash (hard block)
- Amount exceeds spendable balance (soft warning)

PER VAULT:
- Locked vaults take no new allocations
- Going over a vault's limit is a distinct, non-blocking signal

SPLIT:
- Every allocation targets a known, unlocked vault
- The allocations add up to the payment amount

IMPORTANT: Validation NEVER silently fixes issues and NEVER mutates
vaults or balances. It reports typed issues; callers decide.
"""

from decimal import Decimal
from typing import Any, Optional

from thinkpay.config import get_settings
from thinkpay.models.ledger import (
    DerivedBalances,
    Vault,
    VaultAllocation,
    to_money,
)
from thinkpay.models.payment import (
    AllocationCheck,
    RejectionReason,
    ValidationIssue,
    ValidationResult,
)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Best-effort conversion of typed-in input. None when not a number."""
    try:
        return to_money(value)
    except ValueError:
        return None


class PaymentValidator:
    """
    Validates payment input and vault allocations.

    Stateless apart from settings; safe to share across sessions.
    """

    def __init__(self):
        self._settings = get_settings().app

    @property
    def tolerance(self) -> Decimal:
        return self._settings.allocation_tolerance

    def validate_entry(
        self,
        amount: Any,
        merchant: str,
        derived: DerivedBalances,
        current_balance: Decimal,
    ) -> ValidationResult:
        """
        Check the amount/merchant pair a payment starts from.

        Args:
            amount: Raw amount as entered
            merchant: Merchant description
            derived: Current derived balances of the session
            current_balance: Physical cash available

        Returns:
            ValidationResult; errors block, the reserves warning doesn't
        """
        issues = []
        parsed = parse_amount(amount)

        if parsed is None or parsed <= 0:
            issues.append(ValidationIssue(
                field="amount",
                reason=RejectionReason.INVALID_AMOUNT,
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Enter a positive amount",
            ))

        if not merchant or not merchant.strip():
            issues.append(ValidationIssue(
                field="merchant",
                reason=RejectionReason.INVALID_MERCHANT,
                message="Merchant is required",
                severity="error",
                suggested_fix="Describe who you are paying",
            ))

        if parsed is None or parsed <= 0:
            return ValidationResult(issues=issues)

        if parsed > current_balance:
            issues.append(ValidationIssue(
                field="amount",
                reason=RejectionReason.INSUFFICIENT_LIQUIDITY,
                message=(
                    f"Amount (₹{parsed:,.2f}) exceeds your cash balance "
                    f"(₹{current_balance:,.2f})"
                ),
                severity="error",
            ))
        elif parsed > derived.spendable_balance:
            issues.append(ValidationIssue(
                field="amount",
                reason=RejectionReason.DIPPING_INTO_RESERVES,
                message=(
                    f"Amount exceeds your spendable balance "
                    f"(₹{derived.spendable_balance:,.2f}); "
                    f"this dips into reserved funds"
                ),
                severity="warning",
                suggested_fix="Consider a smaller amount or unlock fewer reserves",
            ))

        return ValidationResult(issues=issues)

    def validate_allocation(self, vault: Vault, amount: Decimal) -> AllocationCheck:
        """Check one proposed allocation against one vault."""
        if vault.is_locked:
            return AllocationCheck(
                vault_id=vault.id,
                accepted=False,
                reason=RejectionReason.VAULT_LOCKED,
                message=f"{vault.label} vault is locked",
            )

        if vault.spent + amount > vault.limit:
            return AllocationCheck(
                vault_id=vault.id,
                accepted=False,
                reason=RejectionReason.LIMIT_EXCEEDED,
                message=(
                    f"{vault.label} vault will exceed its limit "
                    f"(₹{vault.spent + amount:,.2f} of ₹{vault.limit:,.2f})"
                ),
            )

        return AllocationCheck(vault_id=vault.id, accepted=True)

    def validate_split(
        self,
        amount: Decimal,
        allocations: list[VaultAllocation],
        vaults: list[Vault],
    ) -> ValidationResult:
        """
        Check a manual split of `amount` across vaults.

        Unknown and locked vaults are errors, limit overruns are
        warnings, and a sum that differs from the amount by the
        tolerance or more is an info-level gate. Several lines on the
        same vault are checked against its limit together.
        """
        issues = []
        by_id = {v.id: v for v in vaults}

        per_vault: dict[str, Decimal] = {}
        for allocation in allocations:
            per_vault[allocation.vault_id] = (
                per_vault.get(allocation.vault_id, Decimal("0")) + allocation.amount
            )

        for vault_id, vault_amount in per_vault.items():
            vault = by_id.get(vault_id)
            if vault is None:
                issues.append(ValidationIssue(
                    field=f"allocations.{vault_id}",
                    reason=RejectionReason.VAULT_NOT_FOUND,
                    message=f"Vault {vault_id} does not exist",
                    severity="error",
                ))
                continue

            check = self.validate_allocation(vault, vault_amount)
            if check.accepted:
                continue
            issues.append(ValidationIssue(
                field=f"allocations.{vault.id}",
                reason=check.reason,
                message=check.message,
                severity="warning" if check.is_warning else "error",
            ))

        total = sum((a.amount for a in allocations), Decimal("0"))
        if abs(total - amount) >= self.tolerance:
            issues.append(ValidationIssue(
                field="allocations",
                reason=RejectionReason.ALLOCATION_INCOMPLETE,
                message=(
                    f"Allocated ₹{total:,.2f} of ₹{amount:,.2f}; "
                    f"remaining ₹{amount - total:,.2f}"
                ),
                severity="info",
                suggested_fix="Adjust the split until nothing remains",
            ))

        return ValidationResult(issues=issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show next to the current payment step.
        """
        if not result.issues:
            return "✅ All checks passed."

        lines = []

        errors = [i for i in result.issues if i.severity == "error"]
        if errors:
            lines.append("❌ This payment cannot continue:")
            for issue in errors:
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please note:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        pending = [i for i in result.issues if i.severity == "info"]
        for issue in pending:
            if lines:
                lines.append("")
            lines.append(f"⏳ {issue.message}")

        return "\n".join(lines)
