"""
Payment Flow Models

A payment attempt moves through a fixed sequence of steps.
Each step produces a NEW PaymentAttempt; nothing about the user's
vaults or balance changes until the attempt is committed.

Validation outcomes are typed: every blocking or warning condition
carries a RejectionReason so callers can branch without parsing text.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from thinkpay.models.ledger import (
    CategorySuggestion,
    Money,
    PaymentGateway,
    VaultAllocation,
    utcnow,
)


class RejectionReason(str, Enum):
    """
    Business-rule outcomes.

    LIMIT_EXCEEDED is a warning, ALLOCATION_INCOMPLETE is a gate,
    the rest are hard blocks.
    """
    INVALID_AMOUNT = "invalid_amount"
    INVALID_MERCHANT = "invalid_merchant"
    VAULT_LOCKED = "vault_locked"
    VAULT_NOT_FOUND = "vault_not_found"
    LIMIT_EXCEEDED = "limit_exceeded"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    DIPPING_INTO_RESERVES = "dipping_into_reserves"
    NO_UNLOCKED_VAULT = "no_unlocked_vault"
    NO_EMERGENCY_VAULT = "no_emergency_vault"
    ALLOCATION_INCOMPLETE = "allocation_incomplete"
    GATEWAY_REQUIRED = "gateway_required"
    INVALID_STEP = "invalid_step"


class PaymentStep(str, Enum):
    """Where an attempt currently is."""
    ENTRY = "entry"
    CATEGORY_SUGGESTION = "category_suggestion"
    ALLOCATION = "allocation"
    GATEWAY_SELECTION = "gateway_selection"
    COMMITTED = "committed"


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    reason: RejectionReason
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of validating one step of a payment.

    Errors block. Warnings are shown but don't block.
    Info issues are gating conditions (e.g. unallocated remainder).
    """

    validated_at: datetime = Field(default_factory=utcnow)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def can_proceed(self) -> bool:
        """No errors and no open gating conditions."""
        return not any(issue.severity in ("error", "info") for issue in self.issues)

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    @property
    def reasons(self) -> list[RejectionReason]:
        return [issue.reason for issue in self.issues]

    def has_reason(self, reason: RejectionReason) -> bool:
        return reason in self.reasons

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(issues=[*self.issues, *other.issues])


class AllocationCheck(BaseModel):
    """
    Outcome of checking one proposed allocation against one vault.

    `accepted` is False for both hard rejections and the soft
    LIMIT_EXCEEDED signal; `is_warning` tells them apart.
    """

    vault_id: str
    accepted: bool
    reason: Optional[RejectionReason] = None
    message: str = ""

    @property
    def is_warning(self) -> bool:
        return self.reason == RejectionReason.LIMIT_EXCEEDED

    @property
    def is_blocking(self) -> bool:
        return not self.accepted and not self.is_warning


# =============================================================================
# PAYMENT ATTEMPT
# =============================================================================

class PaymentAttempt(BaseModel):
    """
    State of a single payment in progress.

    CRITICAL: Steps return a modified copy. The session is only
    touched by PaymentFlow.commit().
    """

    attempt_id: UUID = Field(default_factory=uuid4)
    correlation_id: UUID = Field(default_factory=uuid4)
    started_at: datetime = Field(default_factory=utcnow)

    step: PaymentStep = PaymentStep.ENTRY
    is_emergency: bool = False

    amount: Money = Field(default=Decimal("0"))
    merchant: str = ""

    suggestion: Optional[CategorySuggestion] = None
    category: Optional[str] = None
    allocations: list[VaultAllocation] = Field(default_factory=list)
    gateway: Optional[PaymentGateway] = None

    warnings: list[str] = Field(default_factory=list)

    @property
    def allocated_total(self) -> Decimal:
        return sum((a.amount for a in self.allocations), Decimal("0"))

    @property
    def remaining(self) -> Decimal:
        """Part of the amount not yet assigned to any vault."""
        return self.amount - self.allocated_total
