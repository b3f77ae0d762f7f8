"""
Core Ledger Models for ThinkPay

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep money arithmetic exact

DESIGN DECISION: Money is Decimal, quantized to two places.
Floating point would drift across many small allocations; the 0.01
comparison tolerance is kept only where amounts are typed in by a user.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
)


CENT = Decimal("0.01")


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for every model default."""
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """
    Convert user or storage input into a two-place Decimal.

    Raises:
        ValueError: if the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


Money = Annotated[Decimal, AfterValidator(to_money)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class VaultType(str, Enum):
    """
    Kinds of spending partitions.

    Business rules (SOS target, oracle matching) key off this tag;
    display attributes come from VAULT_DISPLAY.
    """
    LIFESTYLE = "Lifestyle"
    FOOD = "Food"
    EMERGENCY = "Emergency"
    BUSINESS = "Business"
    BILLS = "Bills"
    CUSTOM = "Custom"


# (icon, label) per vault type
VAULT_DISPLAY: dict[VaultType, tuple[str, str]] = {
    VaultType.LIFESTYLE: ("🎨", "Lifestyle"),
    VaultType.FOOD: ("🍔", "Food"),
    VaultType.EMERGENCY: ("🚨", "Emergency"),
    VaultType.BUSINESS: ("💼", "Business"),
    VaultType.BILLS: ("🧾", "Bills"),
    VaultType.CUSTOM: ("💰", "Custom"),
}


class UtilizationStatus(str, Enum):
    """How close a vault is to its limit."""
    NORMAL = "normal"
    HIGH = "high"            # above 85%, not yet over
    OVERSPENT = "overspent"  # above 100%


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class PaymentGateway(str, Enum):
    """Gateways a payment can be routed through. Stored as a tag only."""
    RAZORPAY = "Razorpay"  # UPI / domestic cards
    STRIPE = "Stripe"      # global cards


class NotificationPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"


# =============================================================================
# ACCOUNT MODELS
# =============================================================================

class User(BaseModel):
    """
    Profile of one authenticated identity.

    current_balance is the physical cash available.
    total_budget is a monthly planning target, used only for progress.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    created_at: datetime = Field(default_factory=utcnow)
    total_budget: Money = Field(default=Decimal("0"), ge=0)
    current_balance: Money = Field(default=Decimal("0"))


class Vault(BaseModel):
    """
    A labeled spending partition.

    CRITICAL: A locked vault accepts no new allocations, except the
    Emergency vault during an SOS payment.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1, max_length=64)
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Identity this vault belongs to"
    )
    type: VaultType
    name: Optional[str] = Field(default=None, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    limit: Money = Field(..., gt=0)
    spent: Money = Field(default=Decimal("0"), ge=0)
    is_locked: bool = False
    pin: Optional[str] = Field(default=None, max_length=12)
    biometric_enabled: bool = False

    @property
    def label(self) -> str:
        return self.name or VAULT_DISPLAY[self.type][1]

    @property
    def display_icon(self) -> str:
        return self.icon or VAULT_DISPLAY[self.type][0]

    @property
    def has_pin(self) -> bool:
        return bool(self.pin)

    @property
    def is_emergency(self) -> bool:
        return self.type == VaultType.EMERGENCY

    @property
    def remaining(self) -> Decimal:
        """Unspent part of the limit, never negative."""
        return max(Decimal("0"), self.limit - self.spent)

    @property
    def utilization(self) -> float:
        """Spent as a percentage of the limit."""
        return float(self.spent / self.limit * 100)

    @property
    def utilization_status(self) -> UtilizationStatus:
        percent = self.utilization
        if percent > 100:
            return UtilizationStatus.OVERSPENT
        if percent > 85:
            return UtilizationStatus.HIGH
        return UtilizationStatus.NORMAL


# Vaults every new account starts with. owner_id is filled at registration.
VAULT_TEMPLATE: tuple[dict, ...] = (
    {"id": "v1", "type": VaultType.LIFESTYLE, "limit": Decimal("10000")},
    {"id": "v2", "type": VaultType.FOOD, "limit": Decimal("5000")},
    {"id": "v3", "type": VaultType.EMERGENCY, "limit": Decimal("20000"),
     "is_locked": True, "pin": "1234"},
    {"id": "v4", "type": VaultType.BUSINESS, "limit": Decimal("15000")},
    {"id": "v5", "type": VaultType.BILLS, "limit": Decimal("8000")},
)


def build_default_vaults(owner_id: str) -> list[Vault]:
    """Instantiate the registration template for one identity."""
    return [Vault(owner_id=owner_id, **template) for template in VAULT_TEMPLATE]


# =============================================================================
# TRANSACTION MODELS
# =============================================================================

class VaultAllocation(BaseModel):
    """The part of one payment drawn from one vault."""
    model_config = ConfigDict(frozen=True)

    vault_id: str = Field(..., min_length=1)
    amount: Money = Field(..., ge=0)


class Transaction(BaseModel):
    """
    A committed payment.

    CRITICAL: Transactions are immutable once created.
    History is append-only.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    amount: Money = Field(..., gt=0)
    merchant: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    vault_allocations: tuple[VaultAllocation, ...] = Field(default_factory=tuple)
    timestamp: datetime = Field(default_factory=utcnow)
    status: TransactionStatus = TransactionStatus.COMPLETED
    gateway: Optional[PaymentGateway] = None
    explanation: Optional[str] = Field(default=None, max_length=500)

    @property
    def allocated_total(self) -> Decimal:
        return sum((a.amount for a in self.vault_allocations), Decimal("0"))


class Notification(BaseModel):
    """
    A system message for the user.

    Only `read` ever changes after creation.
    """

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    title: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., max_length=500)
    priority: NotificationPriority = NotificationPriority.NORMAL
    timestamp: datetime = Field(default_factory=utcnow)
    read: bool = False


# =============================================================================
# DERIVED AND AI MODELS
# =============================================================================

class DerivedBalances(BaseModel):
    """
    Quantities recomputed from the user and vault list on every read.

    Never stored, so they can never be stale.
    """

    reserved_funds: Decimal
    spendable_balance: Decimal
    total_spent: Decimal
    budget_progress: float = Field(
        ...,
        description="total_spent as a percentage of total_budget"
    )


class CategorySuggestion(BaseModel):
    """Categorization oracle's answer for one merchant/amount pair."""

    category: str = Field(..., min_length=1, max_length=100)
    confidence: float = Field(..., ge=0.0, le=1.0)
    suggested_vault: VaultType
    explanation: str = Field(default="", max_length=500)

    @classmethod
    def fallback(cls) -> "CategorySuggestion":
        """Deterministic answer used whenever the oracle cannot respond."""
        return cls(
            category="Uncategorized",
            confidence=0.0,
            suggested_vault=VaultType.LIFESTYLE,
            explanation="Unable to process AI categorization at this time.",
        )


class MonthlyInsights(BaseModel):
    """Spending tips generated from recent history."""

    tips: list[str] = Field(default_factory=list)
    summary: str
    savings_potential: str

    @classmethod
    def fallback(cls) -> "MonthlyInsights":
        return cls(
            tips=[
                "Monitor your daily coffee spend.",
                "Try setting lower lifestyle limits.",
            ],
            summary="Keep tracking for better insights.",
            savings_potential="₹0",
        )
