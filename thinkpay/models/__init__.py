"""
Data Models Package

This package contains all Pydantic models used in ThinkPay.
All data flowing through the system must conform to these schemas.
"""

from thinkpay.models.ledger import (
    VAULT_DISPLAY,
    VAULT_TEMPLATE,
    CategorySuggestion,
    DerivedBalances,
    MonthlyInsights,
    Notification,
    NotificationPriority,
    PaymentGateway,
    Transaction,
    TransactionStatus,
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
    PaymentStep,
    RejectionReason,
    ValidationIssue,
    ValidationResult,
)
from thinkpay.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "VAULT_DISPLAY",
    "VAULT_TEMPLATE",
    "CategorySuggestion",
    "DerivedBalances",
    "MonthlyInsights",
    "Notification",
    "NotificationPriority",
    "PaymentGateway",
    "Transaction",
    "TransactionStatus",
    "User",
    "UtilizationStatus",
    "Vault",
    "VaultAllocation",
    "VaultType",
    "build_default_vaults",
    "to_money",
    # Payment models
    "AllocationCheck",
    "PaymentAttempt",
    "PaymentStep",
    "RejectionReason",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
