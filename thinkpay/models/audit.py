"""
Audit event models

An audit event records who did what to which vault or payment, with a
severity and optional structured details. Events render two ways: a
flat dict for structlog and a row for the audit worksheet.

DESIGN DECISION: The audit trail is append-only.
Nothing here updates or removes an event once written.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from thinkpay.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Event kinds, grouped by the flow that emits them."""
    # Session
    USER_REGISTERED = "user_registered"
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    SETUP_ERROR = "setup_error"

    # Vaults
    VAULT_LOCKED = "vault_locked"
    VAULT_UNLOCKED = "vault_unlocked"
    VAULT_UNLOCK_REQUESTED = "vault_unlock_requested"
    PIN_REJECTED = "pin_rejected"
    VAULT_LIMIT_UPDATED = "vault_limit_updated"
    ACCESS_DENIED = "access_denied"

    # Payments
    PAYMENT_STARTED = "payment_started"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_CANCELLED = "payment_cancelled"
    CATEGORY_SUGGESTED = "category_suggested"
    ORACLE_FALLBACK = "oracle_fallback"
    PAYMENT_COMMITTED = "payment_committed"

    # Persistence
    PERSISTENCE_FAILED = "persistence_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """One entry of the audit trail."""

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who and what
    user_id: Optional[str] = Field(
        default=None,
        description="Identity the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'vault', 'payment', 'transaction')"
    )
    entity_id: Optional[str] = None

    # Correlation - all events of one payment attempt share this
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="One-line summary shown in the audit sheet"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="True when a user gesture caused the event"
    )

    def to_log_dict(self) -> dict:
        """Flat, JSON-safe view for structlog."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Audit worksheet row. Column order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Factory methods, one per event type, that fill in severity,
    entity and description consistently.

    Usage:
        event = AuditEventBuilder.vault_locked(user_id, vault_id, label)
        event = AuditEventBuilder.payment_committed(user_id, tx_id, ...)
    """

    @staticmethod
    def user_registered(user_id: str, username: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description=f"Account created for {username}",
            details={"username": username},
            is_user_action=True,
        )

    @staticmethod
    def session_started(user_id: str, vault_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_STARTED,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description=f"Session loaded with {vault_count} vaults",
            details={"vault_count": vault_count},
        )

    @staticmethod
    def session_ended(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_ENDED,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description="Signed out",
            is_user_action=True,
        )

    @staticmethod
    def setup_error(user_id: Optional[str], error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETUP_ERROR,
            severity=AuditSeverity.CRITICAL,
            user_id=user_id,
            description="Session could not be set up",
            error_message=error_message,
        )

    @staticmethod
    def vault_locked(user_id: str, vault_id: str, label: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_LOCKED,
            user_id=user_id,
            entity_type="vault",
            entity_id=vault_id,
            description=f"Vault locked: {label}",
            is_user_action=True,
        )

    @staticmethod
    def vault_unlocked(
        user_id: str,
        vault_id: str,
        label: str,
        pin_verified: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_UNLOCKED,
            user_id=user_id,
            entity_type="vault",
            entity_id=vault_id,
            description=f"Vault unlocked: {label}",
            details={"pin_verified": pin_verified},
            is_user_action=True,
        )

    @staticmethod
    def vault_unlock_requested(user_id: str, vault_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_UNLOCK_REQUESTED,
            user_id=user_id,
            entity_type="vault",
            entity_id=vault_id,
            description="PIN confirmation requested",
            is_user_action=True,
        )

    @staticmethod
    def pin_rejected(user_id: str, vault_id: str, attempts: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PIN_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="vault",
            entity_id=vault_id,
            description="Incorrect vault PIN",
            details={"failed_attempts": attempts},
            is_user_action=True,
        )

    @staticmethod
    def vault_limit_updated(
        user_id: str,
        vault_id: str,
        old_limit: str,
        new_limit: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_LIMIT_UPDATED,
            user_id=user_id,
            entity_type="vault",
            entity_id=vault_id,
            description=f"Vault limit changed from ₹{old_limit} to ₹{new_limit}",
            details={"old_limit": old_limit, "new_limit": new_limit},
            is_user_action=True,
        )

    @staticmethod
    def access_denied(user_id: str, vault_id: str, owner_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="vault",
            entity_id=vault_id,
            description="Vault access by a non-owner was refused",
            details={"owner_id": owner_id},
        )

    @staticmethod
    def payment_started(
        user_id: str,
        amount: str,
        merchant: str,
        is_emergency: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_STARTED,
            user_id=user_id,
            entity_type="payment",
            correlation_id=correlation_id,
            description=f"Payment of ₹{amount} to {merchant} started",
            details={
                "amount": amount,
                "merchant": merchant,
                "is_emergency": is_emergency,
            },
            is_user_action=True,
        )

    @staticmethod
    def payment_rejected(
        user_id: str,
        reasons: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="payment",
            correlation_id=correlation_id,
            description=f"Payment blocked: {', '.join(reasons)}",
            details={"reasons": reasons},
        )

    @staticmethod
    def payment_cancelled(user_id: str, step: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_CANCELLED,
            user_id=user_id,
            entity_type="payment",
            correlation_id=correlation_id,
            description=f"Payment cancelled at step {step}",
            details={"step": step},
            is_user_action=True,
        )

    @staticmethod
    def category_suggested(
        user_id: str,
        category: str,
        vault_id: str,
        confidence: float,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_SUGGESTED,
            user_id=user_id,
            entity_type="payment",
            correlation_id=correlation_id,
            description=f"Categorized as {category} ({confidence:.0%} confidence)",
            details={
                "category": category,
                "vault_id": vault_id,
                "confidence": confidence,
            },
        )

    @staticmethod
    def oracle_fallback(
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORACLE_FALLBACK,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="payment",
            correlation_id=correlation_id,
            description="Categorization unavailable, using fallback category",
            error_message=error_message,
        )

    @staticmethod
    def payment_committed(
        user_id: str,
        transaction_id: str,
        amount: str,
        merchant: str,
        allocations: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_COMMITTED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Payment committed: {merchant} - ₹{amount}",
            details={
                "amount": amount,
                "merchant": merchant,
                "allocations": allocations,
            },
            is_user_action=True,
        )

    @staticmethod
    def persistence_failed(
        user_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Store write failed: {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
