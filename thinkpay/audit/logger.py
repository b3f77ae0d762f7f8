"""
Audit Logger

Writes each audit event to the local structlog stream and, when a
store is configured, to the audit worksheet as well.

DESIGN DECISION: A failed audit write never fails the caller.
Vault and payment code awaits the logger and moves on; a dropped
event is reported locally instead. Correlation ids tie the events of
one payment attempt together.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from thinkpay.models.audit import AuditEvent, AuditEventBuilder
from thinkpay.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Records audit events for the session, vault and payment flows.

    Without storage it behaves as a plain structured logger.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("thinkpay.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Emit the event locally at a level matching its severity, then
        append it to the store.

        Returns False only when a configured store rejected the write.
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_user_registered(self, user_id: str, username: str) -> None:
        await self.log(AuditEventBuilder.user_registered(user_id, username))

    async def log_session_started(self, user_id: str, vault_count: int) -> None:
        await self.log(AuditEventBuilder.session_started(user_id, vault_count))

    async def log_session_ended(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.session_ended(user_id))

    async def log_setup_error(self, user_id: Optional[str], error_message: str) -> None:
        await self.log(AuditEventBuilder.setup_error(user_id, error_message))

    async def log_vault_locked(self, user_id: str, vault_id: str, label: str) -> None:
        """Log a vault being locked."""
        await self.log(AuditEventBuilder.vault_locked(user_id, vault_id, label))

    async def log_vault_unlocked(
        self,
        user_id: str,
        vault_id: str,
        label: str,
        pin_verified: bool,
    ) -> None:
        """Log a vault being unlocked, with or without a PIN check."""
        await self.log(
            AuditEventBuilder.vault_unlocked(user_id, vault_id, label, pin_verified)
        )

    async def log_unlock_requested(self, user_id: str, vault_id: str) -> None:
        await self.log(AuditEventBuilder.vault_unlock_requested(user_id, vault_id))

    async def log_pin_rejected(self, user_id: str, vault_id: str, attempts: int) -> None:
        await self.log(AuditEventBuilder.pin_rejected(user_id, vault_id, attempts))

    async def log_limit_updated(
        self,
        user_id: str,
        vault_id: str,
        old_limit: str,
        new_limit: str,
    ) -> None:
        await self.log(
            AuditEventBuilder.vault_limit_updated(user_id, vault_id, old_limit, new_limit)
        )

    async def log_access_denied(self, user_id: str, vault_id: str, owner_id: str) -> None:
        await self.log(AuditEventBuilder.access_denied(user_id, vault_id, owner_id))

    async def log_payment_started(
        self,
        user_id: str,
        amount: str,
        merchant: str,
        is_emergency: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.payment_started(
                user_id=user_id,
                amount=amount,
                merchant=merchant,
                is_emergency=is_emergency,
                correlation_id=correlation_id,
            )
        )

    async def log_payment_rejected(
        self,
        user_id: str,
        reasons: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.payment_rejected(user_id, reasons, correlation_id))

    async def log_payment_cancelled(
        self,
        user_id: str,
        step: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.payment_cancelled(user_id, step, correlation_id))

    async def log_category_suggested(
        self,
        user_id: str,
        category: str,
        vault_id: str,
        confidence: float,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.category_suggested(
                user_id=user_id,
                category=category,
                vault_id=vault_id,
                confidence=confidence,
                correlation_id=correlation_id,
            )
        )

    async def log_oracle_fallback(
        self,
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.oracle_fallback(user_id, error_message, correlation_id)
        )

    async def log_payment_committed(
        self,
        user_id: str,
        transaction_id: str,
        amount: str,
        merchant: str,
        allocations: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log a committed payment."""
        await self.log(
            AuditEventBuilder.payment_committed(
                user_id=user_id,
                transaction_id=transaction_id,
                amount=amount,
                merchant=merchant,
                allocations=allocations,
                correlation_id=correlation_id,
            )
        )

    async def log_persistence_failed(
        self,
        user_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a store write that failed after the session already changed."""
        await self.log(
            AuditEventBuilder.persistence_failed(
                user_id=user_id,
                operation=operation,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """The categorization oracle or another remote service failed."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """New id shared by every audit event of one payment attempt."""
    return uuid4()
