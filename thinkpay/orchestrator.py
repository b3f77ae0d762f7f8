"""
Main Orchestrator for ThinkPay

This module ties together all the components and defines the
end-to-end payment flow:
Entry → Category suggestion → Allocation → Gateway selection → Commit
with an SOS shortcut: Entry → Gateway selection → Commit.

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing changes before commit: every step returns a NEW attempt
- No payment commits without a full allocation to valid vaults
- No payment commits above the physical cash balance
- Every step is audited

Commit applies the payment to the session first, then persists the
transaction, the vaults and the balance as one concurrent batch.
A failed write is logged and audited but never rolled back: the
session stays the source of truth until it is refreshed.
"""

import asyncio
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

import structlog
from pydantic import ValidationError

from thinkpay.agents import CategorizationOracle, GeminiCategorizationAgent
from thinkpay.audit import AuditLogger, create_correlation_id
from thinkpay.config import get_settings
from thinkpay.models.ledger import (
    CategorySuggestion,
    NotificationPriority,
    PaymentGateway,
    Transaction,
    TransactionStatus,
    VaultAllocation,
    utcnow,
)
from thinkpay.models.payment import (
    PaymentAttempt,
    PaymentStep,
    RejectionReason,
    ValidationIssue,
    ValidationResult,
)
from thinkpay.queries import LedgerAnalytics
from thinkpay.services.auth import AuthProviderInterface, LocalAuthProvider
from thinkpay.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryLedgerStore,
    LedgerStoreInterface,
)
from thinkpay.session import Notifier, SessionContext, SessionManager
from thinkpay.validation import PaymentValidator, parse_amount
from thinkpay.vaults import (
    VaultAccessDeniedError,
    VaultLedgerEngine,
    apply_allocations,
    find_emergency_vault,
    select_target_vault,
)


logger = structlog.get_logger("thinkpay.orchestrator")

EMERGENCY_CATEGORY = "Emergency"
DEFAULT_CATEGORY = "General"


class PaymentRejectedError(Exception):
    """A payment was blocked by a business rule."""

    def __init__(self, reason: RejectionReason, message: str):
        self.reason = reason
        super().__init__(message)

    @classmethod
    def from_result(cls, result: ValidationResult) -> "PaymentRejectedError":
        issue = next(
            (i for i in result.issues if i.severity == "error"),
            result.issues[0],
        )
        return cls(issue.reason, issue.message)


def _error(field: str, reason: RejectionReason, message: str) -> ValidationResult:
    return ValidationResult(issues=[ValidationIssue(
        field=field,
        reason=reason,
        message=message,
        severity="error",
    )])


class PaymentFlow:
    """
    Orchestrates one payment at a time for one session.

    Flow:
    1. begin → amount/merchant checks, liquidity, SOS routing
    2. suggest_category → oracle, target vault selection
    3. update/add/remove allocations → manual split
    4. confirm_allocation → split must equal the amount
    5. select_gateway → Razorpay or Stripe
    6. commit → transaction + vault/balance update + persistence

    Each step returns (attempt, ValidationResult). A blocked step
    returns the attempt unchanged, or back at ENTRY when the payment
    cannot go on.
    """

    def __init__(
        self,
        session: SessionContext,
        store: LedgerStoreInterface,
        oracle: CategorizationOracle,
        notifier: Optional[Notifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[PaymentValidator] = None,
    ):
        self._session = session
        self._store = store
        self._oracle = oracle
        self._audit = audit_logger or AuditLogger()
        self._notifier = notifier or Notifier(store, self._audit)
        self._validator = validator or PaymentValidator()
        self._settings = get_settings().app

    @property
    def session(self) -> SessionContext:
        return self._session

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _reject(
        self,
        attempt: PaymentAttempt,
        result: ValidationResult,
        reset: bool = False,
    ) -> tuple[PaymentAttempt, ValidationResult]:
        await self._audit.log_payment_rejected(
            user_id=self._session.user_id,
            reasons=[r.value for r in result.reasons],
            correlation_id=attempt.correlation_id,
        )
        if reset:
            attempt = attempt.model_copy(update={
                "step": PaymentStep.ENTRY,
                "allocations": [],
                "gateway": None,
            })
        return attempt, result

    def _wrong_step(
        self,
        attempt: PaymentAttempt,
        expected: PaymentStep,
    ) -> Optional[ValidationResult]:
        if attempt.step == expected:
            return None
        return _error(
            "step",
            RejectionReason.INVALID_STEP,
            f"Payment is at step {attempt.step.value}, expected {expected.value}",
        )

    def _split(
        self,
        attempt: PaymentAttempt,
        allocations: list[VaultAllocation],
    ) -> ValidationResult:
        return self._validator.validate_split(
            attempt.amount, allocations, self._owned_vaults()
        )

    def _owned_vaults(self):
        return [v for v in self._session.vaults if v.owner_id == self._session.user_id]

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def begin(
        self,
        amount: Any,
        merchant: str,
        emergency: bool = False,
    ) -> tuple[PaymentAttempt, ValidationResult]:
        """
        Start a payment.

        SOS payments go straight to gateway selection with the whole
        amount on the Emergency vault, whatever its lock state.
        """
        parsed = parse_amount(amount)
        attempt = PaymentAttempt(
            correlation_id=create_correlation_id(),
            is_emergency=emergency,
            amount=parsed if parsed is not None and parsed > 0 else Decimal("0"),
            merchant=(merchant or "").strip(),
        )

        result = self._validator.validate_entry(
            amount,
            merchant,
            self._session.derived,
            self._session.user.current_balance,
        )
        if result.has_errors:
            return await self._reject(attempt, result)

        attempt.warnings = result.warnings
        await self._audit.log_payment_started(
            user_id=self._session.user_id,
            amount=str(attempt.amount),
            merchant=attempt.merchant,
            is_emergency=emergency,
            correlation_id=attempt.correlation_id,
        )

        if not emergency:
            attempt.step = PaymentStep.CATEGORY_SUGGESTION
            return attempt, result

        vault = find_emergency_vault(self._owned_vaults())
        if vault is None:
            return await self._reject(attempt, result.merge(_error(
                "vault",
                RejectionReason.NO_EMERGENCY_VAULT,
                "No Emergency vault found",
            )))

        if vault.spent + attempt.amount > vault.limit:
            result = result.merge(ValidationResult(issues=[ValidationIssue(
                field=f"allocations.{vault.id}",
                reason=RejectionReason.LIMIT_EXCEEDED,
                message=f"{vault.label} vault will exceed its limit",
                severity="warning",
            )]))
            attempt.warnings = result.warnings

        attempt.allocations = [VaultAllocation(vault_id=vault.id, amount=attempt.amount)]
        attempt.category = EMERGENCY_CATEGORY
        attempt.step = PaymentStep.GATEWAY_SELECTION
        return attempt, result

    async def suggest_category(
        self,
        attempt: PaymentAttempt,
    ) -> tuple[PaymentAttempt, ValidationResult]:
        """
        Ask the oracle for a category and route the whole amount to a vault.

        Vault choice: unlocked vault of the suggested type, else the
        first unlocked vault. No unlocked vault aborts back to ENTRY.
        """
        wrong = self._wrong_step(attempt, PaymentStep.CATEGORY_SUGGESTION)
        if wrong:
            return attempt, wrong

        try:
            suggestion = await self._oracle.categorize(attempt.merchant, attempt.amount)
        except Exception as e:
            # Oracles must not raise; treat one that does like any outage
            await self._audit.log_oracle_fallback(
                self._session.user_id, str(e), attempt.correlation_id
            )
            suggestion = CategorySuggestion.fallback()

        target = select_target_vault(self._owned_vaults(), suggestion.suggested_vault)
        if target is None:
            return await self._reject(
                attempt.model_copy(update={"suggestion": suggestion}),
                _error(
                    "vault",
                    RejectionReason.NO_UNLOCKED_VAULT,
                    "All funding vaults are locked",
                ),
                reset=True,
            )

        await self._audit.log_category_suggested(
            user_id=self._session.user_id,
            category=suggestion.category,
            vault_id=target.id,
            confidence=suggestion.confidence,
            correlation_id=attempt.correlation_id,
        )

        allocations = [VaultAllocation(vault_id=target.id, amount=attempt.amount)]
        result = self._split(attempt, allocations)
        updated = attempt.model_copy(update={
            "suggestion": suggestion,
            "category": suggestion.category,
            "allocations": allocations,
            "step": PaymentStep.ALLOCATION,
            "warnings": [*attempt.warnings, *result.warnings],
        })
        return updated, result

    async def update_allocations(
        self,
        attempt: PaymentAttempt,
        allocations: Iterable[Union[VaultAllocation, dict]],
    ) -> tuple[PaymentAttempt, ValidationResult]:
        """
        Replace the split with a manual one.

        Unknown or locked vaults and bad amounts reject the whole update. Limit
        overruns are warnings. An incomplete sum is reported but
        the split is kept so the user can keep editing.
        """
        wrong = self._wrong_step(attempt, PaymentStep.ALLOCATION)
        if wrong:
            return attempt, wrong

        try:
            proposed = [
                a if isinstance(a, VaultAllocation) else VaultAllocation.model_validate(a)
                for a in allocations
            ]
        except ValidationError:
            return attempt, _error(
                "allocations",
                RejectionReason.INVALID_AMOUNT,
                "Each vault amount must be a number of zero or more",
            )
        result = self._split(attempt, proposed)
        if result.has_errors:
            return attempt, result

        return attempt.model_copy(update={"allocations": proposed}), result

    async def add_allocation(
        self,
        attempt: PaymentAttempt,
        vault_id: str,
    ) -> tuple[PaymentAttempt, ValidationResult]:
        """Add a vault to the split with a zero amount. Duplicates are ignored."""
        if any(a.vault_id == vault_id for a in attempt.allocations):
            return attempt, self._split(attempt, attempt.allocations)
        return await self.update_allocations(
            attempt,
            [*attempt.allocations, VaultAllocation(vault_id=vault_id, amount=Decimal("0"))],
        )

    async def set_allocation_amount(
        self,
        attempt: PaymentAttempt,
        vault_id: str,
        amount: Any,
    ) -> tuple[PaymentAttempt, ValidationResult]:
        """Change the amount on one vault of the split. Bad input counts as 0."""
        value = parse_amount(amount)
        if value is None or value < 0:
            value = Decimal("0")
        return await self.update_allocations(
            attempt,
            [
                VaultAllocation(vault_id=a.vault_id, amount=value)
                if a.vault_id == vault_id else a
                for a in attempt.allocations
            ],
        )

    async def remove_allocation(
        self,
        attempt: PaymentAttempt,
        vault_id: str,
    ) -> tuple[PaymentAttempt, ValidationResult]:
        return await self.update_allocations(
            attempt,
            [a for a in attempt.allocations if a.vault_id != vault_id],
        )

    async def confirm_allocation(
        self,
        attempt: PaymentAttempt,
    ) -> tuple[PaymentAttempt, ValidationResult]:
        """Advance to gateway selection once the split equals the amount."""
        wrong = self._wrong_step(attempt, PaymentStep.ALLOCATION)
        if wrong:
            return attempt, wrong

        result = self._split(attempt, attempt.allocations)
        if not result.can_proceed:
            return attempt, result

        return attempt.model_copy(update={"step": PaymentStep.GATEWAY_SELECTION}), result

    async def select_gateway(
        self,
        attempt: PaymentAttempt,
        gateway: Union[PaymentGateway, str],
    ) -> tuple[PaymentAttempt, ValidationResult]:
        wrong = self._wrong_step(attempt, PaymentStep.GATEWAY_SELECTION)
        if wrong:
            return attempt, wrong

        try:
            selected = PaymentGateway(gateway)
        except ValueError:
            return attempt, _error(
                "gateway",
                RejectionReason.GATEWAY_REQUIRED,
                f"Unknown payment gateway: {gateway}",
            )

        return attempt.model_copy(update={"gateway": selected}), ValidationResult()

    async def cancel(self, attempt: PaymentAttempt) -> PaymentAttempt:
        """Abandon the attempt. Nothing was changed, nothing to undo."""
        await self._audit.log_payment_cancelled(
            self._session.user_id, attempt.step.value, attempt.correlation_id
        )
        return attempt.model_copy(update={
            "step": PaymentStep.ENTRY,
            "suggestion": None,
            "category": None,
            "allocations": [],
            "gateway": None,
            "warnings": [],
        })

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def _check_commit(self, attempt: PaymentAttempt) -> None:
        """
        Final checks against the CURRENT session state.

        Raises:
            PaymentRejectedError: Nothing has been mutated
            VaultAccessDeniedError: An allocation targets a foreign vault
        """
        if attempt.attempt_id in self._session.committed_attempts:
            raise PaymentRejectedError(
                RejectionReason.INVALID_STEP,
                "This payment has already been committed",
            )
        if attempt.step != PaymentStep.GATEWAY_SELECTION:
            raise PaymentRejectedError(
                RejectionReason.INVALID_STEP,
                f"Cannot commit a payment at step {attempt.step.value}",
            )
        if attempt.gateway is None:
            raise PaymentRejectedError(
                RejectionReason.GATEWAY_REQUIRED,
                "Select a payment gateway first",
            )
        if attempt.amount <= 0:
            raise PaymentRejectedError(
                RejectionReason.INVALID_AMOUNT,
                "Amount must be greater than zero",
            )
        if attempt.amount > self._session.user.current_balance:
            raise PaymentRejectedError(
                RejectionReason.INSUFFICIENT_LIQUIDITY,
                "Amount exceeds your cash balance",
            )
        if not attempt.allocations:
            raise PaymentRejectedError(
                RejectionReason.NO_UNLOCKED_VAULT,
                "Payment has no vault to draw from",
            )
        if abs(attempt.allocated_total - attempt.amount) >= self._validator.tolerance:
            raise PaymentRejectedError(
                RejectionReason.ALLOCATION_INCOMPLETE,
                f"Allocated ₹{attempt.allocated_total:,.2f} of ₹{attempt.amount:,.2f}",
            )

        for allocation in attempt.allocations:
            vault = self._session.vault(allocation.vault_id)
            if vault is None:
                raise PaymentRejectedError(
                    RejectionReason.VAULT_NOT_FOUND,
                    f"Vault {allocation.vault_id} does not exist",
                )
            if vault.owner_id != self._session.user_id:
                raise VaultAccessDeniedError(
                    vault.id, vault.owner_id, self._session.user_id
                )
            # SOS payments may draw on a locked Emergency vault
            if vault.is_locked and not (attempt.is_emergency and vault.is_emergency):
                raise PaymentRejectedError(
                    RejectionReason.VAULT_LOCKED,
                    f"{vault.label} vault is locked",
                )

    async def commit(self, attempt: PaymentAttempt) -> Transaction:
        """
        Execute the payment.

        Once this starts it is not cancellable.

        Raises:
            PaymentRejectedError: A final check failed (no side effects)
        """
        try:
            self._check_commit(attempt)
        except PaymentRejectedError as e:
            await self._audit.log_payment_rejected(
                self._session.user_id, [e.reason.value], attempt.correlation_id
            )
            raise

        self._session.committed_attempts.add(attempt.attempt_id)

        transaction = Transaction(
            amount=attempt.amount,
            merchant=attempt.merchant,
            category=attempt.category or DEFAULT_CATEGORY,
            vault_allocations=tuple(attempt.allocations),
            timestamp=utcnow(),
            status=TransactionStatus.COMPLETED,
            gateway=attempt.gateway,
            explanation=attempt.suggestion.explanation if attempt.suggestion else None,
        )

        # Apply to the session first; it is the source of truth
        session = self._session
        session.vaults = apply_allocations(session.vaults, transaction.vault_allocations)
        new_balance = session.user.current_balance - transaction.amount
        session.user = session.user.model_copy(update={"current_balance": new_balance})
        session.transactions = [transaction, *session.transactions]

        await self._persist(transaction, new_balance, attempt)

        await self._notifier.notify(
            session,
            "Payment Authorized",
            f"Successfully transferred ₹{transaction.amount:,.2f} to {transaction.merchant}.",
            (
                NotificationPriority.HIGH
                if transaction.amount > self._settings.high_priority_threshold
                else NotificationPriority.NORMAL
            ),
        )

        await self._audit.log_payment_committed(
            user_id=session.user_id,
            transaction_id=transaction.id,
            amount=str(transaction.amount),
            merchant=transaction.merchant,
            allocations=[
                {"vault_id": a.vault_id, "amount": str(a.amount)}
                for a in transaction.vault_allocations
            ],
            correlation_id=attempt.correlation_id,
        )

        logger.info(
            "payment_committed",
            user_id=session.user_id,
            transaction_id=transaction.id,
            amount=str(transaction.amount),
        )
        return transaction

    async def _persist(
        self,
        transaction: Transaction,
        new_balance: Decimal,
        attempt: PaymentAttempt,
    ) -> list[str]:
        """
        Issue the three writes as one unordered batch.

        Returns:
            Names of the writes that failed
        """
        user_id = self._session.user_id
        operations = ("append_transaction", "replace_vaults", "update_profile")
        results = await asyncio.gather(
            self._store.append_transaction(user_id, transaction),
            self._store.replace_vaults(user_id, list(self._session.vaults)),
            self._store.update_profile(user_id, {"current_balance": new_balance}),
            return_exceptions=True,
        )

        failed = []
        for operation, outcome in zip(operations, results):
            if not isinstance(outcome, Exception):
                continue
            failed.append(operation)
            logger.error(
                "payment_persistence_failed",
                user_id=user_id,
                operation=operation,
                transaction_id=transaction.id,
                error=str(outcome),
            )
            await self._audit.log_persistence_failed(
                user_id=user_id,
                operation=operation,
                error_message=str(outcome),
                correlation_id=attempt.correlation_id,
            )
        return failed

    async def instant_pay(
        self,
        amount: Any,
        merchant: str,
        emergency: bool = False,
    ) -> Transaction:
        """
        One-tap payment: suggested vault (or Emergency) and the
        default gateway, no manual split.

        Raises:
            PaymentRejectedError: With the first blocking reason
        """
        attempt, result = await self.begin(amount, merchant, emergency=emergency)
        if result.has_errors:
            raise PaymentRejectedError.from_result(result)

        if not emergency:
            attempt, result = await self.suggest_category(attempt)
            if result.has_errors:
                raise PaymentRejectedError.from_result(result)
            attempt, result = await self.confirm_allocation(attempt)
            if not result.can_proceed:
                raise PaymentRejectedError.from_result(result)

        attempt, result = await self.select_gateway(attempt, self._settings.default_gateway)
        if result.has_errors:
            raise PaymentRejectedError.from_result(result)

        return await self.commit(attempt)


# =============================================================================
# FACTORY
# =============================================================================

class AppComponents:
    """Everything a front end needs, wired to one store and one audit trail."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        auth: AuthProviderInterface,
        oracle: CategorizationOracle,
        audit_logger: AuditLogger,
        sheets_client: Optional[GoogleSheetsClient] = None,
    ):
        self.store = store
        self.auth = auth
        self.oracle = oracle
        self.audit_logger = audit_logger
        self.sheets_client = sheets_client
        self.notifier = Notifier(store, audit_logger)
        self.sessions = SessionManager(store, auth, audit_logger)
        self.engine = VaultLedgerEngine(store, self.notifier, audit_logger)
        self.analytics = LedgerAnalytics(oracle)

    def payment_flow(self, session: SessionContext) -> PaymentFlow:
        return PaymentFlow(
            session=session,
            store=self.store,
            oracle=self.oracle,
            notifier=self.notifier,
            audit_logger=self.audit_logger,
        )


def create_app_components(
    use_storage: bool = True,
    oracle: Optional[CategorizationOracle] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for local runs with the in-memory store.
        oracle: Categorization oracle; Gemini when None
    """
    sheets_client = None
    store: LedgerStoreInterface
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsLedgerStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            store = InMemoryLedgerStore()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        store = InMemoryLedgerStore()
        audit_logger = AuditLogger()  # Local-only logging

    return AppComponents(
        store=store,
        auth=LocalAuthProvider(),
        oracle=oracle or GeminiCategorizationAgent(audit_logger=audit_logger),
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )
