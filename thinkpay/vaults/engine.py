"""
Vault Ledger Engine

DESIGN DECISION: The engine is the only code that changes a vault.
Every operation:
1. Resolves the vault inside the explicit session context
2. Checks the vault belongs to the active identity BEFORE any mutation
3. Replaces the vault in the session (models are never edited in place)
4. Persists the full vault list, best effort
5. Writes an audit event

The in-memory session is the source of truth while the session lives.
A failed write is logged and audited; it does not undo the change.
"""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from thinkpay.audit import AuditLogger
from thinkpay.models.ledger import (
    DerivedBalances,
    User,
    Vault,
    VaultAllocation,
    VaultType,
)
from thinkpay.models.payment import AllocationCheck
from thinkpay.services.storage import LedgerStoreInterface, StorageError
from thinkpay.validation import PaymentValidator, parse_amount

if TYPE_CHECKING:
    from thinkpay.session import Notifier, SessionContext


logger = structlog.get_logger("thinkpay.vaults")


class VaultError(Exception):
    """Base exception for vault operations."""
    pass


class VaultNotFoundError(VaultError):
    """No vault with this id in the session."""
    pass


class VaultAccessDeniedError(VaultError):
    """The vault belongs to a different identity."""

    def __init__(self, vault_id: str, owner_id: str, user_id: str):
        self.vault_id = vault_id
        self.owner_id = owner_id
        self.user_id = user_id
        super().__init__(f"Vault {vault_id} does not belong to the active user")


class InvalidLimitError(VaultError):
    """Limit must be > 0."""
    pass


class UnlockStage(str, Enum):
    IDLE = "idle"
    AWAITING_PIN = "awaiting_pin"
    PIN_REJECTED = "pin_rejected"


class UnlockState(BaseModel):
    """Confirmation state of one PIN-protected vault."""

    vault_id: str
    stage: UnlockStage = UnlockStage.IDLE
    pin_input: str = ""
    failed_attempts: int = Field(default=0, ge=0)


# =============================================================================
# PURE HELPERS
# =============================================================================

def compute_derived(user: User, vaults: Iterable[Vault]) -> DerivedBalances:
    """
    Recompute reserved and spendable funds.

    reserved_funds    = sum of max(0, limit - spent) over locked vaults
    spendable_balance = max(0, current_balance - reserved_funds)
    budget_progress   = total_spent / total_budget * 100 (0 without a budget)
    """
    vaults = list(vaults)
    reserved = sum((v.remaining for v in vaults if v.is_locked), Decimal("0"))
    total_spent = sum((v.spent for v in vaults), Decimal("0"))

    if user.total_budget > 0:
        progress = float(total_spent / user.total_budget * 100)
    else:
        progress = 0.0

    return DerivedBalances(
        reserved_funds=reserved,
        spendable_balance=max(Decimal("0"), user.current_balance - reserved),
        total_spent=total_spent,
        budget_progress=progress,
    )


def find_emergency_vault(vaults: Iterable[Vault]) -> Optional[Vault]:
    """The SOS target, locked or not."""
    return next((v for v in vaults if v.type == VaultType.EMERGENCY), None)


def select_target_vault(
    vaults: Iterable[Vault],
    suggested_type: Optional[VaultType],
) -> Optional[Vault]:
    """
    Pick the vault a single-allocation payment goes to.

    First an unlocked vault of the suggested type, then the first
    unlocked vault of any type. None when every vault is locked.
    """
    unlocked = [v for v in vaults if not v.is_locked]
    if suggested_type is not None:
        for vault in unlocked:
            if vault.type == suggested_type:
                return vault
    return unlocked[0] if unlocked else None


def apply_allocations(
    vaults: Iterable[Vault],
    allocations: Iterable[VaultAllocation],
) -> list[Vault]:
    """Return a new vault list with each allocation added to `spent`."""
    totals: dict[str, Decimal] = {}
    for allocation in allocations:
        totals[allocation.vault_id] = (
            totals.get(allocation.vault_id, Decimal("0")) + allocation.amount
        )

    return [
        v.model_copy(update={"spent": v.spent + totals[v.id]}) if v.id in totals else v
        for v in vaults
    ]


# =============================================================================
# ENGINE
# =============================================================================

class VaultLedgerEngine:
    """
    Locking, unlocking and limit edits for the vaults of one session.

    Unlock confirmation state is kept per vault id. It is transient and
    never persisted.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        notifier: "Notifier",
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[PaymentValidator] = None,
    ):
        self._store = store
        self._notifier = notifier
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or PaymentValidator()
        self._unlock_states: dict[str, UnlockState] = {}

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_vault(self, session: "SessionContext", vault_id: str) -> Vault:
        """
        Resolve a vault with the ownership check applied.

        Raises:
            VaultNotFoundError: Unknown id
            VaultAccessDeniedError: Vault owned by another identity
        """
        vault = next((v for v in session.vaults if v.id == vault_id), None)
        if vault is None:
            raise VaultNotFoundError(f"Vault not found: {vault_id}")

        if vault.owner_id != session.user_id:
            await self._audit.log_access_denied(
                session.user_id, vault_id, vault.owner_id
            )
            raise VaultAccessDeniedError(vault_id, vault.owner_id, session.user_id)

        return vault

    def unlock_state(self, vault_id: str) -> UnlockState:
        return self._unlock_states.get(vault_id) or UnlockState(vault_id=vault_id)

    def compute_derived(self, session: "SessionContext") -> DerivedBalances:
        return compute_derived(session.user, session.vaults)

    def validate_allocation(self, vault: Vault, amount: Decimal) -> AllocationCheck:
        return self._validator.validate_allocation(vault, amount)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def toggle_lock(
        self,
        session: "SessionContext",
        vault_id: str,
        pin: Optional[str] = None,
    ) -> Vault:
        """
        Lock an unlocked vault, or start unlocking a locked one.

        A locked vault with a PIN only moves to the confirmation step;
        if `pin` is given it is submitted right away.
        """
        vault = await self.get_vault(session, vault_id)

        if not vault.is_locked:
            locked = await self._save(session, vault.model_copy(update={"is_locked": True}))
            self._unlock_states.pop(vault_id, None)
            await self._notifier.notify(
                session,
                "Vault Secured",
                f"{vault.label} unit has been isolated and frozen.",
            )
            await self._audit.log_vault_locked(session.user_id, vault_id, vault.label)
            return locked

        if vault.has_pin:
            self._enter_awaiting_pin(vault_id)
            await self._audit.log_unlock_requested(session.user_id, vault_id)
            if pin is not None:
                return await self.submit_pin(session, vault_id, pin)
            return vault

        unlocked = await self._save(session, vault.model_copy(update={"is_locked": False}))
        await self._audit.log_vault_unlocked(
            session.user_id, vault_id, vault.label, pin_verified=False
        )
        return unlocked

    async def begin_unlock(self, session: "SessionContext", vault_id: str) -> UnlockState:
        """Enter AwaitingPin for a locked, PIN-protected vault."""
        vault = await self.get_vault(session, vault_id)
        if not vault.is_locked or not vault.has_pin:
            return self.unlock_state(vault_id)

        state = self._enter_awaiting_pin(vault_id)
        await self._audit.log_unlock_requested(session.user_id, vault_id)
        return state

    def _enter_awaiting_pin(self, vault_id: str) -> UnlockState:
        previous = self._unlock_states.get(vault_id)
        state = UnlockState(
            vault_id=vault_id,
            stage=UnlockStage.AWAITING_PIN,
            failed_attempts=previous.failed_attempts if previous else 0,
        )
        self._unlock_states[vault_id] = state
        return state

    def enter_pin_digit(self, vault_id: str, digit: str) -> UnlockState:
        """Append one keypad digit to the pending input."""
        state = self.unlock_state(vault_id)
        if state.stage == UnlockStage.IDLE or not digit.isdigit():
            return state
        state = state.model_copy(update={
            "stage": UnlockStage.AWAITING_PIN,
            "pin_input": state.pin_input + digit,
        })
        self._unlock_states[vault_id] = state
        return state

    async def submit_pin(
        self,
        session: "SessionContext",
        vault_id: str,
        pin: Optional[str] = None,
    ) -> Vault:
        """
        Compare a PIN with the stored one by exact string equality.

        Only answers an unlock that is waiting for a PIN (AwaitingPin or
        PinRejected); from Idle the vault is returned untouched.
        Match unlocks the vault and returns the state machine to Idle.
        Mismatch moves to PinRejected and leaves the vault untouched.
        """
        vault = await self.get_vault(session, vault_id)
        state = self.unlock_state(vault_id)
        candidate = pin if pin is not None else state.pin_input

        if not vault.is_locked:
            self._unlock_states.pop(vault_id, None)
            return vault

        if state.stage == UnlockStage.IDLE:
            return vault

        if vault.has_pin and candidate != vault.pin:
            attempts = state.failed_attempts + 1
            self._unlock_states[vault_id] = UnlockState(
                vault_id=vault_id,
                stage=UnlockStage.PIN_REJECTED,
                failed_attempts=attempts,
            )
            await self._audit.log_pin_rejected(session.user_id, vault_id, attempts)
            return vault

        unlocked = await self._save(session, vault.model_copy(update={"is_locked": False}))
        self._unlock_states.pop(vault_id, None)
        await self._notifier.notify(
            session,
            "Auth Verified",
            f"{vault.label} is now liquid.",
        )
        await self._audit.log_vault_unlocked(
            session.user_id, vault_id, vault.label, pin_verified=True
        )
        return unlocked

    def cancel_unlock(self, vault_id: str) -> UnlockState:
        self._unlock_states.pop(vault_id, None)
        return UnlockState(vault_id=vault_id)

    async def update_limit(
        self,
        session: "SessionContext",
        vault_id: str,
        new_limit: Any,
    ) -> Vault:
        """
        Replace a vault's limit.

        Raises:
            InvalidLimitError: Non-numeric or <= 0
        """
        limit = parse_amount(new_limit)
        if limit is None or limit <= 0:
            raise InvalidLimitError("Must be > 0")

        vault = await self.get_vault(session, vault_id)
        updated = await self._save(session, vault.model_copy(update={"limit": limit}))
        await self._audit.log_limit_updated(
            session.user_id, vault_id, str(vault.limit), str(limit)
        )
        return updated

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def _save(self, session: "SessionContext", vault: Vault) -> Vault:
        session.vaults = [vault if v.id == vault.id else v for v in session.vaults]
        await self.persist_vaults(session)
        return vault

    async def persist_vaults(self, session: "SessionContext") -> bool:
        """Write the session's full vault list. False when the write failed."""
        try:
            await self._store.replace_vaults(session.user_id, session.vaults)
            return True
        except StorageError as e:
            logger.warning(
                "vault_persistence_failed",
                user_id=session.user_id,
                error=str(e),
            )
            await self._audit.log_persistence_failed(
                user_id=session.user_id,
                operation="replace_vaults",
                error_message=str(e),
            )
            return False

