"""Vault ledger engine package."""

from thinkpay.vaults.engine import (
    InvalidLimitError,
    UnlockStage,
    UnlockState,
    VaultAccessDeniedError,
    VaultError,
    VaultLedgerEngine,
    VaultNotFoundError,
    apply_allocations,
    compute_derived,
    find_emergency_vault,
    select_target_vault,
)

__all__ = [
    "InvalidLimitError",
    "UnlockStage",
    "UnlockState",
    "VaultAccessDeniedError",
    "VaultError",
    "VaultLedgerEngine",
    "VaultNotFoundError",
    "apply_allocations",
    "compute_derived",
    "find_emergency_vault",
    "select_target_vault",
]
