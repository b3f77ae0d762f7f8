"""
ThinkPay - Vault Ledger Package

Budgeting core that partitions a cash balance into lockable vaults,
spends against them, and asks an AI oracle where a purchase belongs.

DESIGN PRINCIPLES:
1. AI suggests → Rules decide → System commits
2. Nothing changes before commit
3. Every vault operation checks ownership first
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "ThinkPay Team"
