"""
Ledger Analytics

DESIGN DECISION: Reports are DETERMINISTIC and computed from stored data.
The oracle is only asked for prose (tips, summary) and only ever sees
what this module hands it: the most recent transactions and the vaults.

Days are bucketed in UTC.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional

from pydantic import BaseModel

from thinkpay.agents import CategorizationOracle
from thinkpay.config import get_settings
from thinkpay.models.ledger import MonthlyInsights, Transaction, Vault

if TYPE_CHECKING:
    from thinkpay.session import SessionContext


class DailySpend(BaseModel):
    day: date
    label: str  # short weekday, e.g. "Mon"
    total: Decimal


class VaultSpend(BaseModel):
    vault_id: str
    label: str
    spent: Decimal


class BudgetSummary(BaseModel):
    """Headline figures for the dashboard."""

    current_balance: Decimal
    total_budget: Decimal
    total_spent: Decimal
    budget_progress: float
    reserved_funds: Decimal
    spendable_balance: Decimal
    unread_notifications: int
    transaction_count: int


class LedgerAnalytics:
    """
    Read-side reports over a session.

    GUARANTEES:
    - Never mutates the session
    - Never estimates: every figure is a sum over stored records
    """

    def __init__(self, oracle: Optional[CategorizationOracle] = None):
        self._oracle = oracle
        self._history_size = get_settings().app.insights_history_size

    def weekly_spend(
        self,
        transactions: Iterable[Transaction],
        today: Optional[date] = None,
    ) -> list[DailySpend]:
        """
        Total spend per day for the last seven days, oldest first.

        Days without transactions are present with a zero total.
        """
        today = today or datetime.now(timezone.utc).date()
        days = [today - timedelta(days=offset) for offset in range(6, -1, -1)]
        totals = {day: Decimal("0") for day in days}

        for transaction in transactions:
            day = transaction.timestamp.astimezone(timezone.utc).date()
            if day in totals:
                totals[day] += transaction.amount

        return [
            DailySpend(day=day, label=day.strftime("%a"), total=totals[day])
            for day in days
        ]

    def vault_breakdown(self, vaults: Iterable[Vault]) -> list[VaultSpend]:
        """Spent per vault, only vaults with spending."""
        return [
            VaultSpend(vault_id=v.id, label=v.label, spent=v.spent)
            for v in vaults
            if v.spent > 0
        ]

    def budget_summary(self, session: "SessionContext") -> BudgetSummary:
        derived = session.derived
        return BudgetSummary(
            current_balance=session.user.current_balance,
            total_budget=session.user.total_budget,
            total_spent=derived.total_spent,
            budget_progress=derived.budget_progress,
            reserved_funds=derived.reserved_funds,
            spendable_balance=derived.spendable_balance,
            unread_notifications=session.unread_count,
            transaction_count=len(session.transactions),
        )

    async def monthly_insights(self, session: "SessionContext") -> Optional[MonthlyInsights]:
        """
        Spending tips from the oracle.

        Returns None when there is no history to analyze, and the
        fixed fallback when no oracle is configured.
        """
        if not session.transactions:
            return None
        if self._oracle is None:
            return MonthlyInsights.fallback()

        recent = sorted(session.transactions, key=lambda t: t.timestamp, reverse=True)
        return await self._oracle.monthly_insights(
            recent[:self._history_size],
            list(session.vaults),
        )
