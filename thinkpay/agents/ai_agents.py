"""
AI Agents for ThinkPay

DESIGN DECISION: The categorization model is an ORACLE the core consults,
never a component it depends on. Every call:
1. Asks for a JSON response
2. Parses it into a strict schema (all fields required)
3. Falls back to a fixed, deterministic answer on ANY failure

CRITICAL BOUNDARIES:

1. CATEGORIZATION:
   - CAN: Suggest a category and a vault type for a merchant/amount
   - CANNOT: Choose a specific vault (the engine does that)
   - CANNOT: Raise to the caller

2. MONTHLY INSIGHTS:
   - CAN: Summarize recent history and suggest tips
   - CANNOT: Change limits, vaults or balances
   - CANNOT: Raise to the caller

The LLM is an ADVISOR. The vault rules never depend on it being up.
"""

import json
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, ConfigDict, Field

from thinkpay.audit import AuditLogger
from thinkpay.config import get_settings
from thinkpay.models.ledger import (
    CategorySuggestion,
    MonthlyInsights,
    Transaction,
    Vault,
    VaultType,
)


logger = structlog.get_logger("thinkpay.agents")


class CategorizationOracle(ABC):
    """
    Contract of the categorization service.

    Implementations MUST NOT raise: degrade to the fallback values of
    CategorySuggestion and MonthlyInsights instead.
    """

    @abstractmethod
    async def categorize(self, merchant: str, amount: Decimal) -> CategorySuggestion:
        pass

    @abstractmethod
    async def monthly_insights(
        self,
        transactions: list[Transaction],
        vaults: list[Vault],
    ) -> MonthlyInsights:
        pass


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class CategorizationResponse(BaseModel):
    """Raw categorization answer, exactly as the model must return it."""
    model_config = ConfigDict(populate_by_name=True)

    category: str = Field(..., min_length=1, max_length=100)
    confidence: float = Field(..., ge=0.0, le=1.0)
    suggested_vault: VaultType = Field(..., alias="suggestedVault")
    explanation: str = Field(..., max_length=500)

    def to_suggestion(self) -> CategorySuggestion:
        return CategorySuggestion(
            category=self.category,
            confidence=self.confidence,
            suggested_vault=self.suggested_vault,
            explanation=self.explanation,
        )


class InsightsResponse(BaseModel):
    """Raw insights answer."""
    model_config = ConfigDict(populate_by_name=True)

    tips: list[str] = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    savings_potential: str = Field(..., alias="savingsPotential")

    def to_insights(self) -> MonthlyInsights:
        return MonthlyInsights(
            tips=self.tips,
            summary=self.summary,
            savings_potential=self.savings_potential,
        )


def extract_json(text: Optional[str]) -> dict[str, Any]:
    """
    Pull the JSON object out of a model response.

    Raises:
        ValueError: if no object can be found or decoded
    """
    text = (text or "").strip()
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError("No JSON object in model response")
    data = json.loads(text[start:end])
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")
    return data


# =============================================================================
# GEMINI
# =============================================================================

class GeminiCategorizationAgent(CategorizationOracle):
    """
    Categorization oracle backed by Google Gemini.

    RESPONSIBILITIES:
    - Suggest a category and vault type for a purchase
    - Produce monthly spending tips

    BOUNDARIES:
    - NEVER raises to the caller
    - NEVER sees more than the configured number of transactions
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Args:
            model: Object with an async `generate_content_async(prompt)`.
                   Built from settings when None.
            audit_logger: Receives external service errors
        """
        self._settings = get_settings().gemini
        self._history_size = get_settings().app.insights_history_size
        self._audit = audit_logger
        self._model = model or self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
                "response_mime_type": "application/json",
            },
        )

    async def _report(self, operation: str, error: Exception) -> None:
        logger.warning("oracle_fallback", operation=operation, error=str(error))
        if self._audit:
            await self._audit.log_external_service_error(
                service=f"gemini.{operation}",
                error_message=str(error),
            )

    async def categorize(self, merchant: str, amount: Decimal) -> CategorySuggestion:
        """
        Suggest a category for one purchase.

        Returns the fallback suggestion if the call fails or the answer
        doesn't match the schema.
        """
        vault_types = ", ".join(
            t.value for t in VaultType if t != VaultType.CUSTOM
        )

        prompt = f"""Categorize this spending: "{merchant}" for amount {amount}.

Choose suggestedVault from: {vault_types}.

Respond with ONLY a JSON object in this exact format:
{{"category": "short category name", "confidence": 0.8, "suggestedVault": "Food", "explanation": "Human-readable reason why this vault was chosen"}}"""

        try:
            response = await self._model.generate_content_async(prompt)
            data = extract_json(response.text)
            return CategorizationResponse.model_validate(data).to_suggestion()
        except Exception as e:
            # Schema mismatch, network, quota, safety blocks: same fallback
            await self._report("categorize", e)

        return CategorySuggestion.fallback()

    async def monthly_insights(
        self,
        transactions: list[Transaction],
        vaults: list[Vault],
    ) -> MonthlyInsights:
        """
        Summarize recent spending.

        Only the most recent transactions are sent to the model.
        """
        history = ", ".join(
            f"{t.merchant}: ₹{t.amount}"
            for t in transactions[:self._history_size]
        )
        usage = json.dumps(
            [
                {
                    "vault": v.label,
                    "limit": str(v.limit),
                    "spent": str(v.spent),
                    "locked": v.is_locked,
                }
                for v in vaults
            ]
        )

        prompt = f"""Analyze these transactions: [{history}].
Based on vault usage: {usage}.

Provide 3 smart financial tips and a summary of the spending habits.

Respond with ONLY a JSON object in this exact format:
{{"tips": ["tip 1", "tip 2", "tip 3"], "summary": "one paragraph", "savingsPotential": "₹amount"}}"""

        try:
            response = await self._model.generate_content_async(prompt)
            data = extract_json(response.text)
            return InsightsResponse.model_validate(data).to_insights()
        except Exception as e:
            await self._report("monthly_insights", e)

        return MonthlyInsights.fallback()
