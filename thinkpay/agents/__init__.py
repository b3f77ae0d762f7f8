"""AI agents package."""

from thinkpay.agents.ai_agents import (
    CategorizationOracle,
    CategorizationResponse,
    GeminiCategorizationAgent,
    InsightsResponse,
    extract_json,
)

__all__ = [
    "CategorizationOracle",
    "CategorizationResponse",
    "GeminiCategorizationAgent",
    "InsightsResponse",
    "extract_json",
]
