"""AI Agents package."""

from finsync.agents.ai_agents import (
    FinancialAnalysis,
    FinancialAssistantAgent,
    build_analysis_prompt,
    estimate_tokens,
    parse_analysis_sections,
)

__all__ = [
    "FinancialAnalysis",
    "FinancialAssistantAgent",
    "build_analysis_prompt",
    "estimate_tokens",
    "parse_analysis_sections",
]
