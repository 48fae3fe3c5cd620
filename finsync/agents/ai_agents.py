"""
AI Agents for finsync

DESIGN DECISION: The assistant is a reader, never a writer.
It receives store snapshots, formats them into a prompt, and returns
text. It has no handle on the store or the backend, so nothing it
says can change the user's data.

CRITICAL BOUNDARIES:

FINANCIAL ASSISTANT:
   - CAN: Summarize totals, recent transactions and goals
   - CAN: Answer a direct question about that data
   - CANNOT: See more than the most recent transactions
   - CANNOT: Send a prompt larger than the configured input ceiling
   - MUST: Say so plainly when there is nothing to analyze

TRADEOFFS:
- Token counts are estimated (4 characters per token), not measured.
  Cheap and good enough to stay under free-tier limits.
- The seven-section analysis is parsed from numbered headings in free
  text. A model that ignores the numbering gets default sections.
"""

import math
import re
from typing import Any, Iterable, Optional, Union

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from finsync.analytics import summarize_totals
from finsync.config import GeminiSettings, get_settings
from finsync.models.records import Goal, Transaction, TransactionType


logger = structlog.get_logger(__name__)

NO_DATA_MESSAGE = (
    "I don't see any transactions to analyze yet. "
    "Please add some transactions first!"
)
TOO_MUCH_DATA_MESSAGE = (
    "I apologize, but there's too much financial data to analyze at once. "
    "Try analyzing a smaller time period or asking a more specific question."
)
API_KEY_MESSAGE = (
    "I'm having trouble accessing my AI capabilities right now. "
    "Please check if the API key is configured correctly."
)
GENERIC_ERROR_MESSAGE = (
    "I apologize, but I encountered an error while analyzing your finances. "
    "Please try again in a moment."
)

# Order the model is asked to answer in
SECTION_TITLES = (
    ("immediate_insights", "Immediate Insights"),
    ("spending_patterns", "Spending Patterns"),
    ("category_analysis", "Category Analysis"),
    ("savings_opportunities", "Savings Opportunities"),
    ("recommendations", "Recommendations"),
    ("risk_factors", "Risk Factors"),
    ("monthly_summary", "Monthly Summary"),
)

_SECTION_SPLIT = re.compile(r"\d+\.\s+")


class FinancialAnalysis(BaseModel):
    """The seven-section analysis, with a placeholder for any section the model skipped."""

    immediate_insights: str = Field(default="No immediate insights available.")
    spending_patterns: str = Field(default="No spending patterns analyzed.")
    category_analysis: str = Field(default="No category analysis available.")
    savings_opportunities: str = Field(default="No savings opportunities identified.")
    recommendations: str = Field(default="No specific recommendations available.")
    risk_factors: str = Field(default="No risk factors identified.")
    monthly_summary: str = Field(default="No monthly summary available.")


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


def parse_analysis_sections(text: str) -> FinancialAnalysis:
    """
    Split a numbered response into the seven analysis sections.

    Text before the first "1." is ignored. Empty sections keep their
    default, but still use up their position.
    """
    sections: dict[str, str] = {}
    chunks = _SECTION_SPLIT.split(text)[1:]
    for index, chunk in enumerate(chunks):
        if index >= len(SECTION_TITLES):
            break
        body = chunk.strip()
        if body:
            sections[SECTION_TITLES[index][0]] = body
    return FinancialAnalysis(**sections)


def build_analysis_prompt(
    transactions: Iterable[Transaction],
    goals: Iterable[Goal],
    question: Optional[str] = None,
    recent_limit: int = 50,
) -> str:
    """Format totals, the most recent transactions and goals into one prompt."""
    transactions = list(transactions)
    goals = list(goals)
    totals = summarize_totals(transactions)

    lines = [
        "As an AI financial assistant, analyze the following financial data:",
        "",
        f"Total Income: {totals.income}",
        f"Total Expenses: {totals.expenses}",
        f"Net Income: {totals.net}",
        "",
        "Recent Transactions Summary:",
    ]

    recent = sorted(transactions, key=lambda t: (t.date, t.id), reverse=True)[:recent_limit]
    for t in recent:
        sign = "+" if t.type == TransactionType.INCOME else "-"
        description = t.description or t.category
        lines.append(f"- {t.date.isoformat()}: {description} ({t.type.value}): {sign}{t.magnitude}")

    if goals:
        lines.append("")
        lines.append("Financial Goals:")
        for g in goals:
            lines.append(
                f"- {g.title}: Target: {g.target}, Current: {g.current}, "
                f"Deadline: {g.deadline.isoformat()}"
            )

    lines.append("")
    if question:
        lines.append(f"User Question: {question}")
        lines.append(
            "Please provide a direct answer to the user's question "
            "based on the financial data above."
        )
    else:
        lines.append("Please provide a comprehensive analysis including:")
        lines.extend(
            f"{number}. {title}"
            for number, (_, title) in enumerate(SECTION_TITLES, start=1)
        )

    return "\n".join(lines)


class FinancialAssistantAgent:
    """
    Gemini-backed summarizer of a user's finances.

    RESPONSIBILITIES:
    - Build the analysis prompt from snapshots
    - Refuse prompts over the input ceiling
    - Turn API failures into messages the user can act on

    Pass `model` to use anything with a `generate_content_async(prompt)`
    coroutine instead of a configured Gemini model.
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        settings: Optional[GeminiSettings] = None,
    ):
        if settings is None and model is None:
            settings = get_settings().gemini
        self._settings = settings

        defaults = GeminiSettings.model_fields
        self.max_input_tokens = (
            settings.max_input_tokens if settings else defaults["max_input_tokens"].default
        )
        self.recent_limit = (
            settings.recent_transaction_limit if settings
            else defaults["recent_transaction_limit"].default
        )

        if model is None:
            self._configure_genai()
        else:
            self._model = model

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def analyze_finances(
        self,
        transactions: Iterable[Transaction],
        goals: Iterable[Goal] = (),
        question: Optional[str] = None,
    ) -> Union[str, FinancialAnalysis]:
        """
        Analyze the user's finances.

        Returns the model's answer as text when `question` is given,
        otherwise the parsed seven-section FinancialAnalysis. Every
        failure comes back as a message string rather than an exception.
        """
        transactions = list(transactions)
        if not transactions:
            return NO_DATA_MESSAGE

        try:
            prompt = build_analysis_prompt(
                transactions,
                goals,
                question=question,
                recent_limit=self.recent_limit,
            )

            estimated = estimate_tokens(prompt)
            if estimated > self.max_input_tokens:
                logger.warning(
                    "analysis_prompt_too_large",
                    estimated_tokens=estimated,
                    limit=self.max_input_tokens,
                )
                return TOO_MUCH_DATA_MESSAGE

            response = await self._model.generate_content_async(prompt)
            text = response.text.strip()
        except Exception as e:
            message = str(e)
            logger.error("analysis_failed", error=message, error_type=type(e).__name__)
            if "API key" in message or "not found" in message:
                return API_KEY_MESSAGE
            return GENERIC_ERROR_MESSAGE

        if question:
            return text
        return parse_analysis_sections(text)
