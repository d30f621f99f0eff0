"""Prompt templates shared by every provider adapter."""

import json
from dataclasses import dataclass

from ai_categorizer.models import FinancialSummary, HistoricalCategorization, TransactionInput

MAX_HISTORY_EXAMPLES = 10

CATEGORIZATION_SYSTEM_PROMPT = (
    "You are a financial transaction categorization expert. "
    "Provide accurate categorizations with detailed explanations. "
    "Respond with raw JSON only, no markdown code blocks."
)

INSIGHTS_SYSTEM_PROMPT = (
    "You are a financial analyst. Explain every insight with the evidence behind it. "
    "Respond with raw JSON only, no markdown code blocks."
)


@dataclass(frozen=True)
class PromptPayload:
    transaction: TransactionInput
    history: tuple[HistoricalCategorization, ...] = ()


@dataclass(frozen=True)
class InsightsPromptPayload:
    data_type: str
    summary: FinancialSummary


def _history_examples(history: tuple[HistoricalCategorization, ...]) -> str:
    examples = [
        {
            "description": entry.description,
            "category": entry.category,
            "amount": float(entry.amount),
            "confidence": entry.confidence,
        }
        for entry in history[:MAX_HISTORY_EXAMPLES]
    ]
    return json.dumps(examples, indent=2)


def build_categorization_prompt(payload: PromptPayload) -> str:
    transaction = payload.transaction
    return f"""Categorize this financial transaction with detailed explanation:

Transaction Details:
- Description: "{transaction.description}"
- Amount: ${transaction.amount}
- Date: {transaction.occurred_at.isoformat()}
- Reference: {transaction.reference or 'N/A'}
- Merchant: {transaction.merchant or 'N/A'}

User's Historical Patterns:
{_history_examples(payload.history)}

Respond with JSON only:
{{
  "category": "string (e.g. 'office_supplies', 'marketing', 'software', 'travel')",
  "subcategory": "string or null (e.g. 'cloud_services', 'advertising')",
  "confidence": 0.0-1.0,
  "reasoning": "why this category",
  "evidence": ["evidence points"],
  "alternatives": [{{"category": "string", "confidence": 0.0-1.0, "reasoning": "string"}}],
  "rules": [{{"pattern": "regex or text", "category": "string", "confidence": 0.0-1.0}}]
}}"""


def build_insights_prompt(payload: InsightsPromptPayload) -> str:
    summary = payload.summary
    totals = json.dumps({name: float(value) for name, value in summary.category_totals.items()}, indent=2)
    return f"""Generate explainable {payload.data_type} insights for this business:

Financial Summary:
- Revenue: ${summary.revenue}
- Expenses: ${summary.expenses}
- Cash flow: ${summary.cashflow}
- Profitability: {summary.profitability:.2%}

Totals by category:
{totals}

Respond with JSON only:
{{
  "insights": [{{
    "title": "string",
    "description": "string",
    "impact": "high" | "medium" | "low",
    "reasoning": "string",
    "evidence": ["evidence points"],
    "recommendation": "string or null"
  }}],
  "confidence": 0.0-1.0
}}"""
