import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = "1.0"

RuleOrigin = Literal["ai", "user", "system"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class TransactionInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    amount: Decimal  # signed; negative for money out
    occurred_at: datetime = Field(default_factory=utcnow)
    reference: str | None = None
    merchant: str | None = None

    @field_validator("description", mode="before")
    @classmethod
    def _strip_description(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class CategorizationRule(BaseModel):
    id: str = Field(default_factory=new_id)
    scope: str
    pattern: str
    category: str
    subcategory: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    usage: int = Field(default=0, ge=0)
    accuracy: float = Field(default=1.0, ge=0.0, le=1.0)
    evaluations: int = Field(default=0, ge=0)  # feedback outcomes folded into accuracy
    origin: RuleOrigin = "user"
    active: bool = True
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def score(self) -> float:
        return self.confidence * self.accuracy


class Alternative(BaseModel):
    category: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class Explanation(BaseModel):
    model_config = ConfigDict(frozen=True)

    reasoning: str
    evidence: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    alternatives: list[Alternative] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    model: str
    provider: str


class ResultMetadata(BaseModel):
    processing_ms: float = 0.0
    model: str
    provider: str
    version: str = SCHEMA_VERSION
    attempts: list[str] = Field(default_factory=list)
    estimated_cost: float | None = None


class CategorizationResult(BaseModel):
    decision_id: str = Field(default_factory=new_id)
    category: str
    subcategory: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    explanation: Explanation
    rules: list[CategorizationRule] = Field(default_factory=list)
    metadata: ResultMetadata


class SuggestedRule(BaseModel):
    pattern: str
    category: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class CanonicalCategorization(BaseModel):
    """Provider-agnostic categorization answer."""

    category: str = Field(min_length=1)
    subcategory: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    evidence: list[str] = Field(default_factory=list)
    alternatives: list[Alternative] = Field(default_factory=list)
    rules: list[SuggestedRule] = Field(default_factory=list)

    @field_validator("subcategory", mode="before")
    @classmethod
    def _blank_subcategory(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class HistoricalCategorization(BaseModel):
    description: str
    category: str
    amount: Decimal
    confidence: float
    recorded_at: datetime = Field(default_factory=utcnow)


class FeedbackInput(BaseModel):
    transaction_id: str | None = None
    description: str | None = None  # text the correction applies to
    rule_id: str | None = None  # rule that produced the prediction, if any
    original_prediction: str
    user_correction: str
    reasoning: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    accepted: bool = False


class FeedbackRecord(FeedbackInput):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    scope: str
    user_id: str
    pattern: str | None = None  # normalized description
    timestamp: datetime = Field(default_factory=utcnow)


class FinancialSummary(BaseModel):
    revenue: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    cashflow: Decimal = Decimal("0")
    profitability: float = 0.0
    category_totals: dict[str, Decimal] = Field(default_factory=dict)


class Insight(BaseModel):
    title: str
    description: str
    impact: Literal["high", "medium", "low"] = "low"
    explanation: Explanation
    recommendation: str | None = None


class InsightsResult(BaseModel):
    insights: list[Insight]
    confidence: float = Field(ge=0.0, le=1.0)
    provider: str
    model: str


class InsightDraft(BaseModel):
    title: str
    description: str
    impact: Literal["high", "medium", "low"] = "low"
    reasoning: str = ""
    evidence: list[str] = Field(default_factory=list)
    recommendation: str | None = None


class InsightsPayload(BaseModel):
    """Provider-agnostic insights answer."""

    insights: list[InsightDraft] = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
