from decimal import Decimal

from pydantic import BaseModel, Field

from ai_categorizer.models import FinancialSummary, TransactionInput


class CategorizeRequest(BaseModel):
    transaction: TransactionInput


class InsightsRequest(BaseModel):
    data_type: str = Field(min_length=1)
    summary: FinancialSummary


class RuleCreateRequest(BaseModel):
    pattern: str = Field(min_length=1)
    category: str = Field(min_length=1)
    subcategory: str | None = None
    confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None


class ProviderInfo(BaseModel):
    provider: str
    enabled: bool
    model: str | None = None
    weight: float
    capabilities: list[str]
    max_retries: int
    timeout: float
    cost: float
