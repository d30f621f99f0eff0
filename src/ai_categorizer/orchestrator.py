import asyncio
import os
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from time import perf_counter
from typing import Any, Generic, TypeVar

from pydantic import ValidationError as SchemaError

from ai_categorizer.audit import AuditLogger, HttpAuditLogger, LoggingAuditLogger
from ai_categorizer.core import settings
from ai_categorizer.domain.text import normalize_category
from ai_categorizer.errors import PersistenceError, ProviderError, ValidationError
from ai_categorizer.explain import ExplanationBuilder
from ai_categorizer.feedback.ledger import FeedbackLedger
from ai_categorizer.feedback.promoter import RulePromoter
from ai_categorizer.logger import get_logger
from ai_categorizer.models import (
    Alternative,
    CanonicalCategorization,
    CategorizationResult,
    CategorizationRule,
    Explanation,
    FeedbackInput,
    FinancialSummary,
    HistoricalCategorization,
    Insight,
    InsightsPayload,
    InsightsResult,
    ResultMetadata,
    TransactionInput,
)
from ai_categorizer.persistence.base import Persistence
from ai_categorizer.persistence.memory import JsonFilePersistence
from ai_categorizer.providers.base import ProviderAdapter, RawProviderResponse
from ai_categorizer.providers.factory import build_adapters
from ai_categorizer.providers.prompts import InsightsPromptPayload, PromptPayload
from ai_categorizer.providers.registry import Capability, ProviderId, estimate_cost
from ai_categorizer.providers.selector import ProviderSelector
from ai_categorizer.rules.engine import RuleEngine, is_safe_pattern
from ai_categorizer.rules.store import RuleStore

logger = get_logger(__name__)

FALLBACK_CATEGORY = "other"
FALLBACK_CONFIDENCE = 0.5
FALLBACK_MODEL = "fallback"
FALLBACK_REASONING = "Fallback categorization due to provider failure"

AnswerT = TypeVar("AnswerT")


@dataclass
class ProviderAnswer(Generic[AnswerT]):
    provider: ProviderId
    adapter: ProviderAdapter
    raw: RawProviderResponse
    value: AnswerT
    attempts: list[str] = field(default_factory=list)


@dataclass
class CascadeOutcome(Generic[AnswerT]):
    answer: ProviderAnswer[AnswerT] | None
    attempts: list[str]


def _coerce_transaction(transaction: TransactionInput | Mapping[str, Any]) -> TransactionInput:
    if isinstance(transaction, TransactionInput):
        parsed = transaction
    else:
        try:
            parsed = TransactionInput.model_validate(transaction)
        except SchemaError as e:
            raise ValidationError(f"Invalid transaction: {e}") from e
    if not parsed.description:
        raise ValidationError("Transaction description is required")
    return parsed


class CategorizationOrchestrator:
    """
    Single entry point for categorization and feedback.

    ``categorize`` tries the caller's deterministic rules first, then AI
    providers one after another until one answers or the attempt budget is
    spent, then explains whatever answered. It always returns a result; the
    only exception it lets through is ``ValidationError`` for input that
    cannot be categorized at all. ``record_feedback`` never raises.
    """

    def __init__(
        self,
        persistence: Persistence,
        adapters: Mapping[ProviderId, ProviderAdapter],
        audit: AuditLogger | None = None,
        *,
        selector: ProviderSelector | None = None,
        rule_store: RuleStore | None = None,
        rule_engine: RuleEngine | None = None,
        ledger: FeedbackLedger | None = None,
        promoter: RulePromoter | None = None,
        builder: ExplanationBuilder | None = None,
        max_attempts: int = settings.DEFAULT_MAX_PROVIDER_ATTEMPTS,
        history_limit: int = settings.DEFAULT_HISTORY_LIMIT,
        confidence_floor: float = settings.DEFAULT_RULE_CONFIDENCE_FLOOR,
        promotion_threshold: int = settings.DEFAULT_PROMOTION_THRESHOLD,
        promoted_rule_confidence: float = settings.DEFAULT_PROMOTED_RULE_CONFIDENCE,
        rule_cache_ttl: float = settings.DEFAULT_RULE_CACHE_TTL,
    ) -> None:
        self.persistence = persistence
        self.adapters = dict(adapters)
        self.audit = audit or LoggingAuditLogger()
        self.selector = selector or ProviderSelector(
            {provider: adapter.config for provider, adapter in self.adapters.items()}
        )
        self.rule_store = rule_store or RuleStore(persistence, cache_ttl=rule_cache_ttl)
        self.rule_engine = rule_engine or RuleEngine(self.rule_store, confidence_floor=confidence_floor)
        self.ledger = ledger or FeedbackLedger(persistence)
        self.promoter = promoter or RulePromoter(
            self.rule_store,
            self.ledger,
            threshold=promotion_threshold,
            initial_confidence=promoted_rule_confidence,
        )
        self.builder = builder or ExplanationBuilder()
        self.max_attempts = max(1, max_attempts)
        self.history_limit = history_limit

    # -- categorization ---------------------------------------------------

    async def categorize(
        self,
        user_id: str,
        transaction: TransactionInput | Mapping[str, Any],
    ) -> CategorizationResult:
        started_at = perf_counter()
        parsed = _coerce_transaction(transaction)
        scope = user_id

        try:
            result = await self._categorize(scope, parsed, started_at)
        except Exception:
            logger.exception("[CATEGORIZE] Unexpected failure for '%s'", parsed.description[:50])
            result = self.builder.enhance(
                self._fallback_result([]),
                parsed,
                started_at,
                extra_sources=["system_fallback"],
            )

        await self._save_explanation(scope, result)
        await self._audit(
            "categorization",
            f"Categorized '{parsed.description[:50]}' as {result.category}",
            {
                "user_id": user_id,
                "decision_id": result.decision_id,
                "category": result.category,
                "confidence": result.confidence,
                "provider": result.metadata.provider,
                "model": result.metadata.model,
                "attempts": result.metadata.attempts,
                "rules": [rule.id for rule in result.rules],
            },
        )
        return result

    async def _categorize(
        self,
        scope: str,
        transaction: TransactionInput,
        started_at: float,
    ) -> CategorizationResult:
        rule_result: CategorizationResult | None = None
        extra_alternatives: list[Alternative] = []
        try:
            rule_result = await asyncio.to_thread(self.rule_engine.match, transaction, scope)
            if rule_result is None:
                extra_alternatives = await asyncio.to_thread(self._sub_floor_candidates, transaction, scope)
        except PersistenceError as e:
            logger.warning("[RULES] Rule store unavailable, skipping rules: %s", e)

        history = await self._history(scope)
        sources = ["user_history"] if history else []
        if rule_result is not None:
            await self._remember(scope, transaction, rule_result)
            return self.builder.enhance(
                rule_result,
                transaction,
                started_at,
                history=history,
                extra_sources=["categorization_rules", *sources],
            )

        payload = PromptPayload(transaction=transaction, history=tuple(history))
        outcome = await self._cascade(
            Capability.CATEGORIZATION,
            lambda adapter: adapter.invoke(payload),
            lambda adapter, raw: adapter.categorization(raw),
        )

        if outcome.answer is None:
            logger.warning(
                "[CATEGORIZE] All providers failed for '%s' after %d attempt(s); using fallback.",
                transaction.description[:50],
                len(outcome.attempts),
            )
            result = self._fallback_result(outcome.attempts)
        else:
            result = self._ai_result(outcome.answer)
            await self._remember(scope, transaction, result)
            sources.append(f"ai_provider:{outcome.answer.provider.value}")

        return self.builder.enhance(
            result,
            transaction,
            started_at,
            history=history,
            extra_alternatives=extra_alternatives,
            extra_sources=sources,
        )

    def _sub_floor_candidates(self, transaction: TransactionInput, scope: str) -> list[Alternative]:
        found = self.rule_engine.evaluate(transaction, scope)
        if found is None:
            return []
        return [
            Alternative(
                category=rule.category,
                confidence=rule.confidence,
                reasoning=f"Matched {rule.origin} rule '{rule.pattern}' below the confidence floor",
            )
            for rule in found.firing
        ]

    async def _cascade(
        self,
        capability: Capability,
        invoke: Callable[[ProviderAdapter], Awaitable[RawProviderResponse]],
        convert: Callable[[ProviderAdapter, RawProviderResponse], AnswerT],
    ) -> CascadeOutcome[AnswerT]:
        """
        Sequential attempts across providers. The attempt budget is shared by
        all providers; each provider is also capped at its own max_retries.
        Failed providers are skipped while any other candidate remains.
        """
        attempts: list[str] = []
        if not self.adapters:
            logger.debug("[PROVIDER] No adapters configured for %s", capability.value)
            return CascadeOutcome(answer=None, attempts=attempts)

        failed: set[ProviderId] = set()
        per_provider: Counter[ProviderId] = Counter()

        while len(attempts) < self.max_attempts:
            capped = {
                provider
                for provider, count in per_provider.items()
                if count >= max(1, self.adapters[provider].config.max_retries)
            }
            provider = self.selector.select(capability, exclude=failed | capped)
            adapter = self.adapters.get(provider)
            if adapter is None or provider in capped:
                logger.debug("[PROVIDER] No provider left to try for %s", capability.value)
                break

            attempts.append(provider.value)
            per_provider[provider] += 1
            logger.debug(
                "[PROVIDER] Attempt %d/%d: %s (%s)",
                len(attempts),
                self.max_attempts,
                provider.value,
                capability.value,
            )
            try:
                raw = await invoke(adapter)
                value = convert(adapter, raw)
            except ProviderError as e:
                failed.add(provider)
                logger.warning("[PROVIDER] %s failed: %s", type(e).__name__, e)
                await self._audit(
                    "provider_failure",
                    f"{provider.value} failed during {capability.value}",
                    {"provider": provider.value, "error": type(e).__name__, "detail": str(e)},
                )
                continue

            return CascadeOutcome(
                answer=ProviderAnswer(
                    provider=provider,
                    adapter=adapter,
                    raw=raw,
                    value=value,
                    attempts=list(attempts),
                ),
                attempts=attempts,
            )

        return CascadeOutcome(answer=None, attempts=attempts)

    @staticmethod
    def _ai_result(answer: ProviderAnswer[CanonicalCategorization]) -> CategorizationResult:
        canonical = answer.value
        raw = answer.raw
        provider = answer.provider.value
        evidence = list(canonical.evidence)
        evidence.extend(
            f"Provider suggested rule '{suggestion.pattern}' -> {suggestion.category}"
            for suggestion in canonical.rules
        )
        return CategorizationResult(
            category=canonical.category,
            subcategory=canonical.subcategory,
            confidence=canonical.confidence,
            explanation=Explanation(
                reasoning=canonical.reasoning or f"Categorized by {provider}",
                evidence=evidence,
                confidence=canonical.confidence,
                alternatives=canonical.alternatives,
                model=raw.model,
                provider=provider,
            ),
            rules=[],
            metadata=ResultMetadata(
                model=raw.model,
                provider=provider,
                attempts=answer.attempts,
                estimated_cost=estimate_cost(answer.adapter.config, raw.input_tokens, raw.output_tokens),
            ),
        )

    @staticmethod
    def _fallback_result(attempts: list[str]) -> CategorizationResult:
        return CategorizationResult(
            category=FALLBACK_CATEGORY,
            confidence=FALLBACK_CONFIDENCE,
            explanation=Explanation(
                reasoning=FALLBACK_REASONING,
                evidence=["Transaction description analysis", "Amount pattern matching"],
                confidence=FALLBACK_CONFIDENCE,
                sources=["system_fallback"],
                model=FALLBACK_MODEL,
                provider=FALLBACK_MODEL,
            ),
            rules=[],
            metadata=ResultMetadata(model=FALLBACK_MODEL, provider=FALLBACK_MODEL, attempts=attempts),
        )

    async def _history(self, scope: str) -> list[HistoricalCategorization]:
        try:
            return await asyncio.to_thread(self.persistence.recent_history, scope, self.history_limit)
        except PersistenceError as e:
            logger.warning("[HISTORY] History unavailable for scope %s: %s", scope, e)
            return []

    async def _remember(self, scope: str, transaction: TransactionInput, result: CategorizationResult) -> None:
        entry = HistoricalCategorization(
            description=transaction.description,
            category=result.category,
            amount=transaction.amount,
            confidence=result.confidence,
        )
        try:
            await asyncio.to_thread(self.persistence.append_history, scope, entry)
        except PersistenceError as e:
            logger.warning("[HISTORY] Could not record categorization: %s", e)

    async def _save_explanation(self, scope: str, result: CategorizationResult) -> None:
        try:
            await asyncio.to_thread(
                self.persistence.save_explanation,
                scope,
                result.decision_id,
                result.explanation,
            )
        except PersistenceError as e:
            logger.warning("[EXPLAIN] Could not store explanation %s: %s", result.decision_id, e)

    async def _audit(self, kind: str, description: str, metadata: dict[str, Any]) -> None:
        try:
            await self.audit.log_event(kind, description, metadata)
        except Exception as e:
            # The compliance trail must never change the answer
            logger.warning("[AUDIT] Could not log %s event: %s", kind, e)

    # -- feedback ---------------------------------------------------------

    async def record_feedback(self, user_id: str, feedback: FeedbackInput | Mapping[str, Any]) -> None:
        try:
            await self._record_feedback(user_id, feedback)
        except Exception:
            logger.exception("[FEEDBACK] Unexpected failure while recording feedback from %s", user_id)

    async def _record_feedback(self, user_id: str, feedback: FeedbackInput | Mapping[str, Any]) -> None:
        if isinstance(feedback, FeedbackInput):
            parsed = feedback
        else:
            try:
                parsed = FeedbackInput.model_validate(feedback)
            except SchemaError as e:
                logger.warning("[FEEDBACK] Ignoring malformed feedback from %s: %s", user_id, e)
                return

        scope = user_id
        record = FeedbackLedger.build_record(scope, user_id, parsed)
        try:
            await asyncio.to_thread(self.ledger.append, record)
        except PersistenceError as e:
            logger.error("[FEEDBACK] Could not append feedback %s: %s", record.id, e)
            return

        if parsed.rule_id:
            correct = normalize_category(parsed.user_correction) == normalize_category(parsed.original_prediction)
            try:
                await asyncio.to_thread(self.rule_store.record_outcome, scope, parsed.rule_id, correct)
            except PersistenceError as e:
                logger.warning("[FEEDBACK] Could not update accuracy of rule %s: %s", parsed.rule_id, e)

        await self._audit(
            "feedback",
            f"Correction '{record.original_prediction}' -> '{record.user_correction}'",
            {"user_id": user_id, "feedback_id": record.id, "transaction_id": record.transaction_id},
        )

        try:
            promoted = await asyncio.to_thread(self.promoter.maybe_promote, record)
        except PersistenceError as e:
            logger.warning("[PROMOTE] Rule promotion skipped: %s", e)
            return

        if promoted is not None:
            await self._audit(
                "rule_promotion",
                f"Promoted rule '{promoted.pattern}' -> {promoted.category}",
                {
                    "user_id": user_id,
                    "rule_id": promoted.id,
                    "confidence": promoted.confidence,
                    "feedback_id": record.id,
                },
            )

    # -- insights and explanations ----------------------------------------

    async def generate_insights(
        self,
        user_id: str,
        data_type: str,
        summary: FinancialSummary,
    ) -> InsightsResult:
        payload = InsightsPromptPayload(data_type=data_type, summary=summary)
        try:
            outcome = await self._cascade(
                Capability.INSIGHTS,
                lambda adapter: adapter.invoke_insights(payload),
                lambda adapter, raw: adapter.insights(raw),
            )
        except Exception:
            logger.exception("[INSIGHTS] Unexpected failure for %s insights", data_type)
            return self._fallback_insights(data_type)

        if outcome.answer is None:
            return self._fallback_insights(data_type)

        result = self._insights_result(data_type, outcome.answer)
        await self._audit(
            "insights",
            f"Generated {len(result.insights)} {data_type} insight(s)",
            {"user_id": user_id, "provider": result.provider, "confidence": result.confidence},
        )
        return result

    @staticmethod
    def _insights_result(data_type: str, answer: ProviderAnswer[InsightsPayload]) -> InsightsResult:
        payload = answer.value
        provider = answer.provider.value
        insights = [
            Insight(
                title=draft.title,
                description=draft.description,
                impact=draft.impact,
                recommendation=draft.recommendation,
                explanation=Explanation(
                    reasoning=draft.reasoning or draft.description,
                    evidence=draft.evidence or [f"Derived from the {data_type} summary"],
                    confidence=payload.confidence,
                    sources=["financial_summary", f"ai_provider:{provider}"],
                    model=answer.raw.model,
                    provider=provider,
                ),
            )
            for draft in payload.insights
        ]
        return InsightsResult(
            insights=insights,
            confidence=payload.confidence,
            provider=provider,
            model=answer.raw.model,
        )

    @staticmethod
    def _fallback_insights(data_type: str) -> InsightsResult:
        return InsightsResult(
            insights=[
                Insight(
                    title=f"{data_type.capitalize()} insights unavailable",
                    description="No AI provider could analyse this data right now.",
                    impact="low",
                    explanation=Explanation(
                        reasoning="Fallback insight due to provider failure",
                        evidence=["No provider produced a usable answer"],
                        confidence=FALLBACK_CONFIDENCE,
                        sources=["system_fallback"],
                        model=FALLBACK_MODEL,
                        provider=FALLBACK_MODEL,
                    ),
                )
            ],
            confidence=FALLBACK_CONFIDENCE,
            provider=FALLBACK_MODEL,
            model=FALLBACK_MODEL,
        )

    async def get_explanation(self, user_id: str, decision_id: str) -> Explanation | None:
        try:
            return await asyncio.to_thread(self.persistence.get_explanation, user_id, decision_id)
        except PersistenceError as e:
            logger.warning("[EXPLAIN] Lookup of %s failed: %s", decision_id, e)
            return None

    # -- rule management --------------------------------------------------

    async def list_rules(self, user_id: str, include_inactive: bool = False) -> list[CategorizationRule]:
        rules = await asyncio.to_thread(self.rule_store.all_rules, user_id)
        if include_inactive:
            return rules
        return [rule for rule in rules if rule.active]

    async def add_rule(
        self,
        user_id: str,
        pattern: str,
        category: str,
        *,
        subcategory: str | None = None,
        confidence: float = 0.95,
        min_amount: Decimal | None = None,
        max_amount: Decimal | None = None,
    ) -> CategorizationRule:
        if not pattern.strip() or not category.strip():
            raise ValidationError("Rule pattern and category are required")
        if not is_safe_pattern(pattern):
            raise ValidationError("Rule pattern must not nest quantifiers, e.g. '(a+)+'")
        rule = CategorizationRule(
            scope=user_id,
            pattern=pattern.strip(),
            category=category.strip(),
            subcategory=subcategory,
            confidence=confidence,
            min_amount=min_amount,
            max_amount=max_amount,
            origin="user",
        )
        return await asyncio.to_thread(self.rule_store.add, rule)

    async def deactivate_rule(self, user_id: str, rule_id: str) -> CategorizationRule | None:
        return await asyncio.to_thread(self.rule_store.deactivate, user_id, rule_id)

    async def aclose(self) -> None:
        for adapter in self.adapters.values():
            await adapter.aclose()
        await self.audit.aclose()


def build_orchestrator(
    persistence: Persistence | None = None,
    adapters: Mapping[ProviderId, ProviderAdapter] | None = None,
    audit: AuditLogger | None = None,
) -> CategorizationOrchestrator:
    if persistence is None:
        persistence = JsonFilePersistence(os.path.join(settings.DATA_DIR, "categorizer.json"))
    if adapters is None:
        adapters = build_adapters()
    if audit is None:
        audit_url = os.getenv("AUDIT_WEBHOOK_URL")
        audit = HttpAuditLogger(audit_url) if audit_url else LoggingAuditLogger()

    return CategorizationOrchestrator(
        persistence,
        adapters,
        audit,
        max_attempts=settings.max_provider_attempts(),
        history_limit=settings.history_limit(),
        confidence_floor=settings.rule_confidence_floor(),
        promotion_threshold=settings.promotion_threshold(),
        promoted_rule_confidence=settings.promoted_rule_confidence(),
        rule_cache_ttl=settings.rule_cache_ttl(),
    )
