from collections.abc import Iterable, Sequence
from decimal import Decimal
from time import perf_counter

from rapidfuzz import fuzz, process, utils

from ai_categorizer.domain.text import extract_keywords, normalize_category
from ai_categorizer.models import (
    Alternative,
    CategorizationResult,
    Explanation,
    HistoricalCategorization,
    TransactionInput,
)

LARGE_AMOUNT = Decimal("1000")
SIMILARITY_THRESHOLD = 80.0
DEFAULT_ALTERNATIVE_CONFIDENCE = 0.1


def _dedupe(items: Iterable[str]) -> list[str]:
    seen = set()
    result: list[str] = []
    for item in items:
        if item and item not in seen:
            result.append(item)
            seen.add(item)
    return result


class ExplanationBuilder:
    """
    Turns any categorization (rule, AI or fallback) into an auditable one:
    evidence, alternatives, data sources and timing. Never touches the
    category or the confidence it was given.
    """

    def __init__(
        self,
        large_amount: Decimal = LARGE_AMOUNT,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ) -> None:
        self.large_amount = large_amount
        self.similarity_threshold = similarity_threshold

    def similar_history(
        self,
        transaction: TransactionInput,
        history: Sequence[HistoricalCategorization],
    ) -> list[tuple[HistoricalCategorization, float]]:
        if not history:
            return []
        matches = process.extract(
            transaction.description,
            [entry.description for entry in history],
            scorer=fuzz.token_sort_ratio,
            processor=utils.default_process,
            score_cutoff=self.similarity_threshold,
            limit=None,
        )
        return [(history[index], score) for _, score, index in matches]

    def evidence(
        self,
        result: CategorizationResult,
        transaction: TransactionInput,
        similar: list[tuple[HistoricalCategorization, float]],
    ) -> list[str]:
        evidence = list(result.explanation.evidence)

        keywords = extract_keywords(transaction.description)
        if keywords:
            evidence.append(f"Keywords found: {', '.join(keywords)}")

        if abs(transaction.amount) > self.large_amount:
            evidence.append("High amount suggests business expense rather than personal")

        if result.rules:
            evidence.append(f"Matches rule pattern '{result.rules[0].pattern}' for {result.category} category")
        else:
            evidence.append(f"Matches pattern for {result.category} category")

        winner = normalize_category(result.category)
        agreeing = [entry for entry, _ in similar if normalize_category(entry.category) == winner]
        if agreeing:
            noun = "categorization" if len(agreeing) == 1 else "categorizations"
            evidence.append(
                f"Consistent with {len(agreeing)} previous {noun} of similar transactions"
            )

        return _dedupe(evidence)

    def alternatives(
        self,
        result: CategorizationResult,
        similar: list[tuple[HistoricalCategorization, float]],
        extra: Sequence[Alternative] = (),
    ) -> list[Alternative]:
        winner = normalize_category(result.category)
        cap = max(0.0, round(result.confidence - 0.01, 4))

        def below_winner(candidates: Iterable[Alternative]) -> list[Alternative]:
            kept: list[Alternative] = []
            seen = {winner}
            for alt in candidates:
                key = normalize_category(alt.category)
                if key in seen:
                    continue
                seen.add(key)
                kept.append(alt.model_copy(update={"confidence": min(alt.confidence, cap)}))
            return kept

        upstream = below_winner(result.explanation.alternatives)
        if upstream:
            return upstream

        synthesized = list(extra)
        for entry, score in similar:
            synthesized.append(
                Alternative(
                    category=entry.category,
                    confidence=round(score / 100 * 0.5, 4),
                    reasoning=f"Similar to a previous transaction categorized as {entry.category}",
                )
            )
        synthesized.sort(key=lambda alt: alt.confidence, reverse=True)
        alternatives = below_winner(synthesized)
        if alternatives:
            return alternatives

        fallback_category = "uncategorized" if winner == "other" else "other"
        return [
            Alternative(
                category=fallback_category,
                confidence=min(DEFAULT_ALTERNATIVE_CONFIDENCE, cap),
                reasoning="Could be miscellaneous if the primary category doesn't fit well",
            )
        ]

    @staticmethod
    def sources(transaction: TransactionInput, extra: Iterable[str]) -> list[str]:
        sources = ["transaction_description"]
        if transaction.merchant:
            sources.append("merchant_data")
        if transaction.reference:
            sources.append("reference_number")
        sources.extend(extra)
        return _dedupe(sources)

    def enhance(
        self,
        result: CategorizationResult,
        transaction: TransactionInput,
        started_at: float,
        history: Sequence[HistoricalCategorization] = (),
        extra_alternatives: Sequence[Alternative] = (),
        extra_sources: Iterable[str] = (),
    ) -> CategorizationResult:
        """
        ``started_at`` is the ``perf_counter()`` reading taken when the
        request began.
        """
        similar = self.similar_history(transaction, history)
        explanation = Explanation(
            reasoning=result.explanation.reasoning,
            evidence=self.evidence(result, transaction, similar),
            confidence=result.confidence,
            alternatives=self.alternatives(result, similar, extra_alternatives),
            sources=self.sources(transaction, [*result.explanation.sources, *extra_sources]),
            model=result.metadata.model,
            provider=result.metadata.provider,
        )
        metadata = result.metadata.model_copy(
            update={"processing_ms": round((perf_counter() - started_at) * 1000, 3)}
        )
        return result.model_copy(update={"explanation": explanation, "metadata": metadata})
