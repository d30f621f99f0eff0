import threading
from collections import Counter

from ai_categorizer.domain.text import normalize_category
from ai_categorizer.feedback.ledger import FeedbackLedger
from ai_categorizer.logger import get_logger
from ai_categorizer.models import CategorizationRule, FeedbackRecord
from ai_categorizer.rules.store import RuleStore

logger = get_logger(__name__)

REINFORCEMENT_STEP = 0.05
MAX_PROMOTED_CONFIDENCE = 0.95


def _independence_key(record: FeedbackRecord) -> str:
    # Repeated corrections of one transaction count once
    return f"tx:{record.transaction_id}" if record.transaction_id else f"fb:{record.id}"


class RulePromoter:
    """
    Turns a recurring correction into a deterministic rule.

    When ``threshold`` independent feedback records map the same normalized
    description to the same category, and that category is the most common
    correction for the description, a ``user`` rule is written to the store.
    An existing rule with the same pattern and category is never duplicated;
    further corrections only raise its confidence.
    """

    def __init__(
        self,
        store: RuleStore,
        ledger: FeedbackLedger,
        threshold: int = 3,
        initial_confidence: float = 0.8,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.store = store
        self.ledger = ledger
        self.threshold = threshold
        self.initial_confidence = initial_confidence
        self._lock = threading.Lock()

    def _support(self, records: list[FeedbackRecord]) -> Counter[str]:
        keys_by_category: dict[str, set[str]] = {}
        for record in records:
            category = normalize_category(record.user_correction)
            keys_by_category.setdefault(category, set()).add(_independence_key(record))
        return Counter({category: len(keys) for category, keys in keys_by_category.items()})

    def maybe_promote(self, record: FeedbackRecord) -> CategorizationRule | None:
        # Check-then-insert must not interleave or a rule could be written twice
        with self._lock:
            return self._promote(record)

    def _promote(self, record: FeedbackRecord) -> CategorizationRule | None:
        if not record.pattern or not record.user_correction.strip():
            return None

        records = self.ledger.matching(record.scope, record.pattern)
        support = self._support(records)
        target = normalize_category(record.user_correction)
        count = support.get(target, 0)

        if count < self.threshold:
            logger.debug(
                "[PROMOTE] '%s' -> '%s' seen %d/%d times",
                record.pattern,
                record.user_correction,
                count,
                self.threshold,
            )
            return None

        top_count = max(support.values())
        if count < top_count:
            logger.debug("[PROMOTE] '%s' has more frequent corrections than '%s'", record.pattern, target)
            return None

        category = record.user_correction.strip()
        existing = self.store.find(record.scope, record.pattern, category)
        if existing is not None:
            if existing.active:
                boosted = min(
                    MAX_PROMOTED_CONFIDENCE,
                    self.initial_confidence + REINFORCEMENT_STEP * (count - self.threshold),
                )
                self.store.reinforce(record.scope, existing.id, boosted)
            return None

        rule = CategorizationRule(
            scope=record.scope,
            pattern=record.pattern,
            category=category,
            confidence=self.initial_confidence,
            usage=0,
            origin="user",
        )
        logger.info(
            "[PROMOTE] Promoting '%s' -> '%s' after %d corrections (scope %s)",
            rule.pattern,
            rule.category,
            count,
            rule.scope,
        )
        return self.store.add(rule)
