import re
from dataclasses import dataclass
from functools import lru_cache

from ai_categorizer.domain.text import normalize_description
from ai_categorizer.errors import PersistenceError
from ai_categorizer.logger import get_logger
from ai_categorizer.models import (
    CategorizationResult,
    CategorizationRule,
    Explanation,
    ResultMetadata,
    TransactionInput,
)
from ai_categorizer.rules.store import RuleStore

logger = get_logger(__name__)

RULE_ENGINE_MODEL = "rule-engine"
RULE_ENGINE_PROVIDER = "rules"

# Matching looks at this many characters of each text at most
MAX_MATCH_LENGTH = 512

_QUANTIFIER = r"(?:[+*]|\{\d+(?:,\d*)?\})"
_NESTED_QUANTIFIER = re.compile(
    r"\((?:[^()\\]|\\.)*" + _QUANTIFIER + r"(?:[^()\\]|\\.)*\)" + _QUANTIFIER
)


def is_safe_pattern(pattern: str) -> bool:
    """False for a quantified group that itself holds a quantifier, e.g. ``(a+)+``."""
    return _NESTED_QUANTIFIER.search(pattern) is None


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str] | None:
    if not is_safe_pattern(pattern):
        logger.warning("[RULES] Pattern '%s' has nested quantifiers; matching it as plain text", pattern)
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


def pattern_matches(pattern: str, text: str | None) -> bool:
    if not pattern or not text:
        return False
    text = text[:MAX_MATCH_LENGTH]
    compiled = _compile(pattern)
    if compiled is None:
        # Invalid or unsafe regex; treat it as plain text
        return pattern.lower() in text.lower()
    return compiled.search(text) is not None


def rule_fires(rule: CategorizationRule, transaction: TransactionInput) -> bool:
    magnitude = abs(transaction.amount)
    if rule.min_amount is not None and magnitude < rule.min_amount:
        return False
    if rule.max_amount is not None and magnitude > rule.max_amount:
        return False
    candidates = (
        transaction.description,
        normalize_description(transaction.description),
        transaction.merchant,
    )
    return any(pattern_matches(rule.pattern, text) for text in candidates)


def _rank(rule: CategorizationRule) -> tuple[float, int, float]:
    return (rule.score, rule.usage, rule.updated_at.timestamp())


@dataclass(frozen=True)
class RuleMatch:
    rule: CategorizationRule
    firing: tuple[CategorizationRule, ...]


class RuleEngine:
    def __init__(self, store: RuleStore, confidence_floor: float = 0.9) -> None:
        self.store = store
        self.confidence_floor = confidence_floor

    def evaluate(self, transaction: TransactionInput, scope: str) -> RuleMatch | None:
        """Best firing active rule of the scope, ignoring the confidence floor."""
        firing = [rule for rule in self.store.rules_for(scope) if rule_fires(rule, transaction)]
        if not firing:
            return None
        firing.sort(key=_rank, reverse=True)
        return RuleMatch(rule=firing[0], firing=tuple(firing))

    def match(self, transaction: TransactionInput, scope: str) -> CategorizationResult | None:
        found = self.evaluate(transaction, scope)
        if found is None:
            logger.debug("[RULES] No rule fired for: '%s'", transaction.description[:50])
            return None

        rule = found.rule
        if rule.confidence <= self.confidence_floor:
            logger.debug(
                "[RULES] Best rule %s ('%s') at %.2f is not above floor %.2f",
                rule.id,
                rule.pattern,
                rule.confidence,
                self.confidence_floor,
            )
            return None

        try:
            self.store.increment_usage(scope, rule.id)
        except PersistenceError as e:
            logger.warning("[RULES] Could not record usage of rule %s: %s", rule.id, e)

        logger.debug(
            "[RULES] Rule %s matched '%s' -> '%s' (confidence: %.2f)",
            rule.id,
            transaction.description[:50],
            rule.category,
            rule.confidence,
        )
        return CategorizationResult(
            category=rule.category,
            subcategory=rule.subcategory,
            confidence=rule.confidence,
            explanation=Explanation(
                reasoning=(
                    f"Matched {rule.origin} rule '{rule.pattern}' "
                    f"(used {rule.usage} times, accuracy {rule.accuracy:.0%})"
                ),
                evidence=[f"Description matches rule pattern '{rule.pattern}'"],
                confidence=rule.confidence,
                model=RULE_ENGINE_MODEL,
                provider=RULE_ENGINE_PROVIDER,
            ),
            rules=[rule],
            metadata=ResultMetadata(model=RULE_ENGINE_MODEL, provider=RULE_ENGINE_PROVIDER),
        )
