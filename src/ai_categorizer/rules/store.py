import threading
from time import monotonic
from typing import Any

from ai_categorizer.domain.text import normalize_category
from ai_categorizer.logger import get_logger
from ai_categorizer.models import CategorizationRule, utcnow
from ai_categorizer.persistence.base import Persistence

logger = get_logger(__name__)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class RuleStore:
    """
    Scoped access to categorization rules with a read-through cache.

    The persistence backend stays authoritative: cached entries expire after
    ``cache_ttl`` seconds and every write through the store invalidates its
    scope.
    """

    def __init__(self, persistence: Persistence, cache_ttl: float = 30.0) -> None:
        self.persistence = persistence
        self.cache_ttl = max(0.0, cache_ttl)
        self._cache: dict[str, tuple[float, list[CategorizationRule]]] = {}
        self._cache_lock = threading.Lock()

    def invalidate(self, scope: str | None = None) -> None:
        with self._cache_lock:
            if scope is None:
                self._cache.clear()
            else:
                self._cache.pop(scope, None)

    def all_rules(self, scope: str) -> list[CategorizationRule]:
        if self.cache_ttl > 0:
            with self._cache_lock:
                cached = self._cache.get(scope)
            if cached and monotonic() < cached[0]:
                return list(cached[1])

        rules = self.persistence.find_rules(scope)
        if self.cache_ttl > 0:
            with self._cache_lock:
                self._cache[scope] = (monotonic() + self.cache_ttl, list(rules))
        return rules

    def rules_for(self, scope: str) -> list[CategorizationRule]:
        return [rule for rule in self.all_rules(scope) if rule.active]

    def get(self, scope: str, rule_id: str) -> CategorizationRule | None:
        for rule in self.persistence.find_rules(scope):
            if rule.id == rule_id:
                return rule
        return None

    def find(self, scope: str, pattern: str, category: str) -> CategorizationRule | None:
        wanted = normalize_category(category)
        for rule in self.persistence.find_rules(scope):
            if rule.pattern == pattern and normalize_category(rule.category) == wanted:
                return rule
        return None

    def add(self, rule: CategorizationRule) -> CategorizationRule:
        stored = self.persistence.insert_rule(rule)
        self.invalidate(rule.scope)
        logger.info(
            "[RULES] Added %s rule '%s' -> '%s' (confidence %.2f) for scope %s",
            rule.origin,
            rule.pattern,
            rule.category,
            rule.confidence,
            rule.scope,
        )
        return stored

    def increment_usage(self, scope: str, rule_id: str) -> None:
        self.persistence.increment_rule_usage(scope, rule_id)
        # A usage bump patches the cached row; it does not invalidate the scope
        with self._cache_lock:
            cached = self._cache.get(scope)
            if cached is None:
                return
            expires_at, rules = cached
            self._cache[scope] = (
                expires_at,
                [
                    rule.model_copy(update={"usage": rule.usage + 1}) if rule.id == rule_id else rule
                    for rule in rules
                ],
            )

    def deactivate(self, scope: str, rule_id: str) -> CategorizationRule | None:
        def changes(rule: CategorizationRule) -> dict[str, Any]:
            if not rule.active:
                return {}
            return {"active": False, "updated_at": utcnow()}

        rule = self.persistence.update_rule(scope, rule_id, changes)
        if rule is not None:
            self.invalidate(scope)
            logger.info("[RULES] Deactivated rule %s for scope %s", rule_id, scope)
        return rule

    def record_outcome(self, scope: str, rule_id: str, correct: bool) -> CategorizationRule | None:
        """
        Fold one feedback outcome into the rule's accuracy ratio. The initial
        accuracy counts as one prior observation.
        """
        outcome = 1.0 if correct else 0.0

        def changes(rule: CategorizationRule) -> dict[str, Any]:
            evaluations = rule.evaluations + 1
            accuracy = _clamp((rule.accuracy * (rule.evaluations + 1) + outcome) / (evaluations + 1))
            return {"accuracy": accuracy, "evaluations": evaluations, "updated_at": utcnow()}

        rule = self.persistence.update_rule(scope, rule_id, changes)
        if rule is None:
            return None
        self.invalidate(scope)
        logger.debug("[RULES] Rule %s accuracy now %.2f over %d outcomes", rule_id, rule.accuracy, rule.evaluations)
        return rule

    def reinforce(self, scope: str, rule_id: str, confidence: float) -> CategorizationRule | None:
        confidence = _clamp(confidence)

        def changes(rule: CategorizationRule) -> dict[str, Any]:
            if confidence <= rule.confidence:
                return {}
            return {"confidence": confidence, "updated_at": utcnow()}

        rule = self.persistence.update_rule(scope, rule_id, changes)
        if rule is not None and rule.confidence == confidence:
            self.invalidate(scope)
            logger.info("[RULES] Reinforced rule %s to confidence %.2f", rule_id, confidence)
        return rule
