import json
import os
import threading
from collections import OrderedDict, defaultdict, deque
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError as SchemaError

from ai_categorizer.errors import PersistenceError
from ai_categorizer.logger import get_logger
from ai_categorizer.models import (
    CategorizationRule,
    Explanation,
    FeedbackRecord,
    HistoricalCategorization,
    utcnow,
)
from ai_categorizer.persistence.base import Persistence

logger = get_logger(__name__)

MAX_HISTORY_PER_SCOPE = 200
MAX_EXPLANATIONS_PER_SCOPE = 1000


class InMemoryPersistence(Persistence):
    """
    Lock-guarded dictionaries keyed by scope. Concurrent writers to the same
    rule resolve as last write wins.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rules: dict[str, dict[str, CategorizationRule]] = defaultdict(dict)
        self._feedback: dict[str, list[FeedbackRecord]] = defaultdict(list)
        self._history: dict[str, deque[HistoricalCategorization]] = defaultdict(
            lambda: deque(maxlen=MAX_HISTORY_PER_SCOPE)
        )
        self._explanations: dict[str, OrderedDict[str, Explanation]] = defaultdict(OrderedDict)

    def _changed(self) -> None:
        """Hook for subclasses that flush state after every write."""
        pass

    def find_rules(self, scope: str) -> list[CategorizationRule]:
        with self._lock:
            return [rule.model_copy() for rule in self._rules.get(scope, {}).values()]

    def insert_rule(self, rule: CategorizationRule) -> CategorizationRule:
        with self._lock:
            self._rules[rule.scope][rule.id] = rule.model_copy()
            self._changed()
        return rule

    def update_rule(
        self,
        scope: str,
        rule_id: str,
        changes: Callable[[CategorizationRule], dict[str, Any]],
    ) -> CategorizationRule | None:
        with self._lock:
            stored = self._rules.get(scope, {}).get(rule_id)
            if stored is None:
                return None
            update = changes(stored)
            if not update:
                return stored.model_copy()
            updated = stored.model_copy(update=update)
            self._rules[scope][rule_id] = updated
            self._changed()
            return updated.model_copy()

    def increment_rule_usage(self, scope: str, rule_id: str) -> None:
        with self._lock:
            rule = self._rules.get(scope, {}).get(rule_id)
            if rule is None:
                raise PersistenceError(f"Rule {rule_id} not found in scope {scope}")
            self._rules[scope][rule_id] = rule.model_copy(
                update={"usage": rule.usage + 1, "updated_at": utcnow()}
            )
            self._changed()

    def append_feedback(self, record: FeedbackRecord) -> None:
        with self._lock:
            self._feedback[record.scope].append(record)
            self._changed()

    def find_feedback(self, scope: str, pattern: str) -> list[FeedbackRecord]:
        with self._lock:
            return [record for record in self._feedback.get(scope, []) if record.pattern == pattern]

    def recent_history(self, scope: str, limit: int) -> list[HistoricalCategorization]:
        if limit <= 0:
            return []
        with self._lock:
            entries = list(self._history.get(scope, ()))
        return list(reversed(entries))[:limit]

    def append_history(self, scope: str, entry: HistoricalCategorization) -> None:
        with self._lock:
            self._history[scope].append(entry)
            self._changed()

    def save_explanation(self, scope: str, decision_id: str, explanation: Explanation) -> None:
        with self._lock:
            stored = self._explanations[scope]
            stored[decision_id] = explanation
            while len(stored) > MAX_EXPLANATIONS_PER_SCOPE:
                stored.popitem(last=False)
            self._changed()

    def get_explanation(self, scope: str, decision_id: str) -> Explanation | None:
        with self._lock:
            return self._explanations.get(scope, {}).get(decision_id)


class JsonFilePersistence(InMemoryPersistence):
    """In-memory state mirrored to a single JSON file after every write."""

    def __init__(self, data_path: str = "categorizer.json") -> None:
        super().__init__()
        self.data_path = data_path
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            logger.warning("[STORE] %s is not valid JSON; starting empty.", self.data_path)
            return
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.data_path}: {e}") from e

        try:
            with self._lock:
                self._restore(data)
        except (SchemaError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Corrupt store {self.data_path}: {e}") from e

    def _restore(self, data: dict[str, Any]) -> None:
        for scope, rules in data.get("rules", {}).items():
            for raw in rules:
                rule = CategorizationRule.model_validate(raw)
                self._rules[scope][rule.id] = rule
        for scope, records in data.get("feedback", {}).items():
            self._feedback[scope] = [FeedbackRecord.model_validate(raw) for raw in records]
        for scope, entries in data.get("history", {}).items():
            self._history[scope].extend(HistoricalCategorization.model_validate(raw) for raw in entries)
        for scope, explanations in data.get("explanations", {}).items():
            for decision_id, raw in explanations.items():
                self._explanations[scope][decision_id] = Explanation.model_validate(raw)

    def _snapshot(self) -> dict[str, Any]:
        return {
            "rules": {
                scope: [rule.model_dump(mode="json") for rule in rules.values()]
                for scope, rules in self._rules.items()
            },
            "feedback": {
                scope: [record.model_dump(mode="json") for record in records]
                for scope, records in self._feedback.items()
            },
            "history": {
                scope: [entry.model_dump(mode="json") for entry in entries]
                for scope, entries in self._history.items()
            },
            "explanations": {
                scope: {decision_id: exp.model_dump(mode="json") for decision_id, exp in stored.items()}
                for scope, stored in self._explanations.items()
            },
        }

    def _changed(self) -> None:
        tmp_path = f"{self.data_path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._snapshot(), f, indent=2)
            os.replace(tmp_path, self.data_path)
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.data_path}: {e}") from e
