from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from ai_categorizer.models import (
    CategorizationRule,
    Explanation,
    FeedbackRecord,
    HistoricalCategorization,
)


class Persistence(ABC):
    """
    Durable storage for rules, feedback, categorization history and
    explanations. Every operation is scoped by user/tenant id and raises
    ``PersistenceError`` when the backend is unavailable.
    """

    @abstractmethod
    def find_rules(self, scope: str) -> list[CategorizationRule]:
        """All rules of the scope, active or not."""
        pass

    @abstractmethod
    def insert_rule(self, rule: CategorizationRule) -> CategorizationRule:
        pass

    @abstractmethod
    def update_rule(
        self,
        scope: str,
        rule_id: str,
        changes: Callable[[CategorizationRule], dict[str, Any]],
    ) -> CategorizationRule | None:
        """
        Apply ``changes(stored_rule)`` to the stored row atomically and return
        the result, or ``None`` when the rule does not exist. ``changes``
        sees the current row, so concurrent writes to other fields survive.
        An empty dict leaves the row untouched.
        """
        pass

    @abstractmethod
    def increment_rule_usage(self, scope: str, rule_id: str) -> None:
        pass

    @abstractmethod
    def append_feedback(self, record: FeedbackRecord) -> None:
        pass

    @abstractmethod
    def find_feedback(self, scope: str, pattern: str) -> list[FeedbackRecord]:
        pass

    @abstractmethod
    def recent_history(self, scope: str, limit: int) -> list[HistoricalCategorization]:
        """Most recent first."""
        pass

    @abstractmethod
    def append_history(self, scope: str, entry: HistoricalCategorization) -> None:
        pass

    @abstractmethod
    def save_explanation(self, scope: str, decision_id: str, explanation: Explanation) -> None:
        pass

    @abstractmethod
    def get_explanation(self, scope: str, decision_id: str) -> Explanation | None:
        pass
