from ai_categorizer.domain.text import normalize_description
from ai_categorizer.logger import get_logger
from ai_categorizer.models import FeedbackInput, FeedbackRecord
from ai_categorizer.persistence.base import Persistence

logger = get_logger(__name__)


class FeedbackLedger:
    """Append-only record of user corrections, isolated per scope."""

    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    @staticmethod
    def build_record(scope: str, user_id: str, feedback: FeedbackInput) -> FeedbackRecord:
        pattern = normalize_description(feedback.description) or None
        return FeedbackRecord(
            **feedback.model_dump(),
            scope=scope,
            user_id=user_id,
            pattern=pattern,
        )

    def append(self, record: FeedbackRecord) -> FeedbackRecord:
        self.persistence.append_feedback(record)
        logger.info(
            "[FEEDBACK] Recorded %s: '%s' -> '%s' (scope %s)",
            record.id,
            record.original_prediction,
            record.user_correction,
            record.scope,
        )
        return record

    def matching(self, scope: str, pattern: str) -> list[FeedbackRecord]:
        return self.persistence.find_feedback(scope, pattern)
