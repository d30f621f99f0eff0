from unittest.mock import AsyncMock

import pytest

from ai_categorizer.errors import PersistenceError
from ai_categorizer.feedback.ledger import FeedbackLedger
from ai_categorizer.feedback.promoter import RulePromoter
from ai_categorizer.models import CategorizationRule, FeedbackInput
from ai_categorizer.orchestrator import CategorizationOrchestrator
from ai_categorizer.persistence.memory import InMemoryPersistence
from ai_categorizer.rules.store import RuleStore


@pytest.fixture
def store(persistence: InMemoryPersistence) -> RuleStore:
    return RuleStore(persistence, cache_ttl=0.0)


@pytest.fixture
def ledger(persistence: InMemoryPersistence) -> FeedbackLedger:
    return FeedbackLedger(persistence)


@pytest.fixture
def promoter(store: RuleStore, ledger: FeedbackLedger) -> RulePromoter:
    return RulePromoter(store, ledger, threshold=3, initial_confidence=0.8)


def _correction(index: int, category: str = "software", description: str = "AWS Cloud Services REF 1182") -> FeedbackInput:
    return FeedbackInput(
        transaction_id=f"tx-{index}",
        description=description,
        original_prediction="other",
        user_correction=category,
    )


def _submit(ledger: FeedbackLedger, promoter: RulePromoter, feedback: FeedbackInput, scope: str = "user-1"):
    record = ledger.append(FeedbackLedger.build_record(scope, scope, feedback))
    return promoter.maybe_promote(record)


def test_build_record_normalizes_pattern() -> None:
    record = FeedbackLedger.build_record("user-1", "user-1", _correction(1))

    assert record.pattern == "aws cloud services"
    assert record.scope == "user-1"
    assert record.id


def test_promotes_after_threshold(ledger: FeedbackLedger, promoter: RulePromoter, store: RuleStore) -> None:
    assert _submit(ledger, promoter, _correction(1)) is None
    assert _submit(ledger, promoter, _correction(2)) is None

    rule = _submit(ledger, promoter, _correction(3))

    assert rule is not None
    assert rule.pattern == "aws cloud services"
    assert rule.category == "software"
    assert rule.origin == "user"
    assert rule.usage == 0
    assert rule.confidence == pytest.approx(0.8)
    assert len(store.all_rules("user-1")) == 1


def test_promotion_is_idempotent_and_reinforces(ledger: FeedbackLedger, promoter: RulePromoter, store: RuleStore) -> None:
    for index in range(3):
        _submit(ledger, promoter, _correction(index))

    assert _submit(ledger, promoter, _correction(3)) is None
    assert _submit(ledger, promoter, _correction(4)) is None

    rules = store.all_rules("user-1")
    assert len(rules) == 1
    assert rules[0].confidence == pytest.approx(0.9)


def test_same_transaction_counts_once(ledger: FeedbackLedger, promoter: RulePromoter, store: RuleStore) -> None:
    for _ in range(5):
        _submit(ledger, promoter, _correction(1))

    assert store.all_rules("user-1") == []


def test_conflicting_corrections_need_a_majority(ledger: FeedbackLedger, promoter: RulePromoter, store: RuleStore) -> None:
    for index in range(4):
        _submit(ledger, promoter, _correction(index, category="hosting"))

    assert len(store.all_rules("user-1")) == 1
    for index in range(4, 7):
        assert _submit(ledger, promoter, _correction(index, category="software")) is None

    assert [rule.category for rule in store.all_rules("user-1")] == ["hosting"]


def test_feedback_without_description_is_never_promoted(ledger: FeedbackLedger, promoter: RulePromoter) -> None:
    for index in range(5):
        feedback = FeedbackInput(transaction_id=f"tx-{index}", original_prediction="other", user_correction="software")
        assert _submit(ledger, promoter, feedback) is None


def test_deactivated_rule_is_not_recreated(ledger: FeedbackLedger, promoter: RulePromoter, store: RuleStore) -> None:
    for index in range(3):
        rule = _submit(ledger, promoter, _correction(index))
    store.deactivate("user-1", rule.id)

    _submit(ledger, promoter, _correction(10))

    rules = store.all_rules("user-1")
    assert len(rules) == 1
    assert rules[0].active is False


def test_threshold_must_be_positive(store: RuleStore, ledger: FeedbackLedger) -> None:
    with pytest.raises(ValueError):
        RulePromoter(store, ledger, threshold=0)


@pytest.mark.anyio
async def test_promotion_through_orchestrator_audits(make_orchestrator, audit: AsyncMock) -> None:
    orchestrator = make_orchestrator(promotion_threshold=2)

    await orchestrator.record_feedback("user-1", _correction(1))
    await orchestrator.record_feedback("user-1", _correction(2).model_dump())

    rules = await orchestrator.list_rules("user-1")
    assert len(rules) == 1
    kinds = [call.args[0] for call in audit.log_event.await_args_list]
    assert kinds.count("feedback") == 2
    assert "rule_promotion" in kinds


@pytest.mark.anyio
async def test_feedback_updates_rule_accuracy(make_orchestrator, persistence: InMemoryPersistence) -> None:
    rule = persistence.insert_rule(CategorizationRule(scope="user-1", pattern="aws", category="software", confidence=0.95))
    orchestrator = make_orchestrator()

    await orchestrator.record_feedback(
        "user-1",
        FeedbackInput(rule_id=rule.id, original_prediction="software", user_correction="hosting"),
    )

    assert persistence.find_rules("user-1")[0].accuracy == pytest.approx(0.5)


class BrokenPersistence(InMemoryPersistence):
    def append_feedback(self, record) -> None:
        raise PersistenceError("disk full")


@pytest.mark.anyio
async def test_record_feedback_never_raises_with_broken_persistence(audit: AsyncMock) -> None:
    orchestrator = CategorizationOrchestrator(BrokenPersistence(), {}, audit)

    await orchestrator.record_feedback("user-1", _correction(1))
    await orchestrator.record_feedback("user-1", {"user_correction": "missing original"})


@pytest.mark.anyio
async def test_record_feedback_survives_unexpected_errors(audit: AsyncMock) -> None:
    class CrashingLedgerPersistence(InMemoryPersistence):
        def find_feedback(self, scope: str, pattern: str):
            raise RuntimeError("backend crashed")

    orchestrator = CategorizationOrchestrator(CrashingLedgerPersistence(), {}, audit)

    await orchestrator.record_feedback("user-1", _correction(1))


def test_replaying_corrections_creates_no_duplicates(ledger: FeedbackLedger, promoter: RulePromoter, store: RuleStore) -> None:
    corrections = [_correction(index) for index in range(3)]
    for feedback in corrections:
        _submit(ledger, promoter, feedback)

    for feedback in corrections:
        assert _submit(ledger, promoter, feedback) is None

    rules = store.all_rules("user-1")
    assert len(rules) == 1
    assert rules[0].confidence == pytest.approx(0.8)
