"""
Unit tests for the Adjudication State Machine.
"""

import asyncio
import os
import tempfile

import pytest

from scorecard.agents.adjudication import AdjudicationStateMachine
from scorecard.agents.oracle import OracleError
from scorecard.models.judgment import Judgment, Rejection
from scorecard.models.review import AUTO_ACCEPTED, QUEUED, RESOLVED_CONFIDENT, UNFLAGGED, Review
from scorecard.registry.review_registry import ReviewRegistry


class ScriptedOracle:
    """Returns (or raises) the scripted outcomes in order; repeats the last one."""

    def __init__(self, *outcomes, delay=0.0):
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls = []

    async def judge(self, text, context=""):
        self.calls.append((text, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def low(score=60, bucket="Mixed"):
    return Judgment(bucket, score, "low", rationale="Could go either way.", sided_with="analysis")


def confident(confidence="high", score=50, bucket="Negative"):
    return Judgment(bucket, score, confidence, rationale="Clearly negative.", sided_with="thumbs")


def make_review(review_id="oklahoma/vulture--sara-holdren", score=80, bucket="Positive", **kwargs):
    return Review(
        review_id=review_id,
        show_id="oklahoma",
        outlet_id="vulture",
        critic_name="Sara Holdren",
        original_rating="2/5",
        thumbs={"dtli": "Down", "show-score": "Down"},
        text="The revival is muddled and airless, despite a committed cast.",
        excerpts={"dtli": "Muddled and airless."},
        score=score,
        bucket=bucket,
        scoring_status="scored" if score is not None else "unscored",
        **kwargs
    )


@pytest.mark.asyncio
async def test_low_confidence_ceiling_is_exact():
    """Low confidence on every attempt auto-accepts after exactly 3 attempts."""
    oracle = ScriptedOracle(low())
    machine = AdjudicationStateMachine(oracle, max_attempts=3)
    review = make_review()

    outcomes = [await machine.adjudicate(review) for _ in range(5)]

    assert outcomes == ["retried", "retried", "auto_accepted", "skipped", "skipped"]
    assert len(oracle.calls) == 3
    assert review.adjudication_attempts == 3
    assert len(review.adjudication_history) == 3
    assert review.adjudication_state == AUTO_ACCEPTED


@pytest.mark.asyncio
async def test_forced_resolution_keeps_original_score():
    machine = AdjudicationStateMachine(ScriptedOracle(low(score=62)), max_attempts=2)
    review = make_review(score=80, bucket="Positive")

    await machine.adjudicate(review)
    await machine.adjudicate(review)

    assert review.resolution_score == 80
    assert review.resolution_bucket == "Positive"
    assert "Forced resolution" in review.resolution_note
    assert review.resolved_at is not None


@pytest.mark.asyncio
async def test_high_confidence_resolves_with_attempt_score():
    machine = AdjudicationStateMachine(ScriptedOracle(confident("high", 45)))
    review = make_review()

    outcome = await machine.adjudicate(review)

    assert outcome == "resolved"
    assert review.adjudication_state == RESOLVED_CONFIDENT
    assert review.resolution_score == 45
    assert review.resolution_bucket == "Negative"
    assert review.adjudication_attempts == 1
    assert review.adjudication_history[0].sided_with == "thumbs"
    assert review.final_score == 45
    assert review.score == 80  # Automated score is kept alongside


@pytest.mark.asyncio
async def test_medium_confidence_resolves():
    machine = AdjudicationStateMachine(ScriptedOracle(confident("medium", 52)))
    review = make_review()

    assert await machine.adjudicate(review) == "resolved"
    assert review.resolution_score == 52


@pytest.mark.asyncio
async def test_low_then_high():
    machine = AdjudicationStateMachine(ScriptedOracle(low(), confident("high", 40)))
    review = make_review()

    assert await machine.adjudicate(review) == "retried"
    assert review.adjudication_state == QUEUED
    assert await machine.adjudicate(review) == "resolved"

    assert review.adjudication_attempts == 2
    assert [a.confidence for a in review.adjudication_history] == ["low", "high"]


@pytest.mark.asyncio
async def test_oracle_failure_is_not_an_attempt():
    machine = AdjudicationStateMachine(ScriptedOracle(OracleError("503")))
    review = make_review()

    outcome = await machine.adjudicate(review)

    assert outcome == "errors"
    assert review.adjudication_attempts == 0
    assert review.adjudication_history == []
    assert review.adjudication_state == QUEUED


@pytest.mark.asyncio
async def test_rejection_is_terminal():
    oracle = ScriptedOracle(Rejection("wrong_production", "Reviews the touring company."))
    machine = AdjudicationStateMachine(oracle)
    review = make_review()

    assert await machine.adjudicate(review) == "rejected"
    assert review.adjudication_state == AUTO_ACCEPTED
    assert review.scoring_status == "rejected"
    assert review.rejection_reason == "wrong_production"
    assert review.score is None and review.bucket is None
    assert review.resolution_score is None
    assert "wrong_production" in review.resolution_note
    assert review.adjudication_attempts == 0

    assert await machine.adjudicate(review) == "skipped"
    assert len(oracle.calls) == 1


@pytest.mark.asyncio
async def test_record_at_ceiling_is_forced_without_a_call():
    oracle = ScriptedOracle(confident())
    machine = AdjudicationStateMachine(oracle, max_attempts=3)
    review = make_review(adjudication_attempts=3, adjudication_state=QUEUED)

    assert await machine.adjudicate(review) == "auto_accepted"
    assert oracle.calls == []
    assert review.resolution_score == 80


@pytest.mark.asyncio
async def test_forced_resolution_without_automated_score():
    """A review that was never scored stays unscored; no numeric stand-in."""
    machine = AdjudicationStateMachine(ScriptedOracle(low()), max_attempts=1)
    review = make_review(score=None, bucket=None)

    assert await machine.adjudicate(review) == "auto_accepted"
    assert review.adjudication_state == AUTO_ACCEPTED
    assert review.resolution_score is None
    assert review.resolution_bucket is None
    assert "unscored" in review.resolution_note


@pytest.mark.asyncio
async def test_attempts_on_one_review_are_serialized():
    oracle = ScriptedOracle(low(), delay=0.01)
    machine = AdjudicationStateMachine(oracle, max_attempts=5)
    review = make_review()

    await asyncio.gather(*(machine.adjudicate(review) for _ in range(3)))

    assert review.adjudication_attempts == 3
    assert len(review.adjudication_history) == 3


def test_machine_can_be_reused_across_event_loops():
    oracle = ScriptedOracle(low(), delay=0.01)
    machine = AdjudicationStateMachine(oracle, max_attempts=10)
    review = make_review()

    async def contend():
        return await asyncio.gather(*(machine.adjudicate(review) for _ in range(2)))

    assert asyncio.run(contend()) == ["retried", "retried"]
    assert asyncio.run(contend()) == ["retried", "retried"]
    assert review.adjudication_attempts == 4


@pytest.mark.asyncio
async def test_concurrent_entry_after_resolution_is_skipped():
    oracle = ScriptedOracle(confident(), delay=0.01)
    machine = AdjudicationStateMachine(oracle)
    review = make_review()

    outcomes = await asyncio.gather(machine.adjudicate(review), machine.adjudicate(review))

    assert sorted(outcomes) == ["resolved", "skipped"]
    assert len(oracle.calls) == 1


@pytest.mark.asyncio
async def test_context_and_text_limit():
    oracle = ScriptedOracle(confident())
    machine = AdjudicationStateMachine(oracle, text_limit=20)
    review = make_review()

    await machine.adjudicate(review, {"reason": "thumb-conflict"})

    text, context = oracle.calls[0]
    assert len(text) <= 23
    assert "Automated score: 80 (Positive)" in context
    assert "dtli=Down" in context
    assert "Critic's explicit rating: 2/5" in context
    assert "Flagged because: thumb-conflict" in context
    assert "Muddled and airless." in context


def test_enqueue_respects_terminal_states():
    review = make_review()
    assert review.adjudication_state == UNFLAGGED

    assert AdjudicationStateMachine.enqueue(review)
    assert review.adjudication_state == QUEUED

    review.adjudication_state = RESOLVED_CONFIDENT
    assert not AdjudicationStateMachine.enqueue(review)
    assert review.adjudication_state == RESOLVED_CONFIDENT


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        AdjudicationStateMachine(ScriptedOracle(low()), max_attempts=0)


@pytest.mark.asyncio
async def test_run_rechecks_registry_state():
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = ReviewRegistry(os.path.join(tmpdir, "reviews.json"))
        registry.add_review(make_review("a/x--one"))
        registry.add_review(make_review("a/x--two", adjudication_state=RESOLVED_CONFIDENT))

        machine = AdjudicationStateMachine(ScriptedOracle(confident("high", 45)))
        entries = [
            {"review_id": "a/x--one", "reason": "thumb-conflict"},
            {"review_id": "a/x--two", "reason": "thumb-conflict"},
            {"review_id": "a/x--gone", "reason": "unscored"},
        ]

        summary = await machine.run(entries, registry)

        assert summary["resolved"] == 1
        assert summary["skipped"] == 1
        assert summary["missing"] == 1
        assert registry.get_review("a/x--one").resolution_score == 45


@pytest.mark.asyncio
async def test_dry_run_leaves_registry_untouched():
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = ReviewRegistry(os.path.join(tmpdir, "reviews.json"))
        registry.add_review(make_review("a/x--one"))

        machine = AdjudicationStateMachine(ScriptedOracle(confident("high", 45)))
        summary = await machine.run([{"review_id": "a/x--one"}], registry, dry_run=True)

        review = registry.get_review("a/x--one")
        assert summary["resolved"] == 1
        assert review.resolution_score is None
        assert review.adjudication_attempts == 0
