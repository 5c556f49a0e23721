"""
Unit tests for the Ensemble Consensus Scorer.
"""

import asyncio
import itertools

import pytest

from scorecard.agents.ensemble import EnsembleConsensusScorer, build_consensus
from scorecard.agents.oracle import OracleError
from scorecard.models.judgment import (
    ConsensusResult,
    FailedResult,
    Judgment,
    OracleFailure,
    RejectedResult,
    Rejection,
)


class FakeOracle:
    """Oracle returning a fixed outcome, optionally after a delay."""

    def __init__(self, name, outcome=None, error=None, delay=0.0):
        self.name = name
        self.outcome = outcome
        self.error = error
        self.delay = delay
        self.calls = []

    async def judge(self, text, context=""):
        self.calls.append((text, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.outcome


def test_majority_bucket_and_mean_of_its_voters():
    """(Positive,75,high), (Positive,80,medium), (Mixed,60,low) -> Positive 78."""
    result = build_consensus([
        Judgment("Positive", 75, "high", oracle="a"),
        Judgment("Positive", 80, "medium", oracle="b"),
        Judgment("Mixed", 60, "low", oracle="c"),
    ])

    assert isinstance(result, ConsensusResult)
    assert result.bucket == "Positive"
    assert result.score == 78
    assert result.votes == {"Mixed": 1, "Positive": 2}
    assert result.agreement == "majority"
    assert result.spread == 20
    assert result.missing_votes == 0


def test_consensus_is_order_independent():
    judgments = [
        Judgment("Rave", 90, "high", oracle="a"),
        Judgment("Mixed", 60, "high", oracle="b"),
        Judgment("Positive", 77, "medium", oracle="c"),
        Judgment("Rave", 88, "low", oracle="d"),
        Judgment("Mixed", 58, "medium", oracle="e"),
    ]

    expected = build_consensus(judgments)
    for permutation in itertools.permutations(judgments):
        assert build_consensus(list(permutation)) == expected


def test_two_rejections_among_three_is_rejected():
    result = build_consensus([
        Rejection("wrong_production", "Touring cast.", oracle="a"),
        Judgment("Positive", 80, "high", oracle="b"),
        Rejection("not_a_review", "Press release.", oracle="c"),
    ])

    assert isinstance(result, RejectedResult)
    assert result.reason == "wrong_production"
    assert len(result.rejections) == 2


def test_single_rejection_is_a_missing_vote():
    result = build_consensus([
        Rejection("wrong_show", "", oracle="a"),
        Judgment("Negative", 40, "high", oracle="b"),
        Judgment("Negative", 45, "medium", oracle="c"),
    ])

    assert isinstance(result, ConsensusResult)
    assert result.bucket == "Negative"
    assert result.score == 43  # 42.5 rounds half up
    assert result.missing_votes == 1


def test_lone_rejection_with_failures_is_rejected():
    result = build_consensus([
        Rejection("garbage_text", "", oracle="a"),
        OracleFailure("b", "timeout"),
        OracleFailure("c", "bad json"),
    ])

    assert isinstance(result, RejectedResult)
    assert result.reason == "garbage_text"


def test_all_failures_is_failed():
    result = build_consensus([OracleFailure("a", "timeout"), OracleFailure("b", "503")])

    assert isinstance(result, FailedResult)
    assert "timeout" in result.summary


def test_tie_broken_by_confidence_weight():
    result = build_consensus([
        Judgment("Positive", 75, "high", oracle="a"),
        Judgment("Mixed", 60, "low", oracle="b"),
    ])

    assert result.bucket == "Positive"
    assert result.score == 75
    assert result.agreement == "plurality"
    assert result.confidence == "low"


def test_tie_broken_by_raw_score_midpoint():
    """Equal votes and weights: midpoint 75 is nearer Mixed (55-69) than Rave (85-100)."""
    result = build_consensus([
        Judgment("Rave", 90, "high", oracle="a"),
        Judgment("Mixed", 60, "high", oracle="b"),
    ])

    assert result.bucket == "Mixed"
    assert result.score == 60


def test_unanimous_tight_agreement_is_high_confidence():
    result = build_consensus([
        Judgment("Rave", 90, "high", oracle="a"),
        Judgment("Rave", 92, "medium", oracle="b"),
        Judgment("Rave", 93, "low", oracle="c"),
    ])

    assert result.agreement == "unanimous"
    assert result.confidence == "high"
    assert result.score == 92  # 91.67
    assert not result.needs_review


def test_far_outlier_needs_review():
    result = build_consensus([
        Judgment("Rave", 90, "high", oracle="a"),
        Judgment("Rave", 88, "high", oracle="b"),
        Judgment("Negative", 40, "low", oracle="c"),
    ])

    assert result.bucket == "Rave"
    assert result.needs_review
    assert "c=Negative" in result.review_reason


def test_no_majority_needs_review():
    result = build_consensus([
        Judgment("Positive", 78, "high", oracle="a"),
        Judgment("Mixed", 62, "medium", oracle="b"),
        Judgment("Rave", 88, "medium", oracle="c"),
    ])

    assert result.agreement == "plurality"
    assert result.bucket == "Positive"
    assert result.needs_review
    assert result.review_reason == "3-way bucket disagreement"


def test_single_judgment_needs_review():
    result = build_consensus([Judgment("Mixed", 62, "medium", oracle="a"), OracleFailure("b", "503")])

    assert result.agreement == "single"
    assert result.needs_review
    assert result.missing_votes == 1


@pytest.mark.asyncio
async def test_score_runs_every_oracle():
    oracles = [
        FakeOracle("a", Judgment("Positive", 75, "high", oracle="a")),
        FakeOracle("b", Judgment("Positive", 80, "medium", oracle="b")),
        FakeOracle("c", Judgment("Mixed", 60, "low", oracle="c")),
    ]
    scorer = EnsembleConsensusScorer(oracles)

    result = await scorer.score("A warm, funny production.", "Show: Oklahoma!")

    assert result.score == 78
    for oracle in oracles:
        assert oracle.calls == [("A warm, funny production.", "Show: Oklahoma!")]


@pytest.mark.asyncio
async def test_timed_out_oracle_is_a_missing_vote():
    oracles = [
        FakeOracle("fast-a", Judgment("Negative", 40, "high", oracle="fast-a")),
        FakeOracle("fast-b", Judgment("Negative", 50, "high", oracle="fast-b")),
        FakeOracle("slow", Judgment("Rave", 95, "high", oracle="slow"), delay=5),
    ]
    scorer = EnsembleConsensusScorer(oracles, timeout_seconds=0.05)

    result = await scorer.score("Tedious and overlong.")

    assert isinstance(result, ConsensusResult)
    assert result.bucket == "Negative"
    assert result.score == 45
    assert result.missing_votes == 1


@pytest.mark.asyncio
async def test_failing_oracle_does_not_fail_consensus():
    oracles = [
        FakeOracle("a", Judgment("Pan", 20, "high", oracle="a")),
        FakeOracle("b", error=OracleError("malformed")),
        FakeOracle("c", error=ConnectionError("reset")),
    ]
    scorer = EnsembleConsensusScorer(oracles)

    result = await scorer.score("Avoid.")

    assert result.bucket == "Pan"
    assert result.missing_votes == 2


@pytest.mark.asyncio
async def test_every_oracle_failing_is_failed():
    oracles = [FakeOracle("a", error=OracleError("x")), FakeOracle("b", error=OracleError("y"))]
    scorer = EnsembleConsensusScorer(oracles)

    result = await scorer.score("Some text.")

    assert isinstance(result, FailedResult)
    assert len(result.failures) == 2


@pytest.mark.asyncio
async def test_empty_text_is_failed_without_calls():
    oracle = FakeOracle("a", Judgment("Rave", 90, "high"))
    scorer = EnsembleConsensusScorer([oracle])

    result = await scorer.score("  ")

    assert isinstance(result, FailedResult)
    assert oracle.calls == []
