"""
Ensemble Consensus Scorer.

Asks several independent oracles to judge the same review text concurrently
and merges their answers into one consensus score and bucket.
"""

import asyncio
import logging
from collections import Counter
from typing import List, Optional, Sequence, Union

from scorecard.models.bucket import BUCKET_ORDER, CONFIDENCE_WEIGHTS, DEFAULT_BUCKETS, BucketDefinition
from scorecard.models.judgment import (
    ConsensusResult,
    FailedResult,
    Judgment,
    OracleFailure,
    RejectedResult,
    Rejection,
)

logger = logging.getLogger(__name__)

EnsembleOutcome = Union[ConsensusResult, RejectedResult, FailedResult]
VoteOutcome = Union[Judgment, Rejection, OracleFailure]

TIGHT_AGREEMENT_SPREAD = 5


def _choose_bucket(judgments: Sequence[Judgment], buckets: BucketDefinition) -> str:
    """
    Pick the winning bucket.

    Most votes wins; ties go to the higher combined confidence weight, then
    to the bucket nearest the midpoint of all raw scores. Only set-level
    properties of the judgments are used, so input order never matters.
    """
    votes = Counter(j.bucket for j in judgments)
    weights = Counter()
    for judgment in judgments:
        weights[judgment.bucket] += CONFIDENCE_WEIGHTS[judgment.confidence]

    scores = [j.score for j in judgments]
    raw_midpoint = (min(scores) + max(scores)) / 2

    def interval_distance(bucket: str) -> float:
        low, high = buckets.interval(bucket)
        if low <= raw_midpoint <= high:
            return 0.0
        return min(abs(raw_midpoint - low), abs(raw_midpoint - high))

    def rank(bucket: str):
        return (
            -votes[bucket],
            -weights[bucket],
            interval_distance(bucket),
            abs(buckets.midpoint(bucket) - raw_midpoint),
            BUCKET_ORDER.index(bucket),
        )

    return min(votes, key=rank)


def build_consensus(
    outcomes: Sequence[VoteOutcome],
    buckets: BucketDefinition = DEFAULT_BUCKETS
) -> EnsembleOutcome:
    """
    Merge per-oracle outcomes into one ensemble outcome.

    Rules:
    - Two or more rejections (or rejections and nothing else) -> Rejected,
      carrying the first rejection's reason
    - No Judgments and no rejections -> Failed
    - Otherwise the majority bucket wins and the score is the rounded mean of
      that bucket's voters, clamped into the bucket's interval

    Args:
        outcomes: One entry per oracle, in oracle order
        buckets: Bucket table for clamping and tie-breaking

    Returns:
        ConsensusResult, RejectedResult, or FailedResult
    """
    judgments = [o for o in outcomes if isinstance(o, Judgment)]
    rejections = [o for o in outcomes if isinstance(o, Rejection)]
    failures = [o for o in outcomes if isinstance(o, OracleFailure)]

    if len(rejections) >= 2 or (rejections and not judgments):
        primary = rejections[0]
        return RejectedResult(
            reason=primary.reason,
            rationale="; ".join(f"{r.oracle}: {r.rationale}" for r in rejections),
            rejections=tuple(rejections),
        )

    if not judgments:
        return FailedResult(failures=tuple(failures))

    winner = _choose_bucket(judgments, buckets)
    voters = [j for j in judgments if j.bucket == winner]
    mean_score = sum(j.score for j in voters) / len(voters)
    score = buckets.clamp(mean_score, winner)

    votes = Counter(j.bucket for j in judgments)
    total = len(judgments)
    all_scores = [j.score for j in judgments]
    spread = max(all_scores) - min(all_scores)

    if total == 1:
        agreement = "single"
    elif votes[winner] == total:
        agreement = "unanimous"
    elif votes[winner] > total / 2:
        agreement = "majority"
    else:
        agreement = "plurality"

    if agreement == "unanimous":
        confidence = "high" if spread <= TIGHT_AGREEMENT_SPREAD else "medium"
    elif agreement == "majority":
        confidence = "medium"
    else:
        confidence = "low"

    review_reason = None
    outliers = [j for j in judgments if buckets.distance(j.bucket, winner) > 1]
    if outliers:
        names = ", ".join(sorted(f"{j.oracle or 'oracle'}={j.bucket}" for j in outliers))
        review_reason = f"Outlier two or more buckets from {winner}: {names}"
    elif agreement == "plurality":
        review_reason = f"{len(votes)}-way bucket disagreement"
    elif agreement == "single":
        review_reason = "Single judgment"

    return ConsensusResult(
        bucket=winner,
        score=score,
        votes={b: votes[b] for b in BUCKET_ORDER if votes[b]},
        judgments=tuple(sorted(judgments, key=lambda j: (j.oracle, j.bucket, j.score, j.confidence))),
        agreement=agreement,
        confidence=confidence,
        spread=spread,
        missing_votes=len(rejections) + len(failures),
        needs_review=review_reason is not None,
        review_reason=review_reason,
    )


class EnsembleConsensusScorer:
    """
    Runs every oracle on the same text in parallel and merges the results.

    A timed-out or failing oracle counts as a missing vote; the merge goes
    ahead with whatever completed.
    """

    def __init__(
        self,
        oracles: List,
        buckets: BucketDefinition = DEFAULT_BUCKETS,
        timeout_seconds: Optional[float] = 45
    ):
        """
        Initialize ensemble scorer.

        Args:
            oracles: Objects exposing `async judge(text, context)`
            buckets: Shared bucket table
            timeout_seconds: Per-oracle time limit (None disables it)
        """
        self.oracles = list(oracles)
        self.buckets = buckets
        self.timeout_seconds = timeout_seconds

        logger.info(
            f"Initialized EnsembleConsensusScorer with {len(self.oracles)} oracles, "
            f"timeout={timeout_seconds}s"
        )

    async def score(self, review_text: Optional[str], context: str = "") -> EnsembleOutcome:
        """
        Score one review text with every oracle.

        Args:
            review_text: Full text or excerpt
            context: Optional framing passed to each oracle

        Returns:
            ConsensusResult, RejectedResult, or FailedResult
        """
        if not review_text or not review_text.strip():
            logger.debug("Empty review text, nothing to score")
            return FailedResult(failures=(OracleFailure(oracle="ensemble", error="empty review text"),))

        if not self.oracles:
            return FailedResult()

        outcomes = await asyncio.gather(
            *(self._invoke(oracle, review_text, context) for oracle in self.oracles)
        )

        result = build_consensus(outcomes, self.buckets)

        if isinstance(result, ConsensusResult):
            logger.debug(
                f"Consensus {result.bucket} ({result.score}), {result.agreement}, "
                f"{result.missing_votes} missing votes"
            )
        elif isinstance(result, RejectedResult):
            logger.info(f"Ensemble rejected text: {result.reason}")
        else:
            logger.warning(f"All oracles failed: {result.summary}")

        return result

    async def _invoke(self, oracle, text: str, context: str) -> VoteOutcome:
        name = getattr(oracle, "name", type(oracle).__name__)
        try:
            if self.timeout_seconds is None:
                return await oracle.judge(text, context)
            return await asyncio.wait_for(oracle.judge(text, context), timeout=self.timeout_seconds)

        except asyncio.TimeoutError:
            logger.warning(f"Oracle {name} timed out after {self.timeout_seconds}s")
            return OracleFailure(oracle=name, error="timeout")

        except Exception as e:
            logger.warning(f"Oracle {name} failed: {e}")
            return OracleFailure(oracle=name, error=str(e))
