"""
Judgment data models.

One oracle's answer (Judgment or Rejection), the failure placeholder used
when an oracle cannot answer, the merged ensemble outcomes, and the
immutable adjudication attempt record.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from scorecard.models.bucket import BUCKET_ORDER, CONFIDENCE_LEVELS

SIDED_WITH_VALUES = ("thumbs", "rating", "analysis")


@dataclass(frozen=True)
class Judgment:
    """
    A single oracle's opinion of one review text.
    Created fresh per invocation and never mutated.
    """
    bucket: str  # One of BUCKET_ORDER
    score: int  # 0-100, inside the bucket's interval
    confidence: str  # "high", "medium", or "low"
    rationale: str = ""  # Advisory only
    oracle: str = ""  # Name of the oracle that produced it
    sided_with: Optional[str] = None  # Only set by adjudication answers

    def __post_init__(self):
        if self.bucket not in BUCKET_ORDER:
            raise ValueError(f"Invalid bucket: {self.bucket}. Must be one of {BUCKET_ORDER}")

        if self.confidence not in CONFIDENCE_LEVELS:
            raise ValueError(
                f"Invalid confidence: {self.confidence}. Must be 'high', 'medium', or 'low'"
            )

        if not (0 <= self.score <= 100):
            raise ValueError(f"Invalid score: {self.score}. Must be 0-100")

        if self.sided_with is not None and self.sided_with not in SIDED_WITH_VALUES:
            raise ValueError(f"Invalid sided_with: {self.sided_with}")


@dataclass(frozen=True)
class Rejection:
    """An oracle declaring the text unscoreable (wrong show, not a review, ...)."""
    reason: str
    rationale: str = ""
    oracle: str = ""


@dataclass(frozen=True)
class OracleFailure:
    """Transport error, timeout, or malformed answer from one oracle."""
    oracle: str
    error: str


@dataclass(frozen=True)
class ConsensusResult:
    """
    Merged ensemble judgment: majority bucket plus the rounded mean score of
    the Judgments that voted for it.
    """
    bucket: str
    score: int
    votes: Dict[str, int]
    judgments: Tuple[Judgment, ...]
    agreement: str  # "unanimous", "majority", "plurality", or "single"
    confidence: str
    spread: int  # max - min over all Judgment scores
    missing_votes: int = 0  # Failed or rejected oracles
    needs_review: bool = False
    review_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "bucket": self.bucket,
            "score": self.score,
            "votes": dict(self.votes),
            "agreement": self.agreement,
            "confidence": self.confidence,
            "spread": self.spread,
            "missing_votes": self.missing_votes,
            "needs_review": self.needs_review,
            "review_reason": self.review_reason,
            "judgments": [
                {
                    "oracle": j.oracle,
                    "bucket": j.bucket,
                    "score": j.score,
                    "confidence": j.confidence,
                }
                for j in self.judgments
            ],
        }


@dataclass(frozen=True)
class RejectedResult:
    """At least two oracles (or every responding oracle) rejected the text."""
    reason: str
    rationale: str
    rejections: Tuple[Rejection, ...]


@dataclass(frozen=True)
class FailedResult:
    """No oracle produced a Judgment or a Rejection."""
    failures: Tuple[OracleFailure, ...] = field(default_factory=tuple)

    @property
    def summary(self) -> str:
        if not self.failures:
            return "No oracles available"
        return "; ".join(f"{f.oracle}: {f.error}" for f in self.failures)


@dataclass(frozen=True)
class AdjudicationAttempt:
    """
    Immutable record of one re-adjudication call.
    Appended to Review.adjudication_history, never edited or removed.
    """
    timestamp: str  # ISO-8601 UTC
    bucket: str
    score: int
    confidence: str
    sided_with: Optional[str] = None  # "thumbs", "rating", or "analysis"
    rationale: str = ""

    def __post_init__(self):
        if self.bucket not in BUCKET_ORDER:
            raise ValueError(f"Invalid bucket: {self.bucket}")
        if self.confidence not in CONFIDENCE_LEVELS:
            raise ValueError(f"Invalid confidence: {self.confidence}")

    @classmethod
    def from_dict(cls, data: dict) -> "AdjudicationAttempt":
        return cls(
            timestamp=data["timestamp"],
            bucket=data["bucket"],
            score=data["score"],
            confidence=data["confidence"],
            sided_with=data.get("sided_with"),
            rationale=data.get("rationale") or "",
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "bucket": self.bucket,
            "score": self.score,
            "confidence": self.confidence,
            "sided_with": self.sided_with,
            "rationale": self.rationale,
        }
