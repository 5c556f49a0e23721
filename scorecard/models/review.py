"""
Review data model.

One critic's assessment of one production at one outlet, as persisted in the
review registry.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from scorecard.models.bucket import BUCKET_ORDER, BucketDefinition, canonical_thumb
from scorecard.models.judgment import AdjudicationAttempt, ConsensusResult

SCORING_STATUSES = ("pending", "scored", "rejected", "unscored")

UNFLAGGED = "unflagged"
QUEUED = "queued"
RESOLVED_CONFIDENT = "resolved_confident"
AUTO_ACCEPTED = "auto_accepted"
ADJUDICATION_STATES = (UNFLAGGED, QUEUED, RESOLVED_CONFIDENT, AUTO_ACCEPTED)
TERMINAL_STATES = (RESOLVED_CONFIDENT, AUTO_ACCEPTED)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _check_pair(score: Optional[int], bucket: Optional[str], label: str) -> None:
    if (score is None) != (bucket is None):
        raise ValueError(f"{label} score and bucket must both be set or both be empty")
    if bucket is not None and bucket not in BUCKET_ORDER:
        raise ValueError(f"Invalid {label} bucket: {bucket}")
    if score is not None and not (0 <= score <= 100):
        raise ValueError(f"Invalid {label} score: {score}. Must be 0-100")


@dataclass
class Review:
    """
    A critic review and everything the pipeline knows about it.

    Optional fields left as None mean "unknown", never zero. The automated
    score/bucket pair and the resolution score/bucket pair are each written
    together through the setter methods below.
    """
    review_id: str  # "<show>/<outlet>--<critic>"
    show_id: str
    outlet_id: str
    critic_name: Optional[str] = None
    original_rating: Optional[str] = None  # "4/5", "B+", "3 stars", ...
    thumbs: Dict[str, str] = field(default_factory=dict)  # aggregator -> Up/Flat/Down
    text: Optional[str] = None
    excerpts: Dict[str, str] = field(default_factory=dict)  # aggregator -> excerpt text
    score: Optional[int] = None  # Automated (consensus) score
    bucket: Optional[str] = None
    scoring_status: str = "pending"
    rejection_reason: Optional[str] = None
    consensus: Optional[dict] = None
    adjudication_state: str = UNFLAGGED
    adjudication_attempts: int = 0
    adjudication_history: List[AdjudicationAttempt] = field(default_factory=list)
    resolution_score: Optional[int] = None  # Authoritative value after adjudication
    resolution_bucket: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.original_rating is not None:
            self.original_rating = str(self.original_rating).strip() or None

        # Normalize thumb spellings; unknown values are a data error
        thumbs = {}
        for aggregator, value in (self.thumbs or {}).items():
            if value is None or value == "":
                continue
            thumb = canonical_thumb(value)
            if thumb is None:
                raise ValueError(f"Invalid thumb for {aggregator}: {value}. Must be Up, Meh/Flat, or Down")
            thumbs[aggregator] = thumb
        self.thumbs = thumbs

        _check_pair(self.score, self.bucket, "automated")
        _check_pair(self.resolution_score, self.resolution_bucket, "resolution")

        if self.scoring_status not in SCORING_STATUSES:
            raise ValueError(f"Invalid scoring_status: {self.scoring_status}")

        if self.adjudication_state not in ADJUDICATION_STATES:
            raise ValueError(f"Invalid adjudication_state: {self.adjudication_state}")

        if self.adjudication_attempts < 0:
            raise ValueError("adjudication_attempts must be >= 0")

    @property
    def dedupe_key(self) -> str:
        """Case-insensitive (outlet, critic, show) grouping key."""
        return f"{self.outlet_id}--{self.critic_name}--{self.show_id}".lower()

    @property
    def is_resolved(self) -> bool:
        return self.adjudication_state in TERMINAL_STATES

    @property
    def final_score(self) -> Optional[int]:
        """Resolution score when adjudicated, otherwise the automated score."""
        if self.resolution_score is not None:
            return self.resolution_score
        return self.score

    @property
    def review_text(self) -> Optional[str]:
        """Full text when available, otherwise the joined aggregator excerpts."""
        if self.text and self.text.strip():
            return self.text
        excerpts = [e for e in self.excerpts.values() if e and e.strip()]
        return "\n\n".join(excerpts) if excerpts else None

    def validate(self, buckets: BucketDefinition) -> None:
        """Check that every stored score lies inside its bucket's interval."""
        if self.score is not None and not buckets.contains(self.bucket, self.score):
            raise ValueError(
                f"{self.review_id}: score {self.score} is outside bucket {self.bucket}"
            )
        if self.resolution_score is not None and not buckets.contains(
            self.resolution_bucket, self.resolution_score
        ):
            raise ValueError(
                f"{self.review_id}: resolution score {self.resolution_score} "
                f"is outside bucket {self.resolution_bucket}"
            )

    def set_score(self, score: int, bucket: str, buckets: BucketDefinition) -> None:
        """Write the automated score and bucket together."""
        if not buckets.contains(bucket, score):
            raise ValueError(f"Score {score} is outside bucket {bucket}")
        self.score = score
        self.bucket = buckets.canonical_name(bucket)

    def apply_consensus(self, result: ConsensusResult, buckets: BucketDefinition) -> None:
        self.set_score(result.score, result.bucket, buckets)
        self.scoring_status = "scored"
        self.rejection_reason = None
        self.consensus = result.to_dict()

    def mark_rejected(self, reason: str) -> None:
        self.score = None
        self.bucket = None
        self.scoring_status = "rejected"
        self.rejection_reason = reason
        self.consensus = None

    def mark_unscored(self) -> None:
        self.score = None
        self.bucket = None
        self.scoring_status = "unscored"
        self.consensus = None

    def set_resolution(
        self,
        score: Optional[int],
        bucket: Optional[str],
        state: str,
        note: str,
        buckets: BucketDefinition,
    ) -> None:
        """Write the authoritative resolution (both values or neither) and a terminal state."""
        if state not in TERMINAL_STATES:
            raise ValueError(f"Resolution state must be terminal, got {state}")
        _check_pair(score, bucket, "resolution")
        if score is not None and not buckets.contains(bucket, score):
            raise ValueError(f"Resolution score {score} is outside bucket {bucket}")
        self.resolution_score = score
        self.resolution_bucket = buckets.canonical_name(bucket) if bucket else None
        self.adjudication_state = state
        self.resolution_note = note
        self.resolved_at = utc_now()

    def record_attempt(self, attempt: AdjudicationAttempt) -> None:
        """Append an attempt; the counter moves exactly once per attempt."""
        self.adjudication_history.append(attempt)
        self.adjudication_attempts += 1

    @classmethod
    def from_dict(cls, data: dict) -> "Review":
        """Create Review from JSON dict. Missing optional fields stay unknown."""
        return cls(
            review_id=data["review_id"],
            show_id=data["show_id"],
            outlet_id=data["outlet_id"],
            critic_name=data.get("critic_name"),
            original_rating=data.get("original_rating"),
            thumbs=data.get("thumbs") or {},
            text=data.get("text"),
            excerpts=data.get("excerpts") or {},
            score=data.get("score"),
            bucket=data.get("bucket"),
            scoring_status=data.get("scoring_status") or "pending",
            rejection_reason=data.get("rejection_reason"),
            consensus=data.get("consensus"),
            adjudication_state=data.get("adjudication_state") or UNFLAGGED,
            adjudication_attempts=data.get("adjudication_attempts") or 0,
            adjudication_history=[
                AdjudicationAttempt.from_dict(a)
                for a in data.get("adjudication_history") or []
            ],
            resolution_score=data.get("resolution_score"),
            resolution_bucket=data.get("resolution_bucket"),
            resolution_note=data.get("resolution_note"),
            resolved_at=data.get("resolved_at"),
            metadata=data.get("metadata") or {},
        )

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "review_id": self.review_id,
            "show_id": self.show_id,
            "outlet_id": self.outlet_id,
            "critic_name": self.critic_name,
            "original_rating": self.original_rating,
            "thumbs": dict(self.thumbs),
            "text": self.text,
            "excerpts": dict(self.excerpts),
            "score": self.score,
            "bucket": self.bucket,
            "scoring_status": self.scoring_status,
            "rejection_reason": self.rejection_reason,
            "consensus": self.consensus,
            "adjudication_state": self.adjudication_state,
            "adjudication_attempts": self.adjudication_attempts,
            "adjudication_history": [a.to_dict() for a in self.adjudication_history],
            "resolution_score": self.resolution_score,
            "resolution_bucket": self.resolution_bucket,
            "resolution_note": self.resolution_note,
            "resolved_at": self.resolved_at,
            "metadata": self.metadata,
        }
