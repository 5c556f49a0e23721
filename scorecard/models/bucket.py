"""
Bucket data model.

Fixed five-way sentiment classification on the 0-100 scale, shared by every
pipeline stage.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

RAVE = "Rave"
POSITIVE = "Positive"
MIXED = "Mixed"
NEGATIVE = "Negative"
PAN = "Pan"

# Ordered from most negative to most positive
BUCKET_ORDER = (PAN, NEGATIVE, MIXED, POSITIVE, RAVE)

CONFIDENCE_LEVELS = ("high", "medium", "low")
CONFIDENCE_WEIGHTS = {"low": 1, "medium": 2, "high": 3}

THUMB_UP = "Up"
THUMB_FLAT = "Flat"
THUMB_DOWN = "Down"

# Aggregators use "Meh" and "Flat" interchangeably
THUMB_ALIASES = {
    "up": THUMB_UP,
    "thumbs up": THUMB_UP,
    "meh": THUMB_FLAT,
    "flat": THUMB_FLAT,
    "sideways": THUMB_FLAT,
    "down": THUMB_DOWN,
    "thumbs down": THUMB_DOWN,
}

BUCKET_THUMBS = {
    RAVE: THUMB_UP,
    POSITIVE: THUMB_UP,
    MIXED: THUMB_FLAT,
    NEGATIVE: THUMB_DOWN,
    PAN: THUMB_DOWN,
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive scores."""
    return int(math.floor(value + 0.5))


def canonical_thumb(value: Optional[str]) -> Optional[str]:
    """Map an aggregator thumb spelling to Up/Flat/Down, or None if unknown."""
    if value is None:
        return None
    return THUMB_ALIASES.get(str(value).strip().lower())


def canonical_confidence(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    level = str(value).strip().lower()
    return level if level in CONFIDENCE_LEVELS else None


@dataclass(frozen=True)
class BucketDefinition:
    """
    Immutable mapping of bucket name to a closed score interval.

    One instance is built per run and handed to every stage, so the
    normalizer, ensemble, auditor and adjudicator agree on the boundaries.
    """
    version: str = "v5"
    ranges: Dict[str, Tuple[int, int]] = field(default_factory=lambda: {
        RAVE: (85, 100),
        POSITIVE: (70, 84),
        MIXED: (55, 69),
        NEGATIVE: (35, 54),
        PAN: (0, 34),
    })

    def __post_init__(self):
        if set(self.ranges) != set(BUCKET_ORDER):
            raise ValueError(
                f"Bucket table must define exactly {BUCKET_ORDER}, got {sorted(self.ranges)}"
            )

        # Intervals must tile 0-100 without gaps or overlaps
        expected_low = 0
        for bucket in BUCKET_ORDER:
            low, high = self.ranges[bucket]
            if low != expected_low or high < low:
                raise ValueError(f"Bucket table has a gap or overlap at {bucket}: ({low}, {high})")
            expected_low = high + 1
        if expected_low != 101:
            raise ValueError("Bucket table must end at 100")

    def canonical_name(self, bucket: Optional[str]) -> Optional[str]:
        """Case-insensitive bucket lookup. Returns None for unknown names."""
        if bucket is None:
            return None
        wanted = str(bucket).strip().lower()
        for name in BUCKET_ORDER:
            if name.lower() == wanted:
                return name
        return None

    def interval(self, bucket: str) -> Tuple[int, int]:
        name = self.canonical_name(bucket)
        if name is None:
            raise ValueError(f"Unknown bucket: {bucket}")
        return self.ranges[name]

    def contains(self, bucket: str, score: float) -> bool:
        low, high = self.interval(bucket)
        return low <= score <= high

    def bucket_for(self, score: float) -> str:
        """Return the bucket whose interval contains the (clamped) score."""
        clamped = min(100, max(0, round_half_up(score)))
        for bucket in BUCKET_ORDER:
            low, high = self.ranges[bucket]
            if low <= clamped <= high:
                return bucket
        raise ValueError(f"No bucket covers score {score}")

    def clamp(self, score: float, bucket: str) -> int:
        """Round the score and pull it into the bucket's interval."""
        low, high = self.interval(bucket)
        return max(low, min(high, round_half_up(score)))

    def midpoint(self, bucket: str) -> float:
        low, high = self.interval(bucket)
        return (low + high) / 2

    def distance(self, bucket_a: str, bucket_b: str) -> int:
        """Number of bucket steps between two buckets (0 = same, 1 = adjacent)."""
        return abs(
            BUCKET_ORDER.index(self.canonical_name(bucket_a))
            - BUCKET_ORDER.index(self.canonical_name(bucket_b))
        )

    def thumb_for(self, bucket: str) -> str:
        return BUCKET_THUMBS[self.canonical_name(bucket)]

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "ranges": {name: list(self.ranges[name]) for name in BUCKET_ORDER},
        }


DEFAULT_BUCKETS = BucketDefinition()
