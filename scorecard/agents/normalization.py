"""
Score Normalizer.

Converts every supported rating representation (stars, letter grades,
aggregator thumbs, sentiment words) into a canonical 0-100 score and bucket.
Pure functions only; no I/O.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from scorecard.models.bucket import DEFAULT_BUCKETS, BucketDefinition, round_half_up

logger = logging.getLogger(__name__)


LETTER_GRADES = {
    "A+": 98, "A": 95, "A-": 92,
    "B+": 88, "B": 85, "B-": 82,
    "C+": 78, "C": 75, "C-": 72,
    "D+": 68, "D": 65, "D-": 62,
    "F": 50,
}

# Coarse fallback ground truth when no explicit rating exists
THUMB_SCORES = {
    "up": 78,
    "thumbs up": 78,
    "meh": 55,
    "flat": 55,
    "sideways": 55,
    "down": 35,
    "thumbs down": 35,
}

SENTIMENT_SCORES = {
    "rave": 90,
    "positive": 75,
    "mixed": 60,
    "negative": 40,
    "pan": 25,
}

# Bumps and badges, not base ratings
DESIGNATION_PATTERNS = [
    re.compile(r"^recommended$", re.I),
    re.compile(r"^critics?'?[\s_-]?picks?$", re.I),
    re.compile(r"^must[\s_-]?see$", re.I),
    re.compile(r"^editor'?s?[\s_-]?choice$", re.I),
    re.compile(r"^highly[\s_-]?recommended$", re.I),
    re.compile(r"^essential$", re.I),
    re.compile(r"^critics?'?[\s_-]?choice$", re.I),
]

STAR_DENOMINATOR_POLICIES = ("infer", "five")

_FRACTION = re.compile(
    r"^(\d+(?:\.\d+)?)\s*(?:/|out\s+of|of)\s*(\d+(?:\.\d+)?)\s*(?:stars?)?$", re.I
)
_STARS_ONLY = re.compile(r"^(\d+(?:\.\d+)?)\s*stars?$", re.I)
_BARE_NUMBER = re.compile(r"^(\d+(?:\.\d+)?)$")
_UNICODE_STARS = re.compile(r"^([★⭐]+)(½?)(☆*)$")
_LETTER = re.compile(r"^([A-DF])\s*(\+|-|PLUS|MINUS)?$", re.I)
_GRADE_PREFIX = re.compile(r"^GRADE\s*:?\s*([A-DF][+-]?)$", re.I)
_LETTER_RANGE = re.compile(r"^([A-DF][+-]?)\s*(?:/|to)\s*([A-DF][+-]?)$", re.I)
_SENTIMENT = re.compile(r"^(?:sentiment:\s*)?(rave|positive|mixed|negative|pan)$", re.I)


@dataclass(frozen=True)
class NormalizedScore:
    score: int  # 0-100
    bucket: str
    kind: str  # "stars", "letter", "letter_range", "thumb", "sentiment", "numeric"
    parsed: str  # Canonical form of what was understood, e.g. "3.5/4" or "B+"


class ScoreNormalizer:
    """
    Maps raw rating strings onto the shared bucket table.

    The denominator used for star ratings without one ("3 stars") is a
    configured policy, not an inference about the critic's intent.
    """

    def __init__(
        self,
        buckets: BucketDefinition = DEFAULT_BUCKETS,
        star_denominator_policy: str = "infer"
    ):
        """
        Initialize normalizer.

        Args:
            buckets: Bucket table used to classify normalized scores
            star_denominator_policy: "infer" (4 for whole values 1-4, else 5)
                or "five" (always 5)
        """
        if star_denominator_policy not in STAR_DENOMINATOR_POLICIES:
            raise ValueError(
                f"Invalid star_denominator_policy: {star_denominator_policy}. "
                f"Must be one of {STAR_DENOMINATOR_POLICIES}"
            )
        self.buckets = buckets
        self.star_denominator_policy = star_denominator_policy

    def normalize(self, raw_rating: Union[str, int, float, None]) -> Optional[NormalizedScore]:
        """
        Convert a raw rating into a score and bucket.

        Returns None when the rating is missing, a designation, or cannot be
        parsed. Callers must treat None as "no ground truth", never as 0.
        """
        if raw_rating is None:
            return None

        rating = str(raw_rating).strip()
        if not rating:
            return None

        if self.is_designation(rating):
            logger.debug(f"Designation-only rating ignored: '{rating}'")
            return None

        result = (
            self._parse_stars(rating)
            or self._parse_letter(rating)
            or self._parse_thumb(rating)
            or self._parse_sentiment(rating)
        )

        if result is None:
            logger.debug(f"Unparseable rating: '{rating}'")
        return result

    def normalize_thumb(self, thumb: Optional[str]) -> Optional[NormalizedScore]:
        if thumb is None:
            return None
        return self._parse_thumb(str(thumb).strip())

    def classify(self, raw_rating: Union[str, int, float, None]) -> str:
        """
        Describe what kind of rating this is without scoring it.

        Returns "missing", "designation", "unparseable", or the parsed kind.
        """
        if raw_rating is None or not str(raw_rating).strip():
            return "missing"
        if self.is_designation(str(raw_rating).strip()):
            return "designation"
        result = self.normalize(raw_rating)
        return result.kind if result else "unparseable"

    def star_score(self, value: float, denominator: float) -> Optional[int]:
        """round(value / denominator * 100), value clamped into [0, denominator]."""
        if denominator <= 0:
            return None
        value = min(max(value, 0.0), denominator)
        return round_half_up(value / denominator * 100)

    def infer_denominator(self, value: float) -> int:
        if self.star_denominator_policy == "infer" and value == int(value) and 1 <= value <= 4:
            return 4
        return 5

    @staticmethod
    def is_designation(rating: str) -> bool:
        return any(p.match(rating) for p in DESIGNATION_PATTERNS)

    def _build(self, score: int, kind: str, parsed: str) -> NormalizedScore:
        score = min(100, max(0, score))
        return NormalizedScore(
            score=score,
            bucket=self.buckets.bucket_for(score),
            kind=kind,
            parsed=parsed,
        )

    def _parse_stars(self, rating: str) -> Optional[NormalizedScore]:
        match = _FRACTION.match(rating)
        if match:
            value = float(match.group(1))
            denominator = float(match.group(2))
            score = self.star_score(value, denominator)
            if score is None:
                return None
            return self._build(score, "stars", f"{_fmt(value)}/{_fmt(denominator)}")

        match = _STARS_ONLY.match(rating)
        if match:
            return self._undenominated(float(match.group(1)))

        match = _UNICODE_STARS.match(rating.replace(" ", ""))
        if match:
            filled = len(match.group(1)) + (0.5 if match.group(2) else 0)
            total = len(match.group(1)) + len(match.group(3)) + (1 if match.group(2) else 0)
            denominator = max(5, total) if not match.group(3) else total
            score = self.star_score(filled, denominator)
            return self._build(score, "stars", f"{_fmt(filled)}/{denominator}")

        match = _BARE_NUMBER.match(rating)
        if match:
            value = float(match.group(1))
            if value <= 5:
                return self._undenominated(value)
            if value <= 100:
                return self._build(round_half_up(value), "numeric", _fmt(value))
            logger.debug(f"Numeric rating out of range: {value}")
            return None

        return None

    def _undenominated(self, value: float) -> NormalizedScore:
        denominator = self.infer_denominator(value)
        score = self.star_score(value, denominator)
        return self._build(score, "stars", f"{_fmt(value)}/{denominator}")

    def _parse_letter(self, rating: str) -> Optional[NormalizedScore]:
        match = _LETTER_RANGE.match(rating)
        if match:
            first = match.group(1).upper()
            second = match.group(2).upper()
            if first in LETTER_GRADES and second in LETTER_GRADES:
                average = (LETTER_GRADES[first] + LETTER_GRADES[second]) / 2
                return self._build(round_half_up(average), "letter_range", f"{first}/{second}")
            return None

        grade = _letter_grade(rating)
        if grade is None:
            return None
        return self._build(LETTER_GRADES[grade], "letter", grade)

    def _parse_thumb(self, rating: str) -> Optional[NormalizedScore]:
        key = rating.lower()
        if key not in THUMB_SCORES:
            return None
        return self._build(THUMB_SCORES[key], "thumb", key)

    def _parse_sentiment(self, rating: str) -> Optional[NormalizedScore]:
        match = _SENTIMENT.match(rating)
        if not match:
            return None
        sentiment = match.group(1).lower()
        return self._build(SENTIMENT_SCORES[sentiment], "sentiment", sentiment)


def _letter_grade(rating: str) -> Optional[str]:
    """Canonical letter grade ("B+") for "B+", "b plus", "Grade: B+"; None otherwise."""
    match = _GRADE_PREFIX.match(rating)
    if match:
        rating = match.group(1)

    match = _LETTER.match(rating.strip())
    if not match:
        return None

    letter = match.group(1).upper()
    modifier = (match.group(2) or "").upper()
    if modifier in ("+", "PLUS"):
        grade = f"{letter}+"
    elif modifier in ("-", "MINUS"):
        grade = f"{letter}-"
    else:
        grade = letter

    return grade if grade in LETTER_GRADES else None


def _fmt(value: float) -> str:
    return str(int(value)) if value == int(value) else str(value)


_default_normalizer = ScoreNormalizer()


def normalize(raw_rating: Union[str, int, float, None]) -> Optional[NormalizedScore]:
    """Normalize with the default bucket table and denominator policy."""
    return _default_normalizer.normalize(raw_rating)
