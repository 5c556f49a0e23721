"""
Audit data models.

Corpus statistics snapshot and the per-review audit verdict.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

HIGH_DISAGREEMENT = "high-disagreement"
AGGREGATOR_CONFLICT = "aggregator-conflict"
THUMB_CONFLICT = "thumb-conflict"
UNSCORED = "unscored"
DUPLICATE = "duplicate"
CONVERSION_EDGE_CASE = "conversion-edge-case"
UNPARSEABLE_RATING = "unparseable-rating"

# Any one of these sends a review to Tier C
SERIOUS_FLAGS = frozenset({HIGH_DISAGREEMENT, AGGREGATOR_CONFLICT, THUMB_CONFLICT, UNSCORED})

TIER_A = "A"  # Skip manual review
TIER_B = "B"  # Spot-check sample
TIER_C = "C"  # Adjudication required


@dataclass(frozen=True)
class CorpusStats:
    """
    Snapshot of (consensus - ground truth) deviations across the corpus.
    Computed once per audit run and passed by value into every check.
    """
    mean: float = 0.0
    std_dev: float = 0.0  # Population standard deviation
    count: int = 0

    def threshold(self, sigma: float) -> float:
        return sigma * self.std_dev

    def is_outlier(self, diff: float, sigma: float) -> bool:
        if self.count == 0:
            return False
        return abs(diff - self.mean) > self.threshold(sigma)

    def to_dict(self) -> dict:
        return {"mean": self.mean, "std_dev": self.std_dev, "count": self.count}


@dataclass(frozen=True)
class AggregatorConflict:
    """Rating found in an aggregator excerpt that disagrees with the stored one."""
    source: str
    found_raw: str
    found_score: int
    stored_score: int

    @property
    def diff(self) -> int:
        return self.found_score - self.stored_score

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "found_raw": self.found_raw,
            "found_score": self.found_score,
            "stored_score": self.stored_score,
            "diff": self.diff,
        }


@dataclass
class AuditReport:
    """Outcome of auditing a whole corpus against one statistics snapshot."""
    stats: CorpusStats
    sigma: float
    results: List["AuditResult"] = field(default_factory=list)
    duplicates: Dict[str, List[str]] = field(default_factory=dict)  # dedupe key -> review ids
    outlet_bias: Dict[str, float] = field(default_factory=dict)  # outlet -> mean diff
    generated_at: str = ""

    def tier(self, tier: str) -> List["AuditResult"]:
        return [r for r in self.results if r.tier == tier]

    def flagged(self, flag: str) -> List["AuditResult"]:
        return [r for r in self.results if flag in r.flags]

    def to_dict(self) -> dict:
        return {
            "generated_at": self.generated_at,
            "stats": self.stats.to_dict(),
            "sigma": self.sigma,
            "threshold": self.stats.threshold(self.sigma),
            "tiers": {t: len(self.tier(t)) for t in (TIER_A, TIER_B, TIER_C)},
            "flags": {
                flag: len(self.flagged(flag))
                for flag in (
                    HIGH_DISAGREEMENT, AGGREGATOR_CONFLICT, THUMB_CONFLICT, UNSCORED,
                    DUPLICATE, CONVERSION_EDGE_CASE, UNPARSEABLE_RATING,
                )
            },
            "duplicates": self.duplicates,
            "outlet_bias": self.outlet_bias,
            "tier_c": [r.to_dict() for r in self.tier(TIER_C)],
        }


@dataclass(frozen=True)
class AuditResult:
    review_id: str
    flags: FrozenSet[str]
    tier: str
    ground_truth_score: Optional[int] = None
    automated_score: Optional[int] = None
    diff: Optional[int] = None  # automated - ground truth
    conflicts: List[AggregatorConflict] = field(default_factory=list)

    @property
    def needs_adjudication(self) -> bool:
        return self.tier == TIER_C

    @property
    def reason(self) -> str:
        return ", ".join(sorted(self.flags)) if self.flags else "none"

    def to_dict(self) -> dict:
        return {
            "review_id": self.review_id,
            "flags": sorted(self.flags),
            "tier": self.tier,
            "ground_truth_score": self.ground_truth_score,
            "automated_score": self.automated_score,
            "diff": self.diff,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }
