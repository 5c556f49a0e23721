"""
Disagreement Detector and Statistical Auditor.

Compares automated scores with ground-truth signals (explicit critic ratings,
agreeing aggregator thumbs, ratings quoted in aggregator excerpts), flags
outliers against corpus-wide statistics, and assigns confidence tiers.
"""

import json
import logging
import os
import re
from collections import Counter, defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional

import pandas as pd

from scorecard.agents.normalization import ScoreNormalizer
from scorecard.models.audit import (
    AGGREGATOR_CONFLICT,
    CONVERSION_EDGE_CASE,
    DUPLICATE,
    HIGH_DISAGREEMENT,
    SERIOUS_FLAGS,
    THUMB_CONFLICT,
    TIER_A,
    TIER_B,
    TIER_C,
    UNPARSEABLE_RATING,
    UNSCORED,
    AggregatorConflict,
    AuditReport,
    AuditResult,
    CorpusStats,
)
from scorecard.models.review import Review, utc_now
from scorecard.utils.extraction import extract_rating_from_text

logger = logging.getLogger(__name__)

# Ratings that sit on a grade or half-star boundary
_EDGE_CASE_RATING = re.compile(r"(?:^|[^A-Za-z])(?:A-|B\+|B-|C\+)(?:$|[^A-Za-z+-])|\d\.5")


class StatisticalAuditor:
    """
    Audits automated scores against ground truth.

    Flags:
    - high-disagreement: |diff - corpus mean| > sigma * corpus std dev
    - aggregator-conflict: an excerpt quotes a rating far from the stored one
    - thumb-conflict: aggregator thumbs agree with each other but not with
      the automated bucket
    - unscored: no automated score exists
    - duplicate, conversion-edge-case, unparseable-rating: minor
    """

    def __init__(
        self,
        normalizer: ScoreNormalizer,
        sigma: float = 2.0,
        conflict_tolerance: int = 10,
        tier_a_tolerance: int = 15,
        allow_excerpt_letter_grades: bool = False
    ):
        """
        Initialize auditor.

        Args:
            normalizer: Score normalizer (carries the shared bucket table)
            sigma: Outlier threshold in corpus standard deviations
            conflict_tolerance: Max points between an excerpt rating and the stored score
            tier_a_tolerance: Tier A requires |diff| below this
            allow_excerpt_letter_grades: Also look for strict letter grades in excerpts
        """
        self.normalizer = normalizer
        self.buckets = normalizer.buckets
        self.sigma = sigma
        self.conflict_tolerance = conflict_tolerance
        self.tier_a_tolerance = tier_a_tolerance
        self.allow_excerpt_letter_grades = allow_excerpt_letter_grades

        logger.info(
            f"Initialized StatisticalAuditor: sigma={sigma}, "
            f"conflict_tolerance={conflict_tolerance}, tier_a_tolerance={tier_a_tolerance}"
        )

    def ground_truth_score(self, review: Review) -> Optional[int]:
        """Normalized explicit critic rating, or None when there is none."""
        result = self.normalizer.normalize(review.original_rating)
        return result.score if result else None

    def thumb_truth_score(self, review: Review) -> Optional[int]:
        """Score of the aggregator thumbs when two or more exist and all agree."""
        if len(review.thumbs) < 2 or len(set(review.thumbs.values())) != 1:
            return None
        result = self.normalizer.normalize_thumb(next(iter(review.thumbs.values())))
        return result.score if result else None

    def compute_corpus_stats(self, reviews: Iterable[Review]) -> CorpusStats:
        """
        Snapshot mean and population std dev of (automated - ground truth).

        Only reviews carrying both signals contribute.
        """
        diffs = []
        for review in reviews:
            truth = self.ground_truth_score(review)
            if truth is not None and review.score is not None:
                diffs.append(review.score - truth)

        if not diffs:
            logger.info("No reviews with both an explicit rating and an automated score")
            return CorpusStats()

        series = pd.Series(diffs, dtype="float64")
        stats = CorpusStats(
            mean=float(series.mean()),
            std_dev=float(series.std(ddof=0)),
            count=int(series.size),
        )
        logger.info(
            f"Corpus stats: mean={stats.mean:.1f}, std_dev={stats.std_dev:.1f}, "
            f"n={stats.count}, threshold={stats.threshold(self.sigma):.1f}"
        )
        return stats

    @staticmethod
    def find_duplicates(reviews: Iterable[Review]) -> Dict[str, List[str]]:
        """Group review ids by (outlet, critic, show); keep groups with more than one record."""
        groups = defaultdict(list)
        for review in reviews:
            groups[review.dedupe_key].append(review.review_id)
        return {key: sorted(ids) for key, ids in groups.items() if len(ids) > 1}

    def check_aggregator_conflicts(
        self,
        review: Review,
        stored_score: Optional[int]
    ) -> List[AggregatorConflict]:
        """Ratings quoted in aggregator excerpts that disagree with the stored score."""
        if stored_score is None:
            return []

        conflicts = []
        for source in sorted(review.excerpts):
            found = extract_rating_from_text(
                review.excerpts[source],
                allow_letter_grades=self.allow_excerpt_letter_grades
            )
            if found is None:
                continue

            normalized = self.normalizer.normalize(found.raw)
            if normalized is None:
                continue

            if abs(normalized.score - stored_score) > self.conflict_tolerance:
                conflicts.append(AggregatorConflict(
                    source=source,
                    found_raw=found.raw,
                    found_score=normalized.score,
                    stored_score=stored_score,
                ))

        return conflicts

    def check_thumb_conflict(self, review: Review, automated_bucket: Optional[str]) -> bool:
        """True when two or more thumbs agree and contradict the automated bucket."""
        if automated_bucket is None or len(review.thumbs) < 2:
            return False
        counts = Counter(review.thumbs.values())
        if len(counts) != 1:
            return False
        thumb = next(iter(counts))
        return thumb != self.buckets.thumb_for(automated_bucket)

    def audit_review(
        self,
        review: Review,
        stats: CorpusStats,
        consensus_score: Optional[int] = None,
        duplicate_keys: FrozenSet[str] = frozenset()
    ) -> AuditResult:
        """
        Audit one review against a corpus statistics snapshot.

        Args:
            review: Review to audit
            stats: Snapshot computed once for the whole run
            consensus_score: Automated score to check (defaults to review.score)
            duplicate_keys: Dedupe keys known to have more than one record

        Returns:
            AuditResult with flags and tier
        """
        automated = consensus_score if consensus_score is not None else review.score
        automated_bucket = self.buckets.bucket_for(automated) if automated is not None else None
        truth = self.ground_truth_score(review)
        diff = automated - truth if (automated is not None and truth is not None) else None

        flags = set()

        if diff is not None and stats.is_outlier(diff, self.sigma):
            flags.add(HIGH_DISAGREEMENT)

        stored = truth if truth is not None else automated
        conflicts = self.check_aggregator_conflicts(review, stored)
        if conflicts:
            flags.add(AGGREGATOR_CONFLICT)

        if self.check_thumb_conflict(review, automated_bucket):
            flags.add(THUMB_CONFLICT)

        if automated is None and review.scoring_status != "rejected":
            flags.add(UNSCORED)

        if review.dedupe_key in duplicate_keys:
            flags.add(DUPLICATE)

        if review.original_rating:
            kind = self.normalizer.classify(review.original_rating)
            if kind == "unparseable":
                flags.add(UNPARSEABLE_RATING)
            elif _EDGE_CASE_RATING.search(review.original_rating):
                flags.add(CONVERSION_EDGE_CASE)

        # Agreeing thumbs stand in for a missing explicit rating, for tiering only
        tier_diff = diff
        if tier_diff is None and automated is not None:
            thumb_truth = self.thumb_truth_score(review)
            if thumb_truth is not None:
                tier_diff = automated - thumb_truth

        tier = self._assign_tier(flags, tier_diff)

        return AuditResult(
            review_id=review.review_id,
            flags=frozenset(flags),
            tier=tier,
            ground_truth_score=truth,
            automated_score=automated,
            diff=diff,
            conflicts=conflicts,
        )

    def _assign_tier(self, flags: set, diff: Optional[int]) -> str:
        if not flags and diff is not None and abs(diff) < self.tier_a_tolerance:
            return TIER_A
        if len(flags) <= 1 and not (flags & SERIOUS_FLAGS):
            return TIER_B
        return TIER_C

    def audit_corpus(self, reviews: List[Review]) -> AuditReport:
        """
        Audit every review against one statistics snapshot.

        The snapshot is taken before any review is checked, so every review in
        the run sees the same threshold.
        """
        stats = self.compute_corpus_stats(reviews)
        duplicates = self.find_duplicates(reviews)
        duplicate_keys = frozenset(duplicates)

        if duplicates:
            logger.warning(f"Found {len(duplicates)} duplicate review groups")

        results = [
            self.audit_review(review, stats, duplicate_keys=duplicate_keys)
            for review in reviews
        ]

        report = AuditReport(
            stats=stats,
            sigma=self.sigma,
            results=results,
            duplicates=duplicates,
            outlet_bias=self._outlet_bias(reviews, results),
            generated_at=utc_now(),
        )

        logger.info(
            f"Audited {len(results)} reviews: "
            f"A={len(report.tier(TIER_A))}, B={len(report.tier(TIER_B))}, C={len(report.tier(TIER_C))}"
        )
        return report

    @staticmethod
    def _outlet_bias(reviews: List[Review], results: List[AuditResult]) -> Dict[str, float]:
        """Mean (automated - ground truth) per outlet."""
        rows = [
            {"outlet": review.outlet_id, "diff": result.diff}
            for review, result in zip(reviews, results)
            if result.diff is not None
        ]
        if not rows:
            return {}
        df = pd.DataFrame(rows)
        bias = df.groupby("outlet")["diff"].mean().round(1)
        return {outlet: float(value) for outlet, value in bias.items()}

    @staticmethod
    def build_queue(report: AuditReport, reviews: List[Review]) -> List[dict]:
        """
        Snapshot of Tier C reviews that still need adjudication.

        Already-resolved reviews are left out even when they audit as Tier C.
        """
        by_id = {r.review_id: r for r in reviews}
        queue = []
        for result in report.tier(TIER_C):
            review = by_id.get(result.review_id)
            if review is None or review.is_resolved:
                continue
            queue.append({
                "review_id": review.review_id,
                "show_id": review.show_id,
                "outlet_id": review.outlet_id,
                "critic_name": review.critic_name,
                "automated_score": result.automated_score,
                "automated_bucket": review.bucket,
                "ground_truth_score": result.ground_truth_score,
                "original_rating": review.original_rating,
                "thumbs": dict(review.thumbs),
                "flags": sorted(result.flags),
                "reason": result.reason,
                "tier": result.tier,
            })
        return queue

    @staticmethod
    def write_report(report: AuditReport, reviews: List[Review], output_dir: str) -> str:
        """
        Save the per-review audit table (CSV) and summary (JSON).

        Returns:
            Path to the CSV file
        """
        by_id = {r.review_id: r for r in reviews}
        rows = []
        for result in report.results:
            review = by_id.get(result.review_id)
            rows.append({
                "review_id": result.review_id,
                "outlet": review.outlet_id if review else None,
                "critic": review.critic_name if review else None,
                "original_rating": review.original_rating if review else None,
                "ground_truth": result.ground_truth_score,
                "automated": result.automated_score,
                "diff": result.diff,
                "tier": result.tier,
                "flags": ";".join(sorted(result.flags)),
            })

        df = pd.DataFrame(rows, columns=[
            "review_id", "outlet", "critic", "original_rating",
            "ground_truth", "automated", "diff", "tier", "flags",
        ])
        if not df.empty:
            df = df.sort_values(["tier", "review_id"], ascending=[False, True])

        os.makedirs(output_dir, exist_ok=True)
        csv_path = os.path.join(output_dir, "audit_reviews.csv")
        df.to_csv(csv_path, index=False)

        summary_path = os.path.join(output_dir, "audit_summary.json")
        with open(summary_path, "w") as f:
            json.dump(report.to_dict(), f, indent=2)

        logger.info(f"Audit table saved to {csv_path} ({len(df)} reviews), summary to {summary_path}")
        return csv_path
