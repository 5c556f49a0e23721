"""
Adjudication Escalation State Machine.

Owns the lifecycle of a flagged review:

    unflagged -> queued -> resolved_confident
                        -> auto_accepted

A queued review is re-judged by a single oracle with explicit disagreement
context. High or medium confidence resolves it; low confidence records the
attempt and leaves it queued until the attempt ceiling forces it out.
"""

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from scorecard.models.bucket import DEFAULT_BUCKETS, BucketDefinition
from scorecard.models.judgment import AdjudicationAttempt, Judgment, Rejection
from scorecard.models.review import AUTO_ACCEPTED, QUEUED, RESOLVED_CONFIDENT, Review, utc_now

logger = logging.getLogger(__name__)

RESOLVED = "resolved"
RETRIED = "retried"
FORCED = "auto_accepted"
REJECTED = "rejected"
SKIPPED = "skipped"
MISSING = "missing"
ERROR = "errors"

ADJUDICATION_PROMPT = """You are a senior theater critic review adjudicator. An automated system scored this review, but its score conflicts with other signals (aggregator thumbs, the critic's explicit rating, or ratings quoted by aggregators). Read the review text and decide what the critic actually recommends.

Buckets:
- Rave (85-100): enthusiastic, must-see recommendation
- Positive (70-84): recommends seeing it, with or without reservations
- Mixed (55-69): neither recommends nor discourages
- Negative (35-54): does not recommend
- Pan (0-34): strongly negative

Rules:
- Score the FINAL RECOMMENDATION, not the opening setup
- Aggregator thumbs are curated by humans, but they can be wrong
- If the text is too short or ambiguous to overrule the other signals, say so with "low" confidence
- If the text is not a review of this production, return {"scoreable": false, "rejection": "wrong_production", "reasoning": "..."}

Output valid JSON only:
{"scoreable": true, "bucket": "Positive", "score": 76, "confidence": "high", "sidedWith": "thumbs", "reasoning": "2-3 sentences"}

"sidedWith" is one of "thumbs", "rating", or "analysis" (the automated score)."""


class AdjudicationStateMachine:
    """
    Re-adjudicates queued reviews with a bounded number of attempts.

    Attempts for the same review are serialized through a per-review lock, so
    the counter and history are never updated by two attempts at once.
    """

    def __init__(
        self,
        oracle,
        buckets: BucketDefinition = DEFAULT_BUCKETS,
        max_attempts: int = 3,
        text_limit: int = 3000
    ):
        """
        Initialize state machine.

        Args:
            oracle: Object exposing `async judge(text, context)`
            buckets: Shared bucket table
            max_attempts: Low-confidence attempts before forced resolution
            text_limit: Characters of review text sent to the oracle
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.oracle = oracle
        self.buckets = buckets
        self.max_attempts = max_attempts
        self.text_limit = text_limit
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._locks_loop = None

        logger.info(
            f"Initialized AdjudicationStateMachine: max_attempts={max_attempts}, "
            f"text_limit={text_limit}"
        )

    @staticmethod
    def enqueue(review: Review) -> bool:
        """
        Move a review into the queue.

        Returns:
            False if the review already carries a terminal resolution
        """
        if review.is_resolved:
            return False
        review.adjudication_state = QUEUED
        return True

    def build_context(self, review: Review, entry: Optional[dict] = None) -> str:
        """Disagreement context sent alongside the review text."""
        entry = entry or {}
        lines = [
            f"Show: {review.show_id}",
            f"Outlet: {review.outlet_id}",
            f"Critic: {review.critic_name or 'unknown'}",
        ]

        if review.score is not None:
            lines.append(f"Automated score: {review.score} ({review.bucket})")
        else:
            lines.append("Automated score: none (the review could not be scored)")

        if review.thumbs:
            thumbs = ", ".join(f"{source}={thumb}" for source, thumb in sorted(review.thumbs.items()))
            lines.append(f"Aggregator thumbs: {thumbs}")

        if review.original_rating:
            lines.append(f"Critic's explicit rating: {review.original_rating}")

        reason = entry.get("reason")
        if reason:
            lines.append(f"Flagged because: {reason}")

        if review.adjudication_history:
            lines.append(f"Previous adjudication attempts: {len(review.adjudication_history)}, all low confidence")

        excerpts = [
            f"- {source}: {text.strip()}"
            for source, text in sorted(review.excerpts.items())
            if text and text.strip()
        ]
        if excerpts:
            lines.append("Aggregator excerpts:")
            lines.extend(excerpts)

        return "\n".join(lines)

    def _review_lock(self, review_id: str) -> asyncio.Lock:
        # Locks from a previous event loop cannot be awaited in this one
        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            self._locks = defaultdict(asyncio.Lock)
            self._locks_loop = loop
        return self._locks[review_id]

    def _truncate(self, text: str) -> str:
        if len(text) <= self.text_limit:
            return text
        return text[:self.text_limit] + "..."

    async def adjudicate(self, review: Review, entry: Optional[dict] = None) -> str:
        """
        Run one transition for a review.

        Args:
            review: Review to adjudicate (mutated in place)
            entry: Queue entry carrying the flag reason

        Returns:
            One of "resolved", "retried", "auto_accepted", "rejected", "skipped", "errors"
        """
        async with self._review_lock(review.review_id):
            if review.is_resolved:
                logger.debug(f"{review.review_id} already resolved, skipping")
                return SKIPPED

            review.adjudication_state = QUEUED

            if review.adjudication_attempts >= self.max_attempts:
                self._force_resolve(review)
                return FORCED

            text = review.review_text
            if not text:
                # No attempt can ever be made without text
                logger.warning(f"{review.review_id} has no text or excerpts, forcing resolution")
                self._force_resolve(review)
                return FORCED

            try:
                outcome = await self.oracle.judge(self._truncate(text), self.build_context(review, entry))
            except Exception as e:
                logger.warning(f"Adjudication call failed for {review.review_id}: {e}")
                return ERROR

            if isinstance(outcome, Rejection):
                # The verdict is about the text itself and would repeat on every retry
                review.mark_rejected(outcome.reason)
                note = f"Rejected during adjudication: {outcome.reason}"
                if outcome.rationale:
                    note += f" ({outcome.rationale})"
                review.set_resolution(None, None, AUTO_ACCEPTED, note, self.buckets)
                logger.info(f"{review.review_id}: rejected during adjudication ({outcome.reason})")
                return REJECTED

            if not isinstance(outcome, Judgment):
                logger.warning(f"Unexpected oracle answer for {review.review_id}: {outcome!r}")
                return ERROR

            attempt = AdjudicationAttempt(
                timestamp=utc_now(),
                bucket=outcome.bucket,
                score=outcome.score,
                confidence=outcome.confidence,
                sided_with=outcome.sided_with,
                rationale=outcome.rationale,
            )
            review.record_attempt(attempt)

            if attempt.confidence in ("high", "medium"):
                review.set_resolution(
                    attempt.score,
                    attempt.bucket,
                    RESOLVED_CONFIDENT,
                    f"Adjudicated with {attempt.confidence} confidence"
                    + (f", sided with {attempt.sided_with}" if attempt.sided_with else ""),
                    self.buckets,
                )
                logger.info(
                    f"{review.review_id}: resolved {attempt.bucket} ({attempt.score}), "
                    f"{attempt.confidence} confidence"
                )
                return RESOLVED

            if review.adjudication_attempts >= self.max_attempts:
                self._force_resolve(review)
                return FORCED

            logger.info(
                f"{review.review_id}: low confidence, attempt "
                f"{review.adjudication_attempts}/{self.max_attempts}, stays queued"
            )
            return RETRIED

    def _force_resolve(self, review: Review) -> None:
        """Terminal transition that keeps the original automated score."""
        attempts = review.adjudication_attempts
        if review.score is not None:
            note = (
                f"Forced resolution after {attempts} low-confidence attempts; "
                f"kept original automated score {review.score}"
            )
            review.set_resolution(review.score, review.bucket, AUTO_ACCEPTED, note, self.buckets)
        else:
            note = (
                f"Forced resolution after {attempts} low-confidence attempts; "
                f"no automated score, review stays unscored"
            )
            review.set_resolution(None, None, AUTO_ACCEPTED, note, self.buckets)
        logger.info(f"{review.review_id}: auto-accepted ({note})")

    async def run(self, queue_entries: List[dict], registry, dry_run: bool = False) -> dict:
        """
        Process one queue snapshot.

        Each entry is re-checked against the registry before acting, since
        the snapshot may be stale.

        Args:
            queue_entries: Queue file entries (each with "review_id")
            registry: ReviewRegistry holding the current records
            dry_run: Work on copies and leave the registry untouched

        Returns:
            Summary counts keyed by outcome
        """
        summary = {RESOLVED: 0, RETRIED: 0, FORCED: 0, REJECTED: 0, SKIPPED: 0, MISSING: 0, ERROR: 0}

        for entry in queue_entries:
            review_id = entry.get("review_id")
            current = registry.get_review(review_id) if review_id else None
            if current is None:
                logger.warning(f"Queued review not found in registry: {review_id}")
                summary[MISSING] += 1
                continue

            review = copy.deepcopy(current) if dry_run else current
            result = await self.adjudicate(review, entry)
            summary[result] += 1

        logger.info(
            f"Adjudication {'dry run' if dry_run else 'run'} complete: "
            + ", ".join(f"{key}={value}" for key, value in summary.items())
        )
        return summary
