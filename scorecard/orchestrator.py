"""
Pipeline Orchestrator.

Coordinates the score -> audit -> adjudicate stages over the review registry.
"""

import asyncio
import copy
import logging
from typing import Dict, List, Optional, Tuple

from scorecard.agents.adjudication import ADJUDICATION_PROMPT, AdjudicationStateMachine
from scorecard.agents.audit import StatisticalAuditor
from scorecard.agents.ensemble import EnsembleConsensusScorer
from scorecard.agents.ingestion import IngestionAgent
from scorecard.agents.normalization import ScoreNormalizer
from scorecard.agents.oracle import GeminiOracle
from scorecard.models.bucket import BucketDefinition
from scorecard.models.judgment import ConsensusResult, RejectedResult
from scorecard.models.review import Review
from scorecard.registry.review_registry import ReviewRegistry
from scorecard.utils.storage import StorageManager
import config.settings as settings

logger = logging.getLogger(__name__)

STAGES = ("import", "score", "audit", "adjudicate", "all")


class PipelineOrchestrator:
    """
    Orchestrates the review scoring pipeline.

    Coordinates:
    1. Scoring (ensemble consensus for reviews without a score)
    2. Audit (statistics snapshot, flags, tiers, queue file)
    3. Adjudication (bounded re-judging of the queue)

    In dry-run mode every stage computes on copies and nothing is written.
    """

    def __init__(
        self,
        api_key: str,
        data_root: str,
        output_root: str,
        reviews_path: str,
        dry_run: bool = True,
        oracles: Optional[List] = None,
        adjudication_oracle=None
    ):
        """
        Initialize pipeline orchestrator.

        Args:
            api_key: Google API key for the oracles
            data_root: Root directory for data storage
            output_root: Directory for reports
            reviews_path: Path to review registry JSON
            dry_run: Compute everything but persist nothing
            oracles: Ensemble oracles (defaults to one GeminiOracle per ORACLE_MODELS entry)
            adjudication_oracle: Oracle used for re-judging (defaults to ADJUDICATION_MODEL)
        """
        self.api_key = api_key
        self.dry_run = dry_run

        logger.info("Initializing pipeline components...")

        self.buckets = BucketDefinition(version=settings.BUCKET_TABLE_VERSION)
        self.storage = StorageManager(data_root, output_root, settings.QUEUE_FILENAME)
        self.registry = ReviewRegistry(reviews_path, bucket_table_version=self.buckets.version)
        self.ingestion_agent = IngestionAgent()

        self.normalizer = ScoreNormalizer(
            buckets=self.buckets,
            star_denominator_policy=settings.STAR_DENOMINATOR_POLICY
        )

        self.auditor = StatisticalAuditor(
            normalizer=self.normalizer,
            sigma=settings.DISAGREEMENT_SIGMA,
            conflict_tolerance=settings.AGGREGATOR_CONFLICT_TOLERANCE,
            tier_a_tolerance=settings.TIER_A_TOLERANCE
        )

        self._oracles = oracles
        self._adjudication_oracle = adjudication_oracle
        self._scorer = None
        self._adjudicator = None

        logger.info(f"Pipeline initialized (dry_run={dry_run})")

    @property
    def scorer(self) -> EnsembleConsensusScorer:
        # Oracles are created on first use so audit-only runs need no API key
        if self._scorer is None:
            oracles = self._oracles
            if oracles is None:
                oracles = [
                    GeminiOracle(
                        api_key=self.api_key,
                        model_name=model_name,
                        temperature=settings.LLM_TEMPERATURE,
                        max_retries=settings.ORACLE_MAX_RETRIES,
                        min_delay_seconds=settings.ORACLE_MIN_DELAY_SECONDS,
                        buckets=self.buckets
                    )
                    for model_name in settings.ORACLE_MODELS
                ]
            self._scorer = EnsembleConsensusScorer(
                oracles=oracles,
                buckets=self.buckets,
                timeout_seconds=settings.ORACLE_TIMEOUT_SECONDS
            )
        return self._scorer

    @property
    def adjudicator(self) -> AdjudicationStateMachine:
        if self._adjudicator is None:
            oracle = self._adjudication_oracle
            if oracle is None:
                oracle = GeminiOracle(
                    api_key=self.api_key,
                    model_name=settings.ADJUDICATION_MODEL,
                    temperature=settings.ADJUDICATION_TEMPERATURE,
                    max_retries=settings.ORACLE_MAX_RETRIES,
                    min_delay_seconds=settings.ORACLE_MIN_DELAY_SECONDS,
                    system_prompt=ADJUDICATION_PROMPT,
                    buckets=self.buckets,
                    name="adjudicator"
                )
            self._adjudicator = AdjudicationStateMachine(
                oracle=oracle,
                buckets=self.buckets,
                max_attempts=settings.MAX_ADJUDICATION_ATTEMPTS,
                text_limit=settings.ADJUDICATION_TEXT_LIMIT
            )
        return self._adjudicator

    def run(self, stage: str = "all", import_path: Optional[str] = None) -> Dict[str, dict]:
        """
        Run one stage or the whole pipeline.

        Every stage works on the same registry. In dry-run mode that is a
        private copy, so the stages compute exactly what --apply would but
        nothing is written.

        Args:
            stage: "import", "score", "audit", "adjudicate", or "all"
            import_path: File or directory of review records to import first

        Returns:
            Summary dict per stage that ran
        """
        if stage not in STAGES:
            raise ValueError(f"Unknown stage: {stage}. Must be one of {STAGES}")

        registry = copy.deepcopy(self.registry) if self.dry_run else self.registry
        summaries = asyncio.run(self._run_stages(stage, import_path, registry))

        if not self.dry_run and summaries:
            self.registry.save()

        return summaries

    async def _run_stages(
        self,
        stage: str,
        import_path: Optional[str],
        registry: ReviewRegistry
    ) -> Dict[str, dict]:
        summaries = {}
        queue = None

        if import_path:
            summaries["import"] = self.import_reviews(import_path, registry)

        if stage in ("score", "all"):
            summaries["score"] = await self.score_reviews(registry)

        if stage in ("audit", "all"):
            summaries["audit"], queue = self.audit_reviews(registry)

        if stage in ("adjudicate", "all"):
            summaries["adjudicate"] = await self.adjudicate_queue(registry, queue)

        return summaries

    def import_reviews(self, path: str, registry: ReviewRegistry) -> dict:
        """Add new records from disk; existing review_ids are left as they are."""
        added = skipped = 0
        for review in self.ingestion_agent.import_path(path):
            if registry.get_review(review.review_id) is not None:
                skipped += 1
                continue
            registry.add_review(review)
            added += 1

        logger.info(f"Import: {added} new reviews, {skipped} already in registry")
        return {"added": added, "skipped": skipped}

    async def score_reviews(self, registry: ReviewRegistry) -> dict:
        """Score every pending review with the ensemble."""
        pending = [r for r in registry.get_all_reviews() if r.scoring_status == "pending"]
        logger.info(f"Scoring {len(pending)} pending reviews")

        semaphore = asyncio.Semaphore(settings.MAX_CONCURRENT_REVIEWS)

        async def score_one(review: Review) -> str:
            async with semaphore:
                return await self._score_review(review)

        results = await asyncio.gather(*(score_one(r) for r in pending))

        summary = {"scored": 0, "rejected": 0, "unscored": 0}
        for result in results:
            summary[result] += 1

        logger.info(
            f"Scoring complete: {summary['scored']} scored, {summary['rejected']} rejected, "
            f"{summary['unscored']} unscored"
        )
        return summary

    async def _score_review(self, review: Review) -> str:
        result = await self.scorer.score(review.review_text, self._scoring_context(review))

        if isinstance(result, ConsensusResult):
            review.apply_consensus(result, self.buckets)
            logger.info(
                f"{review.review_id}: {result.bucket} ({result.score}), {result.agreement}"
            )
            return "scored"

        if isinstance(result, RejectedResult):
            review.mark_rejected(result.reason)
            logger.info(f"{review.review_id}: rejected ({result.reason})")
            return "rejected"

        review.mark_unscored()
        logger.warning(f"{review.review_id}: unscored ({result.summary})")
        return "unscored"

    @staticmethod
    def _scoring_context(review: Review) -> str:
        parts = [f"Show: {review.show_id}", f"Outlet: {review.outlet_id}"]
        if review.critic_name:
            parts.append(f"Critic: {review.critic_name}")
        if not (review.text and review.text.strip()):
            parts.append("Only aggregator excerpts are available; the full review may differ.")
        return "\n".join(parts)

    def audit_reviews(self, registry: ReviewRegistry) -> Tuple[dict, List[dict]]:
        """
        Audit the corpus and queue its Tier C reviews.

        Returns:
            (summary, queue entries); reports and the queue file are only
            written outside dry-run mode
        """
        reviews = registry.get_all_reviews()
        report = self.auditor.audit_corpus(reviews)
        queue = self.auditor.build_queue(report, reviews)

        for entry in queue:
            AdjudicationStateMachine.enqueue(registry.get_review(entry["review_id"]))

        if self.dry_run:
            logger.info(f"Dry run: {len(queue)} reviews would be queued, no files written")
        else:
            self.auditor.write_report(report, reviews, self.storage.output_root)
            self.storage.save_queue(queue)

        summary = report.to_dict()
        return {
            "tiers": summary["tiers"],
            "flags": summary["flags"],
            "stats": summary["stats"],
            "queued": len(queue),
        }, queue

    async def adjudicate_queue(
        self,
        registry: ReviewRegistry,
        entries: Optional[List[dict]] = None
    ) -> dict:
        """
        Adjudicate a queue snapshot.

        Args:
            registry: Registry the stages are working on
            entries: Queue computed earlier in this run (defaults to the queue file)
        """
        if entries is None:
            entries = self.storage.load_queue()
        if not entries:
            logger.info("Adjudication queue is empty")
            return {}

        summary = await self.adjudicator.run(entries, registry)

        if not self.dry_run:
            self.storage.save_run_summary(summary, "adjudication")

        return summary
