"""
Critic Scorecard - Review Sentiment Scoring Pipeline

CLI entry point for running the scoring, audit, and adjudication stages.
"""

import argparse
import json
import logging
import os
import sys

from scorecard.orchestrator import STAGES, PipelineOrchestrator
import config.settings as settings

# Stages that call an oracle and therefore need an API key
ORACLE_STAGES = ("score", "adjudicate", "all")


def setup_logging(log_level: str = "INFO"):
    """Configure logging for the entire application."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("scorecard.log")
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Critic Scorecard - Ensemble review scoring with statistical audit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview the whole pipeline without writing anything
  python main.py --stage all

  # Import new review records, score them, and commit
  python main.py --import data/incoming --stage score --apply

  # Audit the corpus and write the adjudication queue
  python main.py --stage audit --apply

  # Work through the adjudication queue
  python main.py --stage adjudicate --apply

Note: Set GOOGLE_API_KEY environment variable before scoring or adjudicating.
        """
    )

    parser.add_argument(
        "--stage",
        default="all",
        choices=STAGES,
        help="Pipeline stage to run (default: all)"
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        default=True,
        help="Compute everything but persist nothing (default)"
    )
    mode.add_argument(
        "--apply",
        dest="dry_run",
        action="store_false",
        help="Commit results to the registry, queue, and reports"
    )

    parser.add_argument(
        "--import",
        dest="import_path",
        help="JSON file or directory of review records to import before the stage runs"
    )

    parser.add_argument(
        "--data-root",
        default=str(settings.DATA_ROOT),
        help=f"Data directory (default: {settings.DATA_ROOT})"
    )

    parser.add_argument(
        "--output-root",
        default=str(settings.OUTPUT_ROOT),
        help=f"Report directory (default: {settings.OUTPUT_ROOT})"
    )

    parser.add_argument(
        "--reviews-path",
        default=str(settings.REVIEWS_PATH),
        help="Path to review registry JSON"
    )

    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Logging level (default: {settings.LOG_LEVEL})"
    )

    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    # Validate required inputs
    if args.stage == "import" and not args.import_path:
        logger.error("--stage import requires --import <path>")
        sys.exit(1)

    if args.import_path and not os.path.exists(args.import_path):
        logger.error(f"Import path not found: {args.import_path}")
        sys.exit(1)

    if not args.import_path and not os.path.exists(args.reviews_path):
        logger.error(f"Review registry not found: {args.reviews_path}")
        sys.exit(1)

    if args.stage in ORACLE_STAGES and not settings.GOOGLE_API_KEY:
        logger.error(
            "GOOGLE_API_KEY environment variable not set. "
            "Please set it before scoring or adjudicating."
        )
        sys.exit(1)

    print("=" * 60)
    print("Critic Scorecard")
    print("=" * 60)
    print(f"Stage: {args.stage}")
    print(f"Mode: {'DRY RUN (nothing is written)' if args.dry_run else 'APPLY'}")
    print(f"Registry: {args.reviews_path}")
    if args.import_path:
        print(f"Import: {args.import_path}")
    print("=" * 60)
    print()

    try:
        logger.info("Initializing Critic Scorecard pipeline...")
        orchestrator = PipelineOrchestrator(
            api_key=settings.GOOGLE_API_KEY,
            data_root=args.data_root,
            output_root=args.output_root,
            reviews_path=args.reviews_path,
            dry_run=args.dry_run
        )

        summaries = orchestrator.run(stage=args.stage, import_path=args.import_path)

        # Unresolved reviews left in the queue are a normal outcome
        print()
        print("=" * 60)
        print("Pipeline completed")
        print("=" * 60)
        for stage, summary in summaries.items():
            print(f"{stage}: {json.dumps(summary, default=str)}")
        if args.dry_run:
            print("Dry run: re-run with --apply to commit")
        print("=" * 60)

        logger.info("Critic Scorecard completed successfully")
        sys.exit(0)

    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user")
        print("\nPipeline interrupted")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\nPipeline failed: {e}")
        print("Check scorecard.log for details")
        sys.exit(1)


if __name__ == "__main__":
    main()
