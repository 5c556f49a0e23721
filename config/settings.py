"""
Configuration settings for Critic Scorecard.

Centralized configuration for all agents and pipeline parameters.
"""

import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_ROOT = PROJECT_ROOT / "data"
OUTPUT_ROOT = PROJECT_ROOT / "output"
REVIEWS_PATH = DATA_ROOT / "reviews.json"
QUEUE_FILENAME = "needs-adjudication.json"

# API Configuration
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")

# Oracle ensemble (one oracle per model)
ORACLE_MODELS = [
    "gemini-1.5-flash",
    "gemini-1.5-pro",
    "gemini-2.0-flash",
]
ADJUDICATION_MODEL = "gemini-1.5-pro"

# Temperature settings (0.0 for deterministic)
LLM_TEMPERATURE = 0.0
ADJUDICATION_TEMPERATURE = 0.3

# Oracle invocation
ORACLE_MAX_RETRIES = 3
ORACLE_TIMEOUT_SECONDS = 45
ORACLE_MIN_DELAY_SECONDS = 1.0  # Minimum gap between calls on one oracle channel
MAX_CONCURRENT_REVIEWS = 5

# Bucket table shared by every stage
BUCKET_TABLE_VERSION = "v5"

# Star ratings given without a denominator ("3 stars"):
#   "infer" -> out of 4 for whole values 1-4, otherwise out of 5
#   "five"  -> always out of 5
STAR_DENOMINATOR_POLICY = "infer"

# Auditor thresholds
AGGREGATOR_CONFLICT_TOLERANCE = 10  # Points between excerpt rating and stored score
TIER_A_TOLERANCE = 15  # Tier A needs |consensus - ground truth| below this
DISAGREEMENT_SIGMA = 2.0  # Outlier threshold in corpus standard deviations

# Adjudication
MAX_ADJUDICATION_ATTEMPTS = 3
ADJUDICATION_TEXT_LIMIT = 3000  # Characters of review text sent to the oracle

# Logging
LOG_LEVEL = "INFO"  # DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
