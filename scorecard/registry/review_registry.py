"""
Review Registry - Single source of truth for persisted review records.

Manages record lookup, insertion, and atomic persistence.
"""

import json
import os
import shutil
import logging
from typing import Dict, List, Optional

from scorecard.models.review import Review, utc_now

logger = logging.getLogger(__name__)


class ReviewRegistry:
    """
    All review records, keyed by review_id.

    Missing optional fields in stored records are read as unknown (None),
    never as zero.
    """

    def __init__(self, registry_path: str, bucket_table_version: str = "v5"):
        """
        Initialize registry from disk or create new empty registry.

        Args:
            registry_path: Path to reviews.json file
            bucket_table_version: Bucket table the stored scores were produced with
        """
        self.registry_path = registry_path
        self.reviews: Dict[str, Review] = {}  # review_id -> Review
        self.version = "1.0.0"
        self.bucket_table_version = bucket_table_version
        self.last_updated = utc_now()

        if os.path.exists(registry_path):
            self._load()
        else:
            logger.info(f"No existing registry found at {registry_path}, initializing empty registry")

    def _load(self) -> None:
        """Load registry from disk."""
        try:
            self._read(self.registry_path)
            logger.info(f"Loaded {len(self.reviews)} reviews from registry")

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse registry JSON: {e}")
            self._try_restore_from_backup()
        except Exception as e:
            logger.error(f"Failed to load registry: {e}")
            self._try_restore_from_backup()

    def _read(self, path: str) -> None:
        with open(path, 'r') as f:
            data = json.load(f)

        # Bare list of records vs dict with metadata
        if isinstance(data, list):
            records = data
        else:
            self.version = data.get("version", "1.0.0")
            stored_version = data.get("bucket_table_version")
            if stored_version and stored_version != self.bucket_table_version:
                logger.warning(
                    f"Registry scores were produced with bucket table {stored_version}, "
                    f"current table is {self.bucket_table_version}"
                )
            self.last_updated = data.get("last_updated", self.last_updated)
            records = data.get("reviews", [])

        reviews = {}
        for record in records:
            review = Review.from_dict(record)
            if review.review_id in reviews:
                logger.warning(f"Duplicate review_id in registry, keeping last: {review.review_id}")
            reviews[review.review_id] = review
        self.reviews = reviews

    def _try_restore_from_backup(self) -> None:
        """Attempt to restore from backup file if main registry is corrupted."""
        backup_path = f"{self.registry_path}.backup"
        if os.path.exists(backup_path):
            logger.warning(f"Attempting to restore from backup: {backup_path}")
            try:
                self._read(backup_path)
                shutil.copy(backup_path, self.registry_path)
                logger.info(f"Successfully restored {len(self.reviews)} reviews from backup")
            except Exception as e:
                logger.error(f"Backup restoration failed: {e}. Starting with empty registry.")
                self.reviews = {}
        else:
            logger.warning("No backup file found. Starting with empty registry.")
            self.reviews = {}

    def add_review(self, review: Review) -> str:
        """
        Insert a new record.

        Raises:
            ValueError: If a record with the same review_id exists
        """
        if review.review_id in self.reviews:
            raise ValueError(f"Review '{review.review_id}' already exists")
        self.reviews[review.review_id] = review
        logger.debug(f"Added review {review.review_id}")
        return review.review_id

    def upsert(self, review: Review) -> None:
        """Insert or replace a record."""
        self.reviews[review.review_id] = review

    def get_review(self, review_id: str) -> Optional[Review]:
        """Retrieve review by ID. Returns None if not found."""
        return self.reviews.get(review_id)

    def get_all_reviews(self) -> List[Review]:
        """Return all reviews, sorted by review_id."""
        return [self.reviews[k] for k in sorted(self.reviews)]

    def find_by_key(self, outlet_id: str, critic_name: Optional[str], show_id: str) -> List[Review]:
        """All records sharing the case-insensitive (outlet, critic, show) key."""
        key = f"{outlet_id}--{critic_name}--{show_id}".lower()
        return [r for r in self.get_all_reviews() if r.dedupe_key == key]

    def save(self) -> None:
        """
        Persist registry to disk with atomic write pattern.
        Creates backup before write.
        """
        self.last_updated = utc_now()

        if os.path.exists(self.registry_path):
            backup_path = f"{self.registry_path}.backup"
            shutil.copy(self.registry_path, backup_path)
            logger.debug(f"Created backup: {backup_path}")

        data = {
            "version": self.version,
            "bucket_table_version": self.bucket_table_version,
            "last_updated": self.last_updated,
            "reviews": [review.to_dict() for review in self.get_all_reviews()]
        }

        directory = os.path.dirname(self.registry_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        # Atomic write: write to temp file, then rename
        temp_path = f"{self.registry_path}.tmp"
        try:
            with open(temp_path, 'w') as f:
                json.dump(data, f, indent=2)

            os.replace(temp_path, self.registry_path)
            logger.info(f"Registry saved: {len(self.reviews)} reviews")

        except Exception as e:
            logger.error(f"Failed to save registry: {e}")
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    def __len__(self) -> int:
        return len(self.reviews)
