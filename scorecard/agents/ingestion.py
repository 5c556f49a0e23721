"""
Ingestion Agent.

Imports review records from JSON files into the review registry.
"""

import json
import logging
import os
from typing import List

from scorecard.models.review import Review

logger = logging.getLogger(__name__)


class IngestionAgent:
    """
    Loads review records from disk.

    Accepts one JSON file holding a record or a list of records, or a
    directory tree of such files. Records that fail validation are skipped
    and logged; they never stop the import.
    """

    def import_path(self, path: str) -> List[Review]:
        """
        Load every review record under a path.

        Args:
            path: JSON file or directory

        Returns:
            List of Review objects, in file order

        Raises:
            FileNotFoundError: If the path does not exist
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"Import path not found: {path}")

        if os.path.isdir(path):
            files = []
            for root, _dirs, names in os.walk(path):
                files.extend(os.path.join(root, n) for n in names if n.endswith(".json"))
            files.sort()
        else:
            files = [path]

        reviews = []
        for filepath in files:
            reviews.extend(self._load_file(filepath))

        logger.info(f"Imported {len(reviews)} reviews from {len(files)} files under {path}")
        return reviews

    def _load_file(self, filepath: str) -> List[Review]:
        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Skipping unreadable file {filepath}: {e}")
            return []

        if isinstance(data, dict) and "reviews" in data:
            records = data["reviews"]
        elif isinstance(data, list):
            records = data
        else:
            records = [data]

        reviews = []
        for record in records:
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-object record in {filepath}: {record!r}")
                continue
            try:
                reviews.append(Review.from_dict(self._with_id(record)))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid record in {filepath}: {e}")
        return reviews

    @staticmethod
    def _with_id(record: dict) -> dict:
        """Derive review_id as <show>/<outlet>--<critic> when a record has none."""
        if record.get("review_id"):
            return record
        critic = (record.get("critic_name") or "unknown").lower().replace(" ", "-")
        return {**record, "review_id": f"{record['show_id']}/{record['outlet_id']}--{critic}"}
