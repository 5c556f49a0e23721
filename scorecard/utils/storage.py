"""
Storage utility.

File I/O helpers for the adjudication queue and audit outputs.
"""

import json
import os
import logging
from typing import Dict, List, Optional

from scorecard.models.review import utc_now

logger = logging.getLogger(__name__)


class StorageManager:
    """
    Manages file I/O for all data persistence except the review registry.

    Handles:
    - Adjudication queue (data/audit/needs-adjudication.json)
    - Audit reports (output/audit_summary.json, output/audit_reviews.csv)
    - Adjudication run summaries (output/adjudication_summary.json)
    """

    def __init__(self, data_root: str, output_root: str, queue_filename: str = "needs-adjudication.json"):
        """
        Initialize storage manager.

        Args:
            data_root: Root data directory (e.g., /path/to/data)
            output_root: Directory for reports
            queue_filename: Name of the adjudication queue file
        """
        self.data_root = data_root
        self.output_root = output_root
        self.audit_dir = os.path.join(data_root, "audit")
        self.queue_path = os.path.join(self.audit_dir, queue_filename)

        logger.info(f"Initialized StorageManager with data_root={data_root}, output_root={output_root}")

    def save_queue(self, entries: List[Dict]) -> str:
        """
        Save a queue snapshot, replacing the previous one.

        Args:
            entries: Queue entries built by the auditor

        Returns:
            Path to the queue file
        """
        data = {
            "generated_at": utc_now(),
            "count": len(entries),
            "reviews": entries,
        }

        try:
            os.makedirs(self.audit_dir, exist_ok=True)
            with open(self.queue_path, 'w') as f:
                json.dump(data, f, indent=2)
            logger.info(f"Saved {len(entries)} queued reviews to {self.queue_path}")
        except Exception as e:
            logger.error(f"Failed to save adjudication queue: {e}")
            raise

        return self.queue_path

    def load_queue(self) -> Optional[List[Dict]]:
        """
        Load the latest queue snapshot.

        Returns:
            List of queue entries, or None if no queue file exists
        """
        if not os.path.exists(self.queue_path):
            logger.warning(f"No adjudication queue found at {self.queue_path}")
            return None

        try:
            with open(self.queue_path, 'r') as f:
                data = json.load(f)
        except Exception as e:
            logger.error(f"Failed to load adjudication queue: {e}")
            return None

        entries = data if isinstance(data, list) else data.get("reviews", [])
        logger.debug(f"Loaded {len(entries)} queued reviews from {self.queue_path}")
        return entries

    def save_run_summary(self, summary: Dict, name: str) -> str:
        """
        Save a stage summary as output/<name>_summary.json.

        Returns:
            Path to the summary file
        """
        filepath = os.path.join(self.output_root, f"{name}_summary.json")

        try:
            os.makedirs(self.output_root, exist_ok=True)
            with open(filepath, 'w') as f:
                json.dump({"generated_at": utc_now(), **summary}, f, indent=2)
            logger.info(f"Saved {name} summary to {filepath}")
        except Exception as e:
            logger.error(f"Failed to save {name} summary: {e}")
            raise

        return filepath
