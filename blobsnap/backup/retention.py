"""
Retention policy enforcement for snapshots.

Removes old snapshots of a storage's canonical object, keeping the newest
``keep_last`` and/or those younger than ``max_age``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from blobsnap.context import Context, ensure
from blobsnap.errors import BlobSnapError
from .storage import BlobStorage, Snapshot


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages retention policy enforcement for one storage.

    Individual deletion failures are collected in the summary so one bad
    snapshot does not stop the rest of the cleanup.
    """

    def __init__(self, storage: BlobStorage):
        """
        Initialize retention manager.

        Args:
            storage: Storage whose snapshots are pruned
        """
        self.storage = storage
        self.logs = []

    def select_expired(
        self,
        snapshots: List[Snapshot],
        keep_last: Optional[int] = None,
        max_age: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[Snapshot]:
        """
        Pick the snapshots a policy would delete.

        Args:
            snapshots: Snapshots sorted oldest first
            keep_last: Number of newest snapshots always kept
            max_age: Snapshots older than this are expired

        Returns:
            Expired snapshots, oldest first
        """
        if keep_last is not None and keep_last < 0:
            raise ValueError(f"keep_last must not be negative, got {keep_last}")

        if keep_last is None and max_age is None:
            return []

        now = now or datetime.now(timezone.utc)
        protected = set()
        if keep_last:
            protected = {s.key for s in snapshots[-keep_last:]}

        expired = []
        for snapshot in snapshots:
            if snapshot.key in protected:
                continue
            # With max_age set, only old snapshots outside the newest N expire
            if max_age is not None and now - snapshot.created_at <= max_age:
                continue
            expired.append(snapshot)

        return expired

    def enforce(
        self,
        ctx: Optional[Context] = None,
        keep_last: Optional[int] = None,
        max_age: Optional[timedelta] = None,
    ) -> Dict[str, Any]:
        """
        Enforce the retention policy.

        Returns:
            Dict with summary of cleanup operations:
            {
                'kept': int,
                'deleted': List[str],
                'errors': List[str],
                'logs': List[str]
            }

        Raises:
            BackendError: If snapshots cannot be listed
        """
        ctx = ensure(ctx)
        self._log(f"Enforcing retention for {self.storage.key} (keep_last={keep_last}, max_age={max_age})")

        snapshots = self.storage.snapshots(ctx)
        expired = self.select_expired(snapshots, keep_last=keep_last, max_age=max_age)

        summary = {
            'kept': len(snapshots) - len(expired),
            'deleted': [],
            'errors': []
        }

        for snapshot in expired:
            try:
                self.storage.delete_snapshot(ctx, snapshot.key)
                summary['deleted'].append(snapshot.key)
                self._log(f"Deleted snapshot: {snapshot.key}")
            except BlobSnapError as e:
                error_msg = f"Failed to delete snapshot {snapshot.key}: {e}"
                self._log(error_msg, level=logging.ERROR)
                summary['errors'].append(error_msg)

        self._log(
            f"Retention enforcement complete. "
            f"Kept: {summary['kept']}, "
            f"Deleted: {len(summary['deleted'])}, "
            f"Errors: {len(summary['errors'])}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level used for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
