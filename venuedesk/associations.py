"""
Employment association manager.

Changes a worker's current venue(s) as one logical operation made of
independent store writes. Ending rows is best-effort because those rows
are about to be superseded; inserting the new rows is not, and a failure
there is raised with enough detail for the caller to compensate.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import RESTRICTED_CATEGORY
from .errors import AssociationWriteError, PersistenceError
from .logger import get_logger

logger = get_logger()


def association_records(
    worker_id: str,
    venue_ids: List[str],
    actor_id: str,
    notes: Optional[str] = None,
    position: Optional[str] = None,
    start_date: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Build one current association row per venue."""
    start = start_date or datetime.now()
    return [
        {
            "worker_id": worker_id,
            "venue_id": venue_id,
            "position": position,
            "is_current": True,
            "start_date": start,
            "notes": notes,
            "created_by": actor_id,
        }
        for venue_id in venue_ids
    ]


@dataclass
class ReconcileResult:
    ended_ids: List[str] = field(default_factory=list)
    created: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def created_ids(self) -> List[str]:
        return [row["id"] for row in self.created]


class AssociationManager:
    """
    Usage:
        manager = AssociationManager(store)
        snapshot = manager.current_snapshot(worker_id)
        manager.prune_for_freelance(worker_id, snapshot)
        manager.reconcile(worker_id, ["venue-1"], actor_id, "Updated via edit proposal")
    """

    def __init__(self, store, restricted_category: str = RESTRICTED_CATEGORY):
        self.store = store
        self.restricted_category = restricted_category

    def current_snapshot(self, worker_id: str) -> List[Dict[str, Any]]:
        """Current rows with venue_name and venue_category."""
        return self.store.current_associations(worker_id)

    def end_current(self, worker_id: str) -> List[str]:
        """End every current row. Failures are logged and reported as nothing ended."""
        try:
            ended = self.store.end_current_associations(worker_id)
        except PersistenceError as e:
            logger.error("Failed to end current associations", worker_id=worker_id, error=str(e))
            return []
        logger.info("Ended current associations", worker_id=worker_id, count=len(ended))
        return ended

    def reconcile(
        self,
        worker_id: str,
        venue_ids: List[str],
        actor_id: str,
        note: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Make venue_ids the worker's only current venues.

        An empty list clears every current association.

        Raises:
            AssociationWriteError: inserting the new rows failed; carries the
                ids ended beforehand so they can be restored
        """
        ended = self.end_current(worker_id)

        if not venue_ids:
            logger.info("Worker removed from all venues", worker_id=worker_id)
            return ReconcileResult(ended_ids=ended)

        records = association_records(worker_id, venue_ids, actor_id, notes=note)
        try:
            created = self.store.insert_associations(records)
        except PersistenceError as e:
            logger.error(
                "Failed to create associations",
                worker_id=worker_id,
                venue_ids=venue_ids,
                error=str(e),
            )
            raise AssociationWriteError("Failed to update venues", ended_ids=ended) from e

        logger.info("Worker associated with venues", worker_id=worker_id, venue_ids=venue_ids)
        return ReconcileResult(ended_ids=ended, created=created)

    def prune_for_freelance(self, worker_id: str, snapshot: List[Dict[str, Any]]) -> List[str]:
        """
        End the snapshot rows whose venue is outside the restricted category.

        Restricted-category rows are kept. Best-effort: returns the ids it
        managed to end.
        """
        stale = [row for row in snapshot if row.get("venue_category") != self.restricted_category]
        for row in snapshot:
            if row not in stale:
                logger.debug("Keeping freelance-compatible association", worker_id=worker_id, venue=row.get("venue_name"))
        if not stale:
            return []

        stale_ids = [row["id"] for row in stale]
        try:
            self.store.end_associations(stale_ids)
        except PersistenceError as e:
            logger.error("Failed to end non-restricted associations", worker_id=worker_id, error=str(e))
            return []

        for row in stale:
            logger.info(
                "Ended association on freelance switch",
                worker_id=worker_id,
                venue=row.get("venue_name"),
                category=row.get("venue_category"),
            )
        return stale_ids

    def restore(self, association_ids: List[str]) -> bool:
        """Re-mark previously ended rows as current. Best-effort."""
        if not association_ids:
            return True
        try:
            self.store.reopen_associations(association_ids)
        except PersistenceError as e:
            logger.record_compensation_failure(type(e).__name__)
            logger.error("Failed to restore associations", association_ids=association_ids, error=str(e))
            return False
        logger.warning("Restored associations after failed update", association_ids=association_ids)
        return True
