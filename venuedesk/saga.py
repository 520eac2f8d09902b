"""
Creation sagas for new workers and venues.

The store offers no transaction spanning several calls, so each saga
registers an undo step right after the forward step it reverses. When a
later step fails the registered steps run newest first, and the original
error is re-raised whatever happens during cleanup.

Worker creation:
    1. insert worker (status=pending)       undo: delete worker
    2. insert initial association(s)        undo: delete those rows
    3. insert moderation queue entry

Venue creation:
    1. insert venue                         undo: delete venue
    2. insert moderation queue entry (only when the venue is pending)
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from .access import Actor
from .associations import association_records
from .collaborators import (
    CONTENT_PENDING,
    MODERATORS,
    Notifier,
    PointsLedger,
    best_effort,
)
from .config import RESTRICTED_CATEGORY, WORKER_CREATION_POINTS
from .freelance import ensure_freelance_rules
from .logger import get_logger
from .schema import parse_venue_changes, parse_worker_changes

logger = get_logger()


class Compensations:
    """Undo steps for one saga run, executed newest first."""

    def __init__(self, saga: str):
        self.saga = saga
        self._steps: List[Tuple[str, Callable, tuple]] = []

    def add(self, description: str, func: Callable, *args) -> None:
        self._steps.append((description, func, args))

    def run(self) -> int:
        """Run every undo step. Returns how many failed."""
        failures = 0
        for description, func, args in reversed(self._steps):
            try:
                func(*args)
                logger.info("Compensation step done", saga=self.saga, step=description)
            except Exception as e:
                failures += 1
                logger.record_compensation_failure(type(e).__name__)
                logger.error(
                    "Compensation step failed",
                    saga=self.saga,
                    step=description,
                    error=str(e),
                )
        self._steps.clear()
        return failures


class CreationSaga:
    """
    Usage:
        saga = CreationSaga(store)
        worker = saga.create_worker({"name": "Ann", "sex": "female", "venue_id": vid}, actor)
    """

    def __init__(
        self,
        store,
        notifier: Optional[Notifier] = None,
        points: Optional[PointsLedger] = None,
        restricted_category: str = RESTRICTED_CATEGORY,
    ):
        self.store = store
        self.notifier = notifier or Notifier()
        self.points = points or PointsLedger()
        self.restricted_category = restricted_category

    def create_worker(self, payload: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
        """
        Create a worker, attach its initial venue(s), and queue it for review.

        Raises:
            ValidationError / ConflictError / BusinessRuleError: before any write
            PersistenceError: a store step failed; completed steps were undone
        """
        changes = parse_worker_changes(payload, partial=False)
        venue_ids = changes.venue_ids or []
        is_freelance = bool(changes.fields.get("is_freelance", False))
        ensure_freelance_rules(self.store, None, is_freelance, venue_ids, self.restricted_category)

        logger.record_saga_start("create_worker")
        undo = Compensations("create_worker")
        try:
            worker = self.store.insert_worker({
                **changes.fields,
                "is_freelance": is_freelance,
                "status": "pending",
                "created_by": actor.id,
            })
            undo.add("delete worker", self.store.delete_worker, worker["id"])

            if venue_ids:
                rows = self.store.insert_associations(
                    association_records(worker["id"], venue_ids, actor.id, notes="Initial association")
                )
                undo.add("delete associations", self.store.delete_associations, [r["id"] for r in rows])

            self.store.insert_queue_entry({
                "item_type": "worker",
                "item_id": worker["id"],
                "submitted_by": actor.id,
                "status": "pending",
            })
        except Exception as e:
            logger.record_saga_rollback("create_worker", type(e).__name__)
            logger.warning("Rolling back worker creation", actor_id=actor.id, error=str(e))
            undo.run()
            raise

        logger.record_saga_commit("create_worker")
        logger.info("Worker submitted for review", worker_id=worker["id"], venues=len(venue_ids))

        self._announce("worker", worker, actor)
        best_effort(
            "Points award",
            self.points.award,
            actor.id,
            WORKER_CREATION_POINTS,
            "Created new worker profile",
            "worker",
            worker["id"],
        )
        return worker

    def create_venue(self, payload: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
        """
        Create a venue. Admin-created venues are approved at once and skip
        the queue; everything else is queued as pending.
        """
        fields = parse_venue_changes(payload, partial=False)
        status = "approved" if actor.is_admin else "pending"

        logger.record_saga_start("create_venue")
        undo = Compensations("create_venue")
        try:
            venue = self.store.insert_venue({**fields, "status": status, "created_by": actor.id})
            undo.add("delete venue", self.store.delete_venue, venue["id"])

            if status == "pending":
                self.store.insert_queue_entry({
                    "item_type": "venue",
                    "item_id": venue["id"],
                    "submitted_by": actor.id,
                    "status": "pending",
                })
        except Exception as e:
            logger.record_saga_rollback("create_venue", type(e).__name__)
            logger.warning("Rolling back venue creation", actor_id=actor.id, error=str(e))
            undo.run()
            raise

        logger.record_saga_commit("create_venue")
        if status == "pending":
            self._announce("venue", venue, actor)
        return venue

    def _announce(self, item_type: str, item: Dict[str, Any], actor: Actor) -> None:
        payload = {"item_type": item_type, "item_id": item["id"], "name": item["name"]}
        best_effort(
            "Moderator notification",
            self.notifier.send,
            CONTENT_PENDING,
            MODERATORS,
            {**payload, "submitted_by": actor.id},
        )
        best_effort("Submitter notification", self.notifier.send, CONTENT_PENDING, actor.id, payload)
