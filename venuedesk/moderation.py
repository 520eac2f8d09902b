"""
Edit-proposal state machine and moderation queue review.

Proposals move pending -> approved | rejected and never leave a terminal
state. Privileged actors skip the pending state: their changes are
applied at once and an already-approved proposal is written as the audit
record. Applying a change is the critical write; the audit record is
advisory and its failure is only logged.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from .access import (
    Actor,
    authorize_venue_edit,
    authorize_worker_edit,
    require_privileged,
)
from .associations import AssociationManager, ReconcileResult
from .collaborators import (
    CONTENT_APPROVED,
    CONTENT_PENDING,
    CONTENT_REJECTED,
    MODERATORS,
    PROPOSAL_APPROVED,
    PROPOSAL_REJECTED,
    PROPOSAL_SUBMITTED,
    Notifier,
    PointsLedger,
    best_effort,
)
from .config import AUTO_APPROVE_NOTE, RESTRICTED_CATEGORY, WORKER_UPDATE_POINTS
from .database import ENTITY_STATUSES, ITEM_TYPES
from .errors import (
    AssociationWriteError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    WorkflowError,
)
from .freelance import ensure_category_change, ensure_freelance_rules
from .logger import get_logger
from .schema import WorkerChanges, parse_venue_changes, parse_worker_changes

logger = get_logger()

REVIEW_DECISIONS = ("approved", "rejected")

Changes = Union[WorkerChanges, Dict[str, Any]]


class ModerationService:
    """
    Usage:
        service = ModerationService(store)
        proposal, auto_approved = service.submit_proposal(actor, "worker", wid, {"nickname": "A"})
        service.approve(proposal["id"], moderator, "looks good")
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
        self.associations = AssociationManager(store, restricted_category)

    # ------------------------------------------------------------------
    # Entity helpers
    # ------------------------------------------------------------------

    def _load(self, item_type: str, item_id: str) -> Dict[str, Any]:
        if item_type not in ITEM_TYPES:
            raise ValidationError(f"Field 'item_type' must be one of: {', '.join(ITEM_TYPES)}")
        if item_type == "worker":
            entity = self.store.get_worker(item_id)
        else:
            entity = self.store.get_venue(item_id)
        if entity is None:
            raise NotFoundError(f"{item_type.capitalize()} not found")
        return entity

    def _update_entity(self, item_type: str, item_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if item_type == "worker":
            updated = self.store.update_worker(item_id, fields)
        else:
            updated = self.store.update_venue(item_id, fields)
        if updated is None:
            raise NotFoundError(f"{item_type.capitalize()} not found")
        return updated

    @staticmethod
    def _parse(item_type: str, changes: Dict[str, Any]) -> Changes:
        if item_type == "worker":
            return parse_worker_changes(changes, partial=True)
        return parse_venue_changes(changes, partial=True)

    # ------------------------------------------------------------------
    # Applying changes
    # ------------------------------------------------------------------

    def _apply_changes(
        self,
        item_type: str,
        entity: Dict[str, Any],
        changes: Changes,
        actor: Actor,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Write changes to the entity and return the updated row.

        Worker association intent is routed through the association
        manager and never reaches the worker row. `extra_fields` carries
        engine-owned columns such as a status reset.
        """
        if item_type == "worker":
            return self._apply_worker_changes(entity, changes, actor, extra_fields or {})

        fields = {**changes, **(extra_fields or {})}
        if not fields:
            return entity
        ensure_category_change(self.store, entity, fields.get("category"), self.restricted_category)
        return self._update_entity("venue", entity["id"], fields)

    def _apply_worker_changes(
        self,
        worker: Dict[str, Any],
        changes: WorkerChanges,
        actor: Actor,
        extra_fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        worker_id = worker["id"]
        was_freelance = bool(worker.get("is_freelance"))
        is_freelance = was_freelance if changes.is_freelance is None else changes.is_freelance
        snapshot = self.associations.current_snapshot(worker_id)

        # All rule checks happen before the first write.
        if changes.touches_associations:
            ensure_freelance_rules(
                self.store, worker_id, is_freelance, changes.venue_ids, self.restricted_category
            )
        elif was_freelance and not is_freelance:
            ensure_freelance_rules(
                self.store,
                worker_id,
                False,
                [row["venue_id"] for row in snapshot],
                self.restricted_category,
            )

        pruned: List[str] = []
        reconciled: Optional[ReconcileResult] = None
        if changes.touches_associations:
            try:
                reconciled = self.associations.reconcile(
                    worker_id, changes.venue_ids, actor.id, "Updated via edit proposal"
                )
            except AssociationWriteError as e:
                self.associations.restore(e.ended_ids)
                raise
        elif is_freelance and not was_freelance:
            pruned = self.associations.prune_for_freelance(worker_id, snapshot)

        fields = {**changes.fields, **extra_fields}
        if not fields:
            return worker
        try:
            return self._update_entity("worker", worker_id, fields)
        except PersistenceError:
            self._undo_association_changes(reconciled, pruned)
            raise

    def _undo_association_changes(self, reconciled: Optional[ReconcileResult], pruned: List[str]) -> None:
        if reconciled is not None:
            if reconciled.created_ids:
                best_effort("Association cleanup", self.store.delete_associations, reconciled.created_ids)
            self.associations.restore(reconciled.ended_ids)
        if pruned:
            self.associations.restore(pruned)

    def _record_audit(
        self,
        item_type: str,
        item_id: str,
        proposed_changes: Dict[str, Any],
        current_values: Optional[Dict[str, Any]],
        actor: Actor,
        notes: Optional[str] = AUTO_APPROVE_NOTE,
    ) -> Optional[Dict[str, Any]]:
        """Advisory write of an already-approved proposal; returns None on failure."""
        record = {
            "item_type": item_type,
            "item_id": item_id,
            "proposed_changes": proposed_changes,
            "current_values": current_values,
            "proposed_by": actor.id,
            "status": "approved",
            "moderator_id": actor.id,
            "moderator_notes": notes,
            "reviewed_at": datetime.now(),
        }
        try:
            return self.store.insert_proposal(record)
        except PersistenceError as e:
            logger.error(
                "Failed to record audit proposal",
                item_type=item_type,
                item_id=item_id,
                error=str(e),
            )
            return None

    @staticmethod
    def _current_values(entity: Dict[str, Any], changes: Changes, snapshot: Optional[list] = None) -> Dict[str, Any]:
        fields = changes.fields if isinstance(changes, WorkerChanges) else changes
        values = {key: entity.get(key) for key in fields}
        if snapshot is not None:
            values["venue_ids"] = [row["venue_id"] for row in snapshot]
        return values

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def submit_proposal(
        self,
        actor: Actor,
        item_type: str,
        item_id: str,
        proposed_changes: Dict[str, Any],
        current_values: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Optional[Dict[str, Any]], bool]:
        """
        Submit an edit. Returns (proposal, auto_approved).

        Privileged actors get their change applied immediately; the
        returned proposal may be None if only the audit record failed.
        """
        entity = self._load(item_type, item_id)
        changes = self._parse(item_type, proposed_changes)

        if actor.is_privileged:
            self._apply_changes(item_type, entity, changes, actor)
            proposal = self._record_audit(item_type, item_id, proposed_changes, current_values, actor)
            logger.info("Edit auto-approved", item_type=item_type, item_id=item_id, actor_id=actor.id)
            return proposal, True

        proposal = self.store.insert_proposal({
            "item_type": item_type,
            "item_id": item_id,
            "proposed_changes": proposed_changes,
            "current_values": current_values,
            "proposed_by": actor.id,
            "status": "pending",
        })
        logger.info("Edit proposal submitted", proposal_id=proposal["id"], item_type=item_type, item_id=item_id)
        best_effort(
            "Moderator notification",
            self.notifier.send,
            PROPOSAL_SUBMITTED,
            MODERATORS,
            {"proposal_id": proposal["id"], "item_type": item_type, "item_id": item_id},
        )
        return proposal, False

    def _pending_proposal(self, proposal_id: str) -> Dict[str, Any]:
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found")
        if proposal["status"] != "pending":
            raise ConflictError("Proposal already reviewed")
        return proposal

    def _close_proposal(self, proposal: Dict[str, Any], status: str, moderator: Actor, notes: Optional[str]) -> Dict[str, Any]:
        closed = self.store.close_pending_proposal(proposal["id"], {
            "status": status,
            "moderator_id": moderator.id,
            "moderator_notes": notes,
            "reviewed_at": datetime.now(),
        })
        if closed is None:
            raise ConflictError("Proposal already reviewed")
        logger.info(f"Proposal {status}", proposal_id=proposal["id"], moderator_id=moderator.id)
        return closed

    def _reopen_proposal(self, proposal: Dict[str, Any]) -> None:
        best_effort(
            "Proposal reopen",
            self.store.update_proposal,
            proposal["id"],
            {"status": "pending", "moderator_id": None, "moderator_notes": None, "reviewed_at": None},
        )

    def _notify_proposer(self, proposal: Dict[str, Any], status: str, notes: Optional[str]) -> None:
        event = PROPOSAL_APPROVED if status == "approved" else PROPOSAL_REJECTED
        best_effort(
            "Proposer notification",
            self.notifier.send,
            event,
            proposal["proposed_by"],
            {
                "proposal_id": proposal["id"],
                "item_type": proposal["item_type"],
                "item_id": proposal["item_id"],
                "moderator_notes": notes,
            },
        )

    def approve(self, proposal_id: str, moderator: Actor, notes: Optional[str] = None) -> Dict[str, Any]:
        """
        Apply a pending proposal and mark it approved.

        The proposal is closed before the entity is touched, so a second
        reviewer gets ConflictError instead of applying it again. If the
        changes cannot be applied the proposal goes back to pending.

        Raises:
            AuthorizationError: moderator is not privileged
            NotFoundError: no such proposal (or its entity is gone)
            ConflictError: proposal already reviewed
        """
        require_privileged(moderator, "review proposals")
        proposal = self._pending_proposal(proposal_id)

        entity = self._load(proposal["item_type"], proposal["item_id"])
        changes = self._parse(proposal["item_type"], proposal["proposed_changes"] or {})
        closed = self._close_proposal(proposal, "approved", moderator, notes)
        try:
            self._apply_changes(proposal["item_type"], entity, changes, moderator)
        except WorkflowError:
            self._reopen_proposal(proposal)
            raise

        self._notify_proposer(proposal, "approved", notes)
        return closed

    def reject(self, proposal_id: str, moderator: Actor, notes: Optional[str] = None) -> Dict[str, Any]:
        """Mark a pending proposal rejected. The entity is not touched."""
        require_privileged(moderator, "review proposals")
        proposal = self._pending_proposal(proposal_id)
        closed = self._close_proposal(proposal, "rejected", moderator, notes)
        self._notify_proposer(proposal, "rejected", notes)
        return closed

    def list_proposals(
        self,
        actor: Actor,
        status: Optional[str] = None,
        item_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        require_privileged(actor, "list proposals")
        return self.store.list_proposals(status=status, item_type=item_type)

    def list_my_proposals(self, actor: Actor) -> List[Dict[str, Any]]:
        return self.store.list_proposals(proposed_by=actor.id)

    # ------------------------------------------------------------------
    # Direct edits
    # ------------------------------------------------------------------

    def update_worker(self, actor: Actor, worker_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a direct edit to a worker.

        Non-privileged edits send the worker back to pending review and
        leave no proposal, since the change is already applied. Privileged
        edits keep the status and leave an approved audit proposal.
        """
        worker = self._load("worker", worker_id)
        authorize_worker_edit(actor, worker)
        command = parse_worker_changes(changes, partial=True)
        snapshot = self.associations.current_snapshot(worker_id) if command.touches_associations else None
        current_values = self._current_values(worker, command, snapshot)

        extra = {} if actor.is_privileged else {"status": "pending"}
        updated = self._apply_changes("worker", worker, command, actor, extra)

        if actor.is_privileged:
            self._record_audit("worker", worker_id, changes, current_values, actor)
        logger.info(
            "Worker updated",
            worker_id=worker_id,
            actor_id=actor.id,
            fields=sorted(command.fields),
            associations_changed=command.touches_associations,
        )

        best_effort(
            "Points award",
            self.points.award,
            actor.id,
            WORKER_UPDATE_POINTS,
            "Updated worker profile",
            "worker",
            worker_id,
        )
        if not actor.is_privileged:
            self._announce_pending("worker", updated, actor)
        return updated

    def update_venue(self, actor: Actor, venue_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Same contract as update_worker; owners are limited by their permissions."""
        venue = self._load("venue", venue_id)
        fields = parse_venue_changes(changes, partial=True)
        authorize_venue_edit(self.store, actor, venue, fields.keys())
        current_values = self._current_values(venue, fields)

        extra = {} if actor.is_privileged else {"status": "pending"}
        updated = self._apply_changes("venue", venue, fields, actor, extra)

        if actor.is_privileged:
            self._record_audit("venue", venue_id, changes, current_values, actor)
        logger.info("Venue updated", venue_id=venue_id, actor_id=actor.id, fields=sorted(fields))

        if not actor.is_privileged:
            self._announce_pending("venue", updated, actor)
        return updated

    def _announce_pending(self, item_type: str, item: Dict[str, Any], actor: Actor) -> None:
        best_effort(
            "Moderator notification",
            self.notifier.send,
            CONTENT_PENDING,
            MODERATORS,
            {"item_type": item_type, "item_id": item["id"], "name": item.get("name"), "submitted_by": actor.id},
        )

    # ------------------------------------------------------------------
    # Moderation queue
    # ------------------------------------------------------------------

    def review_queue_entry(
        self,
        entry_id: str,
        moderator: Actor,
        decision: str,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Approve or reject a newly created entity and close its queue entry."""
        require_privileged(moderator, "review the moderation queue")
        if decision not in REVIEW_DECISIONS:
            raise ValidationError(f"Decision must be one of: {', '.join(REVIEW_DECISIONS)}")

        entry = self.store.get_queue_entry(entry_id)
        if entry is None:
            raise NotFoundError("Queue entry not found")
        if entry["status"] != "pending":
            raise ConflictError("Queue entry already reviewed")

        self._update_entity(entry["item_type"], entry["item_id"], {"status": decision})
        updated = self.store.update_queue_entry(entry_id, {
            "status": decision,
            "moderator_id": moderator.id,
            "moderator_notes": notes,
            "reviewed_at": datetime.now(),
        })
        logger.info(
            "Queue entry reviewed",
            entry_id=entry_id,
            item_type=entry["item_type"],
            item_id=entry["item_id"],
            decision=decision,
        )

        event = CONTENT_APPROVED if decision == "approved" else CONTENT_REJECTED
        best_effort(
            "Submitter notification",
            self.notifier.send,
            event,
            entry["submitted_by"],
            {"item_type": entry["item_type"], "item_id": entry["item_id"], "moderator_notes": notes},
        )
        return updated

    def list_queue(
        self,
        actor: Actor,
        status: Optional[str] = "pending",
        item_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        require_privileged(actor, "view the moderation queue")
        return self.store.list_queue(status=status, item_type=item_type)

    def set_status(self, actor: Actor, item_type: str, item_id: str, status: str) -> Dict[str, Any]:
        """Privileged status override, including soft removal."""
        require_privileged(actor, "change content status")
        if status not in ENTITY_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(ENTITY_STATUSES)}")
        self._load(item_type, item_id)
        updated = self._update_entity(item_type, item_id, {"status": status})
        logger.info("Status changed", item_type=item_type, item_id=item_id, status=status, actor_id=actor.id)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_worker_detail(self, worker_id: str, actor: Optional[Actor] = None) -> Dict[str, Any]:
        """
        Worker plus its current associations.

        Workers that are not approved are only visible to their creator,
        their linked account and privileged actors.
        """
        worker = self.store.get_worker(worker_id)
        if worker is None:
            raise NotFoundError("Worker not found")
        if worker["status"] != "approved":
            allowed = actor is not None and (
                actor.is_privileged or actor.id in (worker.get("created_by"), worker.get("user_id"))
            )
            if not allowed:
                raise NotFoundError("Worker not found")
        return {
            "worker": worker,
            "current_associations": self.associations.current_snapshot(worker_id),
        }
