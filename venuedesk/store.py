"""
Relation store adapter.

Responsibilities:
- Single-entity reads and writes against the relational store.
- Retrying idempotent reads on transient errors.
- Failing fast through a circuit breaker when the store keeps failing.

Non-Responsibilities:
- No business rules (freelance, moderation, authorization).
- No atomicity across calls: every public method opens its own session
  and commits before returning.

Invariant:
Rows cross this boundary as plain dicts, never as attached ORM objects.
"""

import functools
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .database import (
    Association,
    Proposal,
    QueueEntry,
    User,
    Venue,
    VenueOwner,
    Worker,
    get_engine,
)
from .errors import PersistenceError
from .logger import get_logger
from .retry import CircuitBreaker, CircuitOpenError, RetryError, exponential_backoff, is_transient_error

logger = get_logger()

DEFAULT_OWNER_PERMISSIONS = {
    "can_edit_info": True,
    "can_edit_pricing": True,
    "can_edit_photos": True,
    "can_edit_employees": False,
    "can_view_analytics": True,
}


class RelationStore:
    """
    Thin adapter over the SQLAlchemy schema.

    Usage:
        store = RelationStore(Path("data/venuedesk.db"))
        worker = store.insert_worker({"name": "Ann", "sex": "female", "created_by": uid})
        store.update_worker(worker["id"], {"nickname": "A"})
    """

    def __init__(
        self,
        db_path: Path,
        max_retries: int = 2,
        retry_delay: float = 0.2,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.db_path = db_path
        self._session_factory = sessionmaker(bind=get_engine(db_path), expire_on_commit=False)
        self._breaker = breaker or CircuitBreaker(expected_exception=(SQLAlchemyError, RetryError))
        self._retry = exponential_backoff(
            max_retries=max_retries,
            base_delay=retry_delay,
            exceptions=(OperationalError,),
            retry_if=is_transient_error,
            on_retry=self._log_retry,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelationStore":
        return cls(
            settings.db_path,
            max_retries=settings.store_retries,
            retry_delay=settings.store_retry_delay,
            breaker=CircuitBreaker(
                failure_threshold=settings.breaker_threshold,
                recovery_timeout=settings.breaker_timeout,
                expected_exception=(SQLAlchemyError, RetryError),
            ),
        )

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _log_retry(attempt: int, exc: Exception, delay: float):
        logger.warning("Retrying store read", attempt=attempt, delay=delay, error=str(exc))

    def _run(self, fn: Callable, commit: bool):
        session = self._session_factory()
        try:
            result = fn(session)
            if commit:
                session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _call(self, op: str, fn: Callable, commit: bool = False):
        logger.record_store_call()
        runner = functools.partial(self._run, fn, commit)
        if not commit:
            runner = self._retry(runner)
        try:
            return self._breaker.call(runner)
        except CircuitOpenError as e:
            logger.record_store_failure("CircuitOpen")
            logger.error("Store call refused, circuit open", op=op)
            raise PersistenceError("Store temporarily unavailable") from e
        except (SQLAlchemyError, RetryError) as e:
            logger.record_store_failure(type(e).__name__)
            logger.error("Store call failed", op=op, error=str(e))
            raise PersistenceError(f"Store operation failed: {op}") from e

    def _read(self, op: str, fn: Callable):
        return self._call(op, fn, commit=False)

    def _write(self, op: str, fn: Callable):
        return self._call(op, fn, commit=True)

    # ------------------------------------------------------------------
    # Generic single-row helpers
    # ------------------------------------------------------------------

    def _get(self, model, row_id: str) -> Optional[Dict[str, Any]]:
        def fn(session):
            row = session.get(model, row_id)
            return row.to_dict() if row is not None else None
        return self._read(f"get {model.__tablename__}", fn)

    def _insert(self, model, fields: Dict[str, Any]) -> Dict[str, Any]:
        def fn(session):
            row = model(**fields)
            session.add(row)
            session.flush()
            return row.to_dict()
        return self._write(f"insert {model.__tablename__}", fn)

    def _update(self, model, row_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        def fn(session):
            row = session.get(model, row_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            session.flush()
            return row.to_dict()
        return self._write(f"update {model.__tablename__}", fn)

    def _delete(self, model, row_id: str) -> int:
        def fn(session):
            return session.query(model).filter(model.id == row_id).delete(synchronize_session=False)
        return self._write(f"delete {model.__tablename__}", fn)

    # ------------------------------------------------------------------
    # Users and ownership
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._get(User, user_id)

    def insert_user(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(User, fields)

    def get_venue_owner(self, user_id: str, venue_id: str) -> Optional[Dict[str, Any]]:
        def fn(session):
            row = (
                session.query(VenueOwner)
                .filter_by(user_id=user_id, venue_id=venue_id)
                .first()
            )
            return row.to_dict() if row is not None else None
        return self._read("get venue owner", fn)

    def insert_venue_owner(
        self,
        user_id: str,
        venue_id: str,
        owner_role: str = "owner",
        permissions: Optional[Dict[str, bool]] = None,
    ) -> Dict[str, Any]:
        final_permissions = {**DEFAULT_OWNER_PERMISSIONS, **(permissions or {})}
        return self._insert(VenueOwner, {
            "user_id": user_id,
            "venue_id": venue_id,
            "owner_role": owner_role,
            "permissions": final_permissions,
        })

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def get_worker(self, worker_id: str) -> Optional[Dict[str, Any]]:
        return self._get(Worker, worker_id)

    def insert_worker(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(Worker, fields)

    def update_worker(self, worker_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(Worker, worker_id, fields)

    def delete_worker(self, worker_id: str) -> int:
        return self._delete(Worker, worker_id)

    # ------------------------------------------------------------------
    # Venues
    # ------------------------------------------------------------------

    def get_venue(self, venue_id: str) -> Optional[Dict[str, Any]]:
        return self._get(Venue, venue_id)

    def get_venues(self, venue_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Return the venues that exist among venue_ids, keyed by id."""
        venue_ids = list(venue_ids)
        if not venue_ids:
            return {}

        def fn(session):
            rows = session.query(Venue).filter(Venue.id.in_(venue_ids)).all()
            return {v.id: v.to_dict() for v in rows}
        return self._read("get venues", fn)

    def insert_venue(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(Venue, fields)

    def update_venue(self, venue_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(Venue, venue_id, fields)

    def delete_venue(self, venue_id: str) -> int:
        return self._delete(Venue, venue_id)

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------

    def current_associations(self, worker_id: str) -> List[Dict[str, Any]]:
        """Current rows for a worker, each with venue_name and venue_category."""
        def fn(session):
            rows = (
                session.query(Association, Venue)
                .outerjoin(Venue, Venue.id == Association.venue_id)
                .filter(Association.worker_id == worker_id, Association.is_current.is_(True))
                .order_by(Association.start_date)
                .all()
            )
            result = []
            for assoc, venue in rows:
                data = assoc.to_dict()
                data["venue_name"] = venue.name if venue is not None else None
                data["venue_category"] = venue.category if venue is not None else None
                result.append(data)
            return result
        return self._read("current associations", fn)

    def associations_for_worker(self, worker_id: str) -> List[Dict[str, Any]]:
        def fn(session):
            rows = (
                session.query(Association)
                .filter_by(worker_id=worker_id)
                .order_by(Association.start_date)
                .all()
            )
            return [a.to_dict() for a in rows]
        return self._read("worker associations", fn)

    def current_freelancers_at(self, venue_id: str) -> List[Dict[str, Any]]:
        """Freelance workers currently associated with the venue."""
        def fn(session):
            rows = (
                session.query(Worker)
                .join(Association, Association.worker_id == Worker.id)
                .filter(
                    Association.venue_id == venue_id,
                    Association.is_current.is_(True),
                    Worker.is_freelance.is_(True),
                )
                .order_by(Worker.name)
                .all()
            )
            return [w.to_dict() for w in rows]
        return self._read("venue freelancers", fn)

    def insert_associations(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert several rows in one call; either all land or none."""
        def fn(session):
            rows = [Association(**record) for record in records]
            session.add_all(rows)
            session.flush()
            return [row.to_dict() for row in rows]
        return self._write("insert associations", fn)

    def end_current_associations(self, worker_id: str) -> List[str]:
        """Mark every current row of the worker as ended. Returns the ended ids."""
        def fn(session):
            rows = (
                session.query(Association)
                .filter(Association.worker_id == worker_id, Association.is_current.is_(True))
                .all()
            )
            now = datetime.now()
            for row in rows:
                row.is_current = False
                row.end_date = now
            return [row.id for row in rows]
        return self._write("end current associations", fn)

    def end_associations(self, association_ids: List[str]) -> int:
        """End the given rows; rows that are already ended are left alone."""
        def fn(session):
            return (
                session.query(Association)
                .filter(Association.id.in_(association_ids), Association.is_current.is_(True))
                .update({"is_current": False, "end_date": datetime.now()}, synchronize_session=False)
            )
        return self._write("end associations", fn)

    def reopen_associations(self, association_ids: List[str]) -> int:
        def fn(session):
            return (
                session.query(Association)
                .filter(Association.id.in_(association_ids))
                .update({"is_current": True, "end_date": None}, synchronize_session=False)
            )
        return self._write("reopen associations", fn)

    def delete_associations(self, association_ids: List[str]) -> int:
        def fn(session):
            return (
                session.query(Association)
                .filter(Association.id.in_(association_ids))
                .delete(synchronize_session=False)
            )
        return self._write("delete associations", fn)

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def get_proposal(self, proposal_id: str) -> Optional[Dict[str, Any]]:
        return self._get(Proposal, proposal_id)

    def insert_proposal(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(Proposal, fields)

    def update_proposal(self, proposal_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(Proposal, proposal_id, fields)

    def close_pending_proposal(self, proposal_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Update the proposal only while it is still pending.

        The status check and the write are one UPDATE statement, so two
        reviewers racing on the same proposal cannot both succeed. Returns
        None when no pending row matched.
        """
        def fn(session):
            matched = (
                session.query(Proposal)
                .filter(Proposal.id == proposal_id, Proposal.status == "pending")
                .update(fields, synchronize_session=False)
            )
            if not matched:
                return None
            return session.get(Proposal, proposal_id).to_dict()
        return self._write("close edit_proposals", fn)

    def list_proposals(
        self,
        status: Optional[str] = None,
        item_type: Optional[str] = None,
        proposed_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Newest first, optionally filtered."""
        def fn(session):
            query = session.query(Proposal)
            if status:
                query = query.filter(Proposal.status == status)
            if item_type:
                query = query.filter(Proposal.item_type == item_type)
            if proposed_by:
                query = query.filter(Proposal.proposed_by == proposed_by)
            return [p.to_dict() for p in query.order_by(Proposal.created_at.desc()).all()]
        return self._read("list proposals", fn)

    # ------------------------------------------------------------------
    # Moderation queue
    # ------------------------------------------------------------------

    def get_queue_entry(self, entry_id: str) -> Optional[Dict[str, Any]]:
        return self._get(QueueEntry, entry_id)

    def insert_queue_entry(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(QueueEntry, fields)

    def update_queue_entry(self, entry_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(QueueEntry, entry_id, fields)

    def list_queue(self, status: Optional[str] = "pending", item_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Oldest first so moderators work the backlog in order."""
        def fn(session):
            query = session.query(QueueEntry)
            if status:
                query = query.filter(QueueEntry.status == status)
            if item_type:
                query = query.filter(QueueEntry.item_type == item_type)
            return [q.to_dict() for q in query.order_by(QueueEntry.created_at).all()]
        return self._read("list queue", fn)
