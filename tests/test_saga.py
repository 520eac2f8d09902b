"""
Tests for the creation sagas.
"""

import pytest
from venuedesk import saga as saga_module
from venuedesk.collaborators import CONTENT_PENDING, MODERATORS
from venuedesk.config import WORKER_CREATION_POINTS
from venuedesk.database import Association, QueueEntry, Venue, Worker, get_session
from venuedesk.errors import BusinessRuleError, ConflictError, PersistenceError, ValidationError
from venuedesk.saga import Compensations, CreationSaga


def row_counts(db_path) -> dict:
    session = get_session(db_path)
    try:
        return {
            "workers": session.query(Worker).count(),
            "venues": session.query(Venue).count(),
            "associations": session.query(Association).count(),
            "queue": session.query(QueueEntry).count(),
        }
    finally:
        session.close()


class TestCompensations:
    def test_runs_newest_first(self):
        calls = []
        undo = Compensations("test")
        undo.add("first", calls.append, 1)
        undo.add("second", calls.append, 2)

        assert undo.run() == 0
        assert calls == [2, 1]

    def test_failed_step_does_not_stop_the_rest(self):
        calls = []

        def broken():
            raise PersistenceError("gone")

        undo = Compensations("test")
        undo.add("first", calls.append, 1)
        undo.add("broken", broken)

        assert undo.run() == 1
        assert calls == [1]


class TestCreateWorker:
    """Test the create worker -> associate -> enqueue saga."""

    def test_creates_pending_worker_with_queue_entry(self, saga, store, member, bar):
        worker = saga.create_worker({"name": "Ann", "sex": "female", "venue_id": bar["id"]}, member)

        assert worker["status"] == "pending"
        assert worker["created_by"] == member.id
        assert worker["is_freelance"] is False

        current = store.current_associations(worker["id"])
        assert [row["venue_id"] for row in current] == [bar["id"]]
        assert current[0]["notes"] == "Initial association"

        queue = store.list_queue(item_type="worker")
        assert [(e["item_id"], e["submitted_by"]) for e in queue] == [(worker["id"], member.id)]

    def test_admin_created_worker_is_still_pending(self, saga, admin):
        worker = saga.create_worker({"name": "Ann", "sex": "female"}, admin)
        assert worker["status"] == "pending"

    def test_without_venues(self, saga, store, member):
        worker = saga.create_worker({"name": "Ann", "sex": "female"}, member)

        assert store.current_associations(worker["id"]) == []
        assert len(store.list_queue()) == 1

    def test_freelancer_at_several_nightclubs(self, saga, store, member, nightclub, nightclub_b):
        worker = saga.create_worker({
            "name": "Ann",
            "sex": "female",
            "is_freelance": True,
            "venue_ids": [nightclub["id"], nightclub_b["id"]],
        }, member)

        assert len(store.current_associations(worker["id"])) == 2

    def test_notifies_and_awards_points(self, saga, member, notifier, points):
        worker = saga.create_worker({"name": "Ann", "sex": "female"}, member)

        recipients = [recipient for event, recipient, _ in notifier.sent if event == CONTENT_PENDING]
        assert recipients == [MODERATORS, member.id]
        assert points.awards == [(member.id, WORKER_CREATION_POINTS, "worker", worker["id"])]

    def test_collaborator_failures_do_not_fail_creation(self, store, member, broken_collaborator):
        broken = broken_collaborator
        worker = CreationSaga(store, broken, broken).create_worker({"name": "Ann", "sex": "female"}, member)

        assert store.get_worker(worker["id"]) is not None


class TestCreateWorkerValidation:
    """Rule violations are raised before anything is written."""

    def test_regular_worker_with_two_venues(self, saga, db_path, member, nightclub, bar):
        before = row_counts(db_path)

        with pytest.raises(BusinessRuleError):
            saga.create_worker({"name": "Ann", "sex": "female", "venue_ids": [nightclub["id"], bar["id"]]}, member)

        assert row_counts(db_path) == before

    def test_freelancer_at_bar(self, saga, db_path, member, bar):
        before = row_counts(db_path)

        with pytest.raises(BusinessRuleError, match="Bar B"):
            saga.create_worker({"name": "Ann", "sex": "female", "is_freelance": True, "venue_id": bar["id"]}, member)

        assert row_counts(db_path) == before

    def test_duplicate_venue(self, saga, db_path, member, nightclub):
        with pytest.raises(ConflictError):
            saga.create_worker({
                "name": "Ann", "sex": "female", "is_freelance": True,
                "venue_ids": [nightclub["id"], nightclub["id"]],
            }, member)

        assert row_counts(db_path)["workers"] == 0

    def test_missing_required_field(self, saga, member):
        with pytest.raises(ValidationError):
            saga.create_worker({"name": "Ann"}, member)


class TestCreateWorkerRollback:
    """A failing step leaves no trace of the earlier ones."""

    def test_queue_failure_removes_worker_and_associations(self, saga, store, db_path, member, bar, fail_on):
        before = row_counts(db_path)
        fail_on(store, "insert_queue_entry")

        with pytest.raises(PersistenceError):
            saga.create_worker({"name": "Ann", "sex": "female", "venue_id": bar["id"]}, member)

        assert row_counts(db_path) == before

    def test_association_failure_removes_worker(self, saga, store, db_path, member, bar, fail_on):
        before = row_counts(db_path)
        fail_on(store, "insert_associations")

        with pytest.raises(PersistenceError):
            saga.create_worker({"name": "Ann", "sex": "female", "venue_id": bar["id"]}, member)

        assert row_counts(db_path) == before

    def test_original_error_survives_compensation_failure(self, saga, store, db_path, member, bar, fail_on):
        fail_on(store, "insert_queue_entry", "queue insert failed")
        fail_on(store, "delete_worker", "delete failed")
        failures_before = saga_module.logger.metrics["compensation_failures"]

        with pytest.raises(PersistenceError, match="queue insert failed"):
            saga.create_worker({"name": "Ann", "sex": "female", "venue_id": bar["id"]}, member)

        assert saga_module.logger.metrics["compensation_failures"] == failures_before + 1
        # Association cleanup still ran even though the worker delete failed
        counts = row_counts(db_path)
        assert counts["associations"] == 0
        assert counts["workers"] == 1

    def test_rollback_recorded_in_metrics(self, saga, store, member, fail_on):
        outcomes = saga_module.logger.metrics["saga_outcomes"]
        rolled_back = outcomes.get("create_worker", {}).get("rolled_back", 0)
        fail_on(store, "insert_queue_entry")

        with pytest.raises(PersistenceError):
            saga.create_worker({"name": "Ann", "sex": "female"}, member)

        assert outcomes["create_worker"]["rolled_back"] == rolled_back + 1

    def test_no_notifications_on_rollback(self, saga, store, member, notifier, points, fail_on):
        fail_on(store, "insert_queue_entry")

        with pytest.raises(PersistenceError):
            saga.create_worker({"name": "Ann", "sex": "female"}, member)

        assert notifier.sent == []
        assert points.awards == []


class TestCreateVenue:
    VENUE = {"name": "New Club", "address": "2 Beach Road", "zone": "Central", "category": "Nightclub"}

    def test_member_venue_is_queued(self, saga, store, member, notifier):
        venue = saga.create_venue(dict(self.VENUE), member)

        assert venue["status"] == "pending"
        assert [e["item_id"] for e in store.list_queue(item_type="venue")] == [venue["id"]]
        assert CONTENT_PENDING in notifier.events()

    def test_admin_venue_is_approved(self, saga, store, admin):
        venue = saga.create_venue(dict(self.VENUE), admin)

        assert venue["status"] == "approved"
        assert store.list_queue(item_type="venue") == []

    def test_queue_failure_removes_venue(self, saga, store, db_path, member, fail_on):
        before = row_counts(db_path)
        fail_on(store, "insert_queue_entry")

        with pytest.raises(PersistenceError):
            saga.create_venue(dict(self.VENUE), member)

        assert row_counts(db_path) == before

    def test_invalid_payload(self, saga, member):
        with pytest.raises(ValidationError):
            saga.create_venue({"name": "New Club"}, member)
