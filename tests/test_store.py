"""
Tests for store.py - relation store adapter.
"""

import pytest
from sqlalchemy.exc import OperationalError

from venuedesk.config import Settings
from venuedesk.errors import PersistenceError
from venuedesk.retry import CircuitBreaker
from venuedesk.store import DEFAULT_OWNER_PERMISSIONS, RelationStore


class TestEntityRows:
    """Test single-entity reads and writes."""

    def test_insert_and_get_worker(self, store, admin):
        worker = store.insert_worker({"name": "Ann", "sex": "female", "created_by": admin.id})

        loaded = store.get_worker(worker["id"])
        assert loaded["name"] == "Ann"
        assert loaded["status"] == "pending"

    def test_get_missing_returns_none(self, store):
        assert store.get_worker("missing") is None
        assert store.get_venue("missing") is None
        assert store.get_proposal("missing") is None

    def test_update_returns_new_row(self, store, admin):
        worker = store.insert_worker({"name": "Ann", "sex": "female", "created_by": admin.id})

        updated = store.update_worker(worker["id"], {"nickname": "A"})

        assert updated["nickname"] == "A"
        assert store.get_worker(worker["id"])["nickname"] == "A"

    def test_update_missing_returns_none(self, store):
        assert store.update_worker("missing", {"nickname": "A"}) is None

    def test_delete_worker(self, store, admin):
        worker = store.insert_worker({"name": "Ann", "sex": "female", "created_by": admin.id})

        assert store.delete_worker(worker["id"]) == 1
        assert store.get_worker(worker["id"]) is None

    def test_get_venues_skips_unknown_ids(self, store, nightclub, bar):
        venues = store.get_venues([nightclub["id"], bar["id"], "missing"])
        assert set(venues) == {nightclub["id"], bar["id"]}

    def test_get_venues_empty(self, store):
        assert store.get_venues([]) == {}

    def test_owner_permissions_default(self, store, owner, bar):
        store.insert_venue_owner(owner.id, bar["id"], permissions={"can_edit_pricing": False})

        ownership = store.get_venue_owner(owner.id, bar["id"])
        assert ownership["permissions"]["can_edit_info"] is True
        assert ownership["permissions"]["can_edit_pricing"] is False
        assert set(ownership["permissions"]) == set(DEFAULT_OWNER_PERMISSIONS)


class TestAssociationRows:
    """Test association row operations."""

    @pytest.fixture
    def worker(self, make_worker, admin):
        return make_worker(admin, is_freelance=True)

    def _attach(self, store, worker, venue, admin):
        return store.insert_associations([{
            "worker_id": worker["id"],
            "venue_id": venue["id"],
            "is_current": True,
            "created_by": admin.id,
        }])[0]

    def test_current_associations_include_venue_category(self, store, worker, nightclub, admin):
        self._attach(store, worker, nightclub, admin)

        rows = store.current_associations(worker["id"])

        assert len(rows) == 1
        assert rows[0]["venue_name"] == "Club A"
        assert rows[0]["venue_category"] == "Nightclub"

    def test_end_current_associations(self, store, worker, nightclub, bar, admin):
        a = self._attach(store, worker, nightclub, admin)
        b = self._attach(store, worker, bar, admin)

        ended = store.end_current_associations(worker["id"])

        assert sorted(ended) == sorted([a["id"], b["id"]])
        assert store.current_associations(worker["id"]) == []
        history = store.associations_for_worker(worker["id"])
        assert all(row["end_date"] is not None for row in history)

    def test_end_current_is_idempotent(self, store, worker, nightclub, admin):
        self._attach(store, worker, nightclub, admin)

        store.end_current_associations(worker["id"])
        assert store.end_current_associations(worker["id"]) == []

    def test_end_associations_skips_ended_rows(self, store, worker, nightclub, admin):
        row = self._attach(store, worker, nightclub, admin)

        assert store.end_associations([row["id"]]) == 1
        assert store.end_associations([row["id"]]) == 0

    def test_reopen_associations(self, store, worker, nightclub, admin):
        row = self._attach(store, worker, nightclub, admin)
        store.end_current_associations(worker["id"])

        store.reopen_associations([row["id"]])

        current = store.current_associations(worker["id"])
        assert [r["id"] for r in current] == [row["id"]]
        assert current[0]["end_date"] is None

    def test_delete_associations(self, store, worker, nightclub, admin):
        row = self._attach(store, worker, nightclub, admin)

        assert store.delete_associations([row["id"]]) == 1
        assert store.associations_for_worker(worker["id"]) == []

    def test_current_freelancers_at(self, store, worker, make_worker, nightclub, bar, admin):
        regular = make_worker(admin, name="Bea")
        self._attach(store, worker, nightclub, admin)
        self._attach(store, regular, nightclub, admin)
        ended = self._attach(store, make_worker(admin, name="Cat", is_freelance=True), nightclub, admin)
        store.end_associations([ended["id"]])

        assert [w["id"] for w in store.current_freelancers_at(nightclub["id"])] == [worker["id"]]
        assert store.current_freelancers_at(bar["id"]) == []


class TestProposalAndQueueRows:
    def test_list_proposals_filters(self, store, admin, member):
        store.insert_proposal({
            "item_type": "worker", "item_id": "w1", "proposed_changes": {}, "proposed_by": member.id,
        })
        store.insert_proposal({
            "item_type": "venue", "item_id": "v1", "proposed_changes": {}, "proposed_by": admin.id,
            "status": "approved",
        })

        assert len(store.list_proposals()) == 2
        assert len(store.list_proposals(status="pending")) == 1
        assert len(store.list_proposals(item_type="venue")) == 1
        assert [p["item_id"] for p in store.list_proposals(proposed_by=member.id)] == ["w1"]

    def test_close_pending_proposal_only_once(self, store, member, moderator):
        proposal = store.insert_proposal({
            "item_type": "worker", "item_id": "w1", "proposed_changes": {}, "proposed_by": member.id,
        })

        closed = store.close_pending_proposal(proposal["id"], {"status": "approved", "moderator_id": moderator.id})
        again = store.close_pending_proposal(proposal["id"], {"status": "rejected"})

        assert closed["status"] == "approved"
        assert closed["moderator_id"] == moderator.id
        assert again is None
        assert store.get_proposal(proposal["id"])["status"] == "approved"

    def test_close_missing_proposal(self, store):
        assert store.close_pending_proposal("missing", {"status": "approved"}) is None

    def test_list_queue_defaults_to_pending(self, store, member):
        store.insert_queue_entry({"item_type": "worker", "item_id": "w1", "submitted_by": member.id})
        store.insert_queue_entry({
            "item_type": "worker", "item_id": "w2", "submitted_by": member.id, "status": "approved",
        })

        entries = store.list_queue()

        assert [e["item_id"] for e in entries] == ["w1"]
        assert len(store.list_queue(status=None)) == 2


class TestFailureHandling:
    """Test error translation and circuit breaking."""

    def test_sqlalchemy_errors_become_persistence_errors(self, store, admin):
        # name is NOT NULL
        with pytest.raises(PersistenceError) as exc_info:
            store.insert_worker({"sex": "female", "created_by": admin.id})

        assert "insert workers" in str(exc_info.value)

    def test_failed_write_leaves_no_row(self, store, admin):
        with pytest.raises(PersistenceError):
            store.insert_worker({"sex": "female", "created_by": admin.id})

        from venuedesk.database import Worker, get_session
        session = get_session(store.db_path)
        assert session.query(Worker).count() == 0
        session.close()

    def test_breaker_opens_after_repeated_failures(self, db_path, admin):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, expected_exception=(Exception,))
        store = RelationStore(db_path, max_retries=0, retry_delay=0, breaker=breaker)

        for _ in range(2):
            with pytest.raises(PersistenceError):
                store.insert_worker({"sex": "female", "created_by": admin.id})

        assert breaker.state == CircuitBreaker.OPEN
        with pytest.raises(PersistenceError) as exc_info:
            store.get_worker("anything")
        assert "temporarily unavailable" in str(exc_info.value)

    def test_transient_read_errors_are_retried(self, db_path, monkeypatch):
        store = RelationStore(db_path, max_retries=2, retry_delay=0)
        calls = {"n": 0}
        original = store._run

        def flaky(fn, commit):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return original(fn, commit)

        monkeypatch.setattr(store, "_run", flaky)

        assert store.get_worker("missing") is None
        assert calls["n"] == 2

    def test_from_settings(self, db_path):
        settings = Settings(db_path=db_path, store_retries=1, breaker_threshold=3)
        store = RelationStore.from_settings(settings)
        assert store.db_path == db_path
        assert store._breaker.failure_threshold == 3
