"""Tests for agreements/store.py and agreements/db.py -- registry + transactions."""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import sqlite3
import pytest
from protocol import AgreementState
from agreements.db import Database
from agreements.milestones import Milestone, MilestoneList
from agreements.store import Agreement, AgreementStore


def _agreement(agreement_id=1, status=AgreementState.AWAITING_PAYMENT, created_at=100):
    return Agreement(
        id=agreement_id,
        client="client_alice",
        provider="provider_bob",
        total_cost=1000,
        status=status,
        start_time=100,
        end_time=200,
        dispute_deadline=300,
        milestones=MilestoneList([Milestone(f"m{i}", 200) for i in range(5)]),
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.fixture
def db():
    return Database(":memory:")


@pytest.fixture
def store(db):
    return AgreementStore(db)


class TestAgreementStore:
    def test_create_and_get(self, store):
        store.create(_agreement())
        a = store.get(1)
        assert a.client == "client_alice"
        assert a.provider == "provider_bob"
        assert a.total_cost == 1000
        assert a.status == AgreementState.AWAITING_PAYMENT
        assert a.dispute_deadline == 300
        assert len(a.milestones) == 5

    def test_get_missing(self, store):
        assert store.get(42) is None
        assert not store.exists(42)

    def test_duplicate_id_rejected(self, store):
        store.create(_agreement())
        with pytest.raises(sqlite3.IntegrityError):
            store.create(_agreement())

    def test_large_total_cost_survives(self, store):
        a = _agreement()
        a.total_cost = 2**100
        store.create(a)
        assert store.get(1).total_cost == 2**100

    def test_valid_transition(self, store):
        store.create(_agreement())
        assert store.update_status(1, AgreementState.ACTIVE, now=150)
        a = store.get(1)
        assert a.status == AgreementState.ACTIVE
        assert a.updated_at == 150

    def test_invalid_transition(self, store):
        store.create(_agreement())
        with pytest.raises(ValueError, match="Invalid state transition"):
            store.update_status(1, AgreementState.DELIVERED, now=150)

    def test_terminal_states_have_no_exits(self, store):
        store.create(_agreement(1, AgreementState.DELIVERED))
        store.create(_agreement(2, AgreementState.TERMINATED))
        for target in AgreementState:
            if target != AgreementState.DELIVERED:
                with pytest.raises(ValueError):
                    store.update_status(1, target, now=150)
            if target != AgreementState.TERMINATED:
                with pytest.raises(ValueError):
                    store.update_status(2, target, now=150)

    def test_same_status_is_noop(self, store):
        store.create(_agreement(status=AgreementState.UNDER_DISPUTE))
        assert store.update_status(1, AgreementState.UNDER_DISPUTE, now=150)
        assert store.get(1).updated_at == 100

    def test_update_status_missing(self, store):
        assert store.update_status(9, AgreementState.ACTIVE, now=1) is False

    def test_save_milestones(self, store):
        store.create(_agreement())
        a = store.get(1)
        a.milestones.mark_complete(3)
        store.save_milestones(1, a.milestones, now=160)
        assert [m.completed for m in store.get(1).milestones] == [False, False, False, True, False]

    def test_list_by_status(self, store):
        store.create(_agreement(1, created_at=100))
        store.create(_agreement(2, AgreementState.ACTIVE, created_at=101))
        store.create(_agreement(3, created_at=102))
        waiting = store.list_by_status("awaiting_payment")
        assert [a.id for a in waiting] == [3, 1]
        assert [a.id for a in store.list_by_status()] == [3, 2, 1]
        assert len(store.list_by_status(limit=1)) == 1
        assert store.count_by_status() == {"awaiting_payment": 2, "active": 1}

    def test_event_journal(self, store):
        store.create(_agreement())
        assert store.append_event(1, "create", "client_alice", 100, {"total_cost": "1000"}) == 0
        assert store.append_event(1, "deposit", "client_alice", 110) == 1
        events = store.events(1)
        assert [e.action for e in events] == ["create", "deposit"]
        assert events[0].detail == {"total_cost": "1000"}
        assert events[1].detail == {}
        assert store.events(2) == []

    def test_unknown_journal_action(self, store):
        store.create(_agreement())
        with pytest.raises(ValueError, match="Unknown journal action"):
            store.append_event(1, "teleport", "client_alice", 100)


class TestDatabaseTransaction:
    def test_commit(self, db, store):
        with db.transaction():
            store.create(_agreement())
        assert store.get(1) is not None

    def test_rollback_on_error(self, db, store):
        with pytest.raises(RuntimeError):
            with db.transaction():
                store.create(_agreement())
                raise RuntimeError("boom")
        assert store.get(1) is None

    def test_nested_joins_outer(self, db, store):
        with pytest.raises(RuntimeError):
            with db.transaction():
                with db.transaction():
                    store.create(_agreement(1))
                store.create(_agreement(2))
                raise RuntimeError("boom")
        assert store.get(1) is None
        assert store.get(2) is None

    def test_usable_after_rollback(self, db, store):
        with pytest.raises(RuntimeError):
            with db.transaction():
                raise RuntimeError("boom")
        with db.transaction():
            store.create(_agreement())
        assert store.exists(1)
