"""Tests for the membership diff engine."""

from __future__ import annotations

import asyncio
import pytest
from pathlib import Path

from rosterwatch.engine import MembershipEngine
from rosterwatch.errors import MalformedSnapshot, PersistenceFailure
from rosterwatch.events import (
    GroupCreated,
    GroupDeleted,
    GroupTransfer,
    MemberJoined,
    MemberLeft,
)
from rosterwatch.models import Member
from rosterwatch.store import IndexStore


def member(member_id: str, online: bool = True) -> Member:
    return Member(id=member_id, name=f"name-{member_id}", online=online)


@pytest.fixture
def store(tmp_path: Path) -> IndexStore:
    return IndexStore(tmp_path / "state")


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def engine(store: IndexStore, events: list) -> MembershipEngine:
    e = MembershipEngine(store, events.append, grace_period=60.0)
    yield e
    e.close()


def files(store: IndexStore) -> tuple[bytes, bytes]:
    return store.groups_path.read_bytes(), store.members_path.read_bytes()


class TestGroupCreation:
    @pytest.mark.asyncio
    async def test_new_group(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B", online=False)], "Alpha Squad")

        assert list(engine.store.groups["alpha"]) == ["A", "B"]
        assert engine.store.members == {"A": "alpha", "B": "alpha"}
        assert events == [GroupCreated("alpha", "Alpha Squad", ["name-A", "name-B"])]
        assert engine.pending == {}

    @pytest.mark.asyncio
    async def test_new_group_is_persisted(self, engine: MembershipEngine):
        engine.process_snapshot("alpha", [member("A")])
        reloaded = IndexStore(engine.store.root)
        assert reloaded.load() is True
        assert reloaded.members == {"A": "alpha"}

    @pytest.mark.asyncio
    async def test_empty_group(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [])
        assert engine.store.groups["alpha"] == {}
        assert events == [GroupCreated("alpha", "", [])]


class TestDiff:
    @pytest.mark.asyncio
    async def test_plain_join(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        events.clear()

        engine.process_snapshot("alpha", [member("A"), member("B"), member("C")])

        assert events == [MemberJoined("C", "name-C", "alpha")]
        assert engine.store.members["C"] == "alpha"
        assert engine.pending == {}

    @pytest.mark.asyncio
    async def test_leave_creates_pending_departure(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        events.clear()

        engine.process_snapshot("alpha", [member("A")])

        assert events == [MemberLeft("B", "name-B", "alpha")]
        assert "B" not in engine.store.members
        assert list(engine.store.groups["alpha"]) == ["A"]
        pending = engine.pending["B"]
        assert pending.group_tag == "alpha"
        assert pending.name == "name-B"
        assert list(pending.members) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_leave_then_timeout_is_silent(self, store: IndexStore, events: list):
        engine = MembershipEngine(store, events.append, grace_period=0.05)
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("alpha", [member("A")])
        events.clear()

        await asyncio.sleep(0.2)

        assert engine.pending == {}
        assert events == []
        assert "B" not in store.members

    @pytest.mark.asyncio
    async def test_departures_notified_before_arrivals(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        events.clear()

        engine.process_snapshot("alpha", [member("A"), member("C")])

        assert [type(e) for e in events] == [MemberLeft, MemberJoined]

    @pytest.mark.asyncio
    async def test_leave_after_move_keeps_new_attribution(self, engine: MembershipEngine):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("beta", [member("C")])

        # beta's file is rewritten before alpha's
        engine.process_snapshot("beta", [member("C"), member("B")])
        engine.process_snapshot("alpha", [member("A")])

        assert list(engine.store.groups["beta"]) == ["C", "B"]
        assert engine.store.members == {"A": "alpha", "B": "beta", "C": "beta"}

    @pytest.mark.asyncio
    async def test_status_change_is_not_a_delta(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A", online=True)])
        events.clear()

        engine.process_snapshot("alpha", [Member("A", "renamed", online=False)])

        assert events == []
        assert engine.store.groups["alpha"]["A"].name == "renamed"
        assert engine.store.groups["alpha"]["A"].online is False

    @pytest.mark.asyncio
    async def test_identical_snapshot_is_idempotent(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("alpha", [member("A"), member("B")])
        before = files(engine.store)
        events.clear()

        engine.process_snapshot("alpha", [member("A"), member("B")])

        assert events == []
        assert files(engine.store) == before


class TestGracePeriod:
    @pytest.mark.asyncio
    async def test_transfer(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("beta", [member("C")])
        engine.process_snapshot("alpha", [member("A")])
        events.clear()

        engine.process_snapshot("beta", [member("C"), member("B")])

        assert len(events) == 1
        transfer = events[0]
        assert isinstance(transfer, GroupTransfer)
        assert transfer.member_id == "B"
        assert transfer.from_group == "alpha"
        assert list(transfer.from_members) == ["A", "B"]
        assert transfer.to_group == "beta"
        assert list(transfer.to_members) == ["C", "B"]
        assert engine.store.members["B"] == "beta"
        assert "B" not in engine.pending

    @pytest.mark.asyncio
    async def test_transfer_into_new_group_is_creation(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("alpha", [member("A")])
        events.clear()

        engine.process_snapshot("gamma", [member("B")], "Gamma")

        assert events == [GroupCreated("gamma", "Gamma", ["name-B"])]
        assert engine.store.members["B"] == "gamma"

    @pytest.mark.asyncio
    async def test_rejoin_is_suppressed(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("alpha", [member("A")])
        events.clear()

        engine.process_snapshot("alpha", [member("A"), member("B")])

        assert events == []
        assert engine.store.members["B"] == "alpha"
        assert "B" not in engine.pending

    @pytest.mark.asyncio
    async def test_join_after_timeout_is_fresh(self, store: IndexStore, events: list):
        engine = MembershipEngine(store, events.append, grace_period=0.05)
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("beta", [member("C")])
        engine.process_snapshot("alpha", [member("A")])
        await asyncio.sleep(0.2)
        events.clear()

        engine.process_snapshot("beta", [member("C"), member("B")])

        assert events == [MemberJoined("B", "name-B", "beta")]

    @pytest.mark.asyncio
    async def test_expire_departure_is_idempotent(self, engine: MembershipEngine):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("alpha", [member("A")])

        assert engine.expire_departure("B") is True
        assert engine.expire_departure("B") is False
        assert engine.pending == {}

    @pytest.mark.asyncio
    async def test_stale_timer_does_not_expire_newer_departure(self, engine: MembershipEngine):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("alpha", [member("A")])
        first = engine.pending["B"]
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("alpha", [member("A")])
        second = engine.pending["B"]

        assert engine.expire_departure("B", first) is False
        assert engine.pending["B"] is second
        assert engine.expire_departure("B", second) is True


class TestRemoveGroup:
    @pytest.mark.asyncio
    async def test_remove(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("beta", [member("C")])
        events.clear()

        assert engine.remove_group("alpha") is True

        assert "alpha" not in engine.store.groups
        assert engine.store.members == {"C": "beta"}
        assert events == [GroupDeleted("alpha")]
        assert engine.pending == {}

    @pytest.mark.asyncio
    async def test_remove_twice_is_noop(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A")])
        engine.remove_group("alpha")
        events.clear()

        assert engine.remove_group("alpha") is False
        assert events == []

    @pytest.mark.asyncio
    async def test_remove_keeps_members_attributed_elsewhere(self, engine: MembershipEngine):
        engine.process_snapshot("alpha", [member("A")])
        engine.process_snapshot("beta", [member("A")])  # A is now attributed to beta

        engine.remove_group("alpha")

        assert engine.store.members == {"A": "beta"}

    @pytest.mark.asyncio
    async def test_pending_departure_survives_group_removal(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A"), member("B")])
        engine.process_snapshot("beta", [member("C")])
        engine.process_snapshot("alpha", [member("A")])
        engine.remove_group("alpha")
        events.clear()

        engine.process_snapshot("beta", [member("C"), member("B")])

        assert len(events) == 1
        assert isinstance(events[0], GroupTransfer)
        assert events[0].from_group == "alpha"


class TestMalformedInput:
    @pytest.mark.asyncio
    async def test_duplicate_ids_rejected(self, engine: MembershipEngine, events: list):
        engine.process_snapshot("alpha", [member("A")])
        events.clear()

        with pytest.raises(MalformedSnapshot, match="duplicate"):
            engine.process_snapshot("alpha", [member("B"), member("B")])

        assert list(engine.store.groups["alpha"]) == ["A"]
        assert engine.store.members == {"A": "alpha"}
        assert events == []

    @pytest.mark.asyncio
    async def test_empty_group_tag_rejected(self, engine: MembershipEngine):
        with pytest.raises(MalformedSnapshot):
            engine.process_snapshot("", [member("A")])
        assert engine.store.groups == {}

    @pytest.mark.asyncio
    async def test_member_without_id_rejected(self, engine: MembershipEngine):
        with pytest.raises(MalformedSnapshot):
            engine.process_snapshot("alpha", [Member(id="", name="ghost")])
        assert engine.store.groups == {}


class TestPersistenceFailure:
    @pytest.mark.asyncio
    async def test_save_failure_keeps_memory_state(
        self, engine: MembershipEngine, events: list, monkeypatch, caplog
    ):
        def boom() -> None:
            raise PersistenceFailure("disk full")

        monkeypatch.setattr(engine.store, "save", boom)

        engine.process_snapshot("alpha", [member("A")])

        assert engine.store.members == {"A": "alpha"}
        assert len(events) == 1
        assert "disk full" in caplog.text
