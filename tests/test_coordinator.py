"""
Tests for the synchronous SyncCoordinator, run against the in-memory
FakeRemote.
"""
import logging
import threading

import pytest

from .fake_remote import FakeRemote
from caldav_sync import SyncCoordinator
from caldav_sync import SyncTokenStore
from caldav_sync.lib import error
from caldav_sync.operations import partition
from caldav_sync.types import ChangeKind
from caldav_sync.types import ItemChange

WORK = "/calendars/u/work/"
HOME = "/calendars/u/home/"
SHARED = "/calendars/u/shared/"

ICAL = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//example//EN
BEGIN:VEVENT
UID:meeting-42@example.com
DTSTAMP:20261019T120000Z
DTSTART:20261020T090000Z
SUMMARY:Meeting
END:VEVENT
END:VCALENDAR
"""


class TestSyncCollection:
    def setup_method(self):
        self.remote = FakeRemote()
        self.remote.populate(WORK, 12)
        self.coordinator = SyncCoordinator(self.remote)

    def test_no_token_everything_new(self):
        result = self.coordinator.sync_collection(WORK)
        assert result.full_sync
        assert not result.fallback
        assert len(result.changes) == 12
        assert all(c.kind is ChangeKind.NEW for c in result.changes)
        assert result.new_token == "T1"
        assert len(result.snapshot) == 12

    def test_resync_without_changes_is_empty(self):
        first = self.coordinator.sync_collection(WORK)
        second = self.coordinator.sync_collection(
            WORK, first.new_token, first.snapshot
        )
        assert not second.full_sync
        assert not second.has_changes
        assert second.new_token == first.new_token
        assert second.snapshot == first.snapshot

    def test_work_calendar_scenario(self):
        first = self.coordinator.sync_collection(WORK)
        assert len(first.new_items) == 12
        assert first.new_token == "T1"

        second = self.coordinator.sync_collection(WORK, "T1", first.snapshot)
        assert second.changes == ()
        assert second.new_token == "T1"

        self.remote.expire_tokens(WORK)
        third = self.coordinator.sync_collection(WORK, "T1")
        assert third.full_sync
        assert third.fallback
        assert len(third.new_items) == 12
        assert third.new_token == "T2"

    def test_invalid_token_falls_back_to_full_sync(self, caplog):
        first = self.coordinator.sync_collection(WORK)
        self.remote.expire_tokens(WORK)
        with caplog.at_level(logging.WARNING, logger="caldav_sync"):
            result = self.coordinator.sync_collection(WORK, first.new_token)
        assert result.full_sync
        assert result.previous_token == first.new_token
        assert {c.identifier for c in result.changes} == {
            c.identifier for c in first.changes
        }
        assert "rejected" in caplog.text
        assert ("list_all", WORK) in self.remote.calls

    def test_fallback_reports_vanished_items_deleted(self):
        first = self.coordinator.sync_collection(WORK)
        self.remote.delete(WORK, f"{WORK}item3.ics")
        self.remote.expire_tokens(WORK)
        result = self.coordinator.sync_collection(
            WORK, first.new_token, first.snapshot
        )
        assert [c.identifier for c in result.deleted_items] == [f"{WORK}item3.ics"]
        assert len(result.new_items) == 11
        assert f"{WORK}item3.ics" not in result.snapshot

    def test_incremental_changes(self):
        first = self.coordinator.sync_collection(WORK)
        self.remote.put(WORK, f"{WORK}item0.ics", '"0-2"')
        self.remote.put(WORK, f"{WORK}new.ics", '"n-1"', data=ICAL)
        self.remote.delete(WORK, f"{WORK}item5.ics")

        result = self.coordinator.sync_collection(
            WORK, first.new_token, first.snapshot
        )
        assert not result.full_sync
        assert [c.identifier for c in result.modified_items] == [f"{WORK}item0.ics"]
        assert [c.identifier for c in result.new_items] == [f"{WORK}new.ics"]
        assert [c.identifier for c in result.deleted_items] == [f"{WORK}item5.ics"]
        assert result.new_token == "T4"
        assert result.new_items[0].uid == "meeting-42@example.com"

    def test_changed_then_deleted_within_one_delta(self):
        first = self.coordinator.sync_collection(WORK)
        self.remote.put(WORK, f"{WORK}item1.ics", '"1-2"')
        self.remote.delete(WORK, f"{WORK}item1.ics")
        result = self.coordinator.sync_collection(
            WORK, first.new_token, first.snapshot
        )
        assert result.changes == (
            ItemChange(identifier=f"{WORK}item1.ics", kind=ChangeKind.DELETED),
        )

    def test_partition_is_exact(self):
        first = self.coordinator.sync_collection(WORK)
        for i in range(3):
            self.remote.put(WORK, f"{WORK}item{i}.ics", f'"{i}-2"')
        self.remote.put(WORK, f"{WORK}extra.ics", '"e"')
        self.remote.delete(WORK, f"{WORK}item11.ics")
        result = self.coordinator.sync_collection(
            WORK, first.new_token, first.snapshot
        )
        parts = partition(result.changes)
        assert len(parts[ChangeKind.NEW]) == 1
        assert len(parts[ChangeKind.MODIFIED]) == 3
        assert len(parts[ChangeKind.DELETED]) == 1
        assert (
            len(result.new_items) + len(result.modified_items) + len(result.deleted_items)
            == len(result.changes)
        )

    def test_transport_error_propagates(self):
        self.remote.fail(WORK, error.ServerError(url=WORK, reason="503"))
        with pytest.raises(error.TransportError):
            self.coordinator.sync_collection(WORK, "T1")

    def test_empty_collection_id(self):
        with pytest.raises(ValueError):
            self.coordinator.sync_collection("")

    def test_cancelled_before_request(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(error.SyncCancelled):
            self.coordinator.sync_collection(WORK, cancel=cancel)
        assert self.remote.calls == []

    def test_cancelled_during_request(self):
        cancel = threading.Event()
        delta = self.remote.delta

        def cancelling_delta(cid, token):
            cancel.set()
            return delta(cid, token)

        self.remote.delta = cancelling_delta
        with pytest.raises(error.SyncCancelled):
            self.coordinator.sync_collection(WORK, "T1", cancel=cancel)

    def test_request_torn_down_by_cancel(self):
        cancel = threading.Event()

        def torn_down(cid, token):
            cancel.set()
            raise error.ConnectionFailure(url=cid, reason="connection closed")

        self.remote.delta = torn_down
        with pytest.raises(error.SyncCancelled) as excinfo:
            self.coordinator.sync_collection(WORK, "T1", cancel=cancel)
        assert isinstance(excinfo.value.__cause__, error.ConnectionFailure)


class TestSyncMany:
    def setup_method(self):
        self.remote = FakeRemote()
        for cid, count in ((WORK, 12), (HOME, 3), (SHARED, 5)):
            self.remote.populate(cid, count)
        self.coordinator = SyncCoordinator(self.remote, max_workers=2)

    def test_all_succeed(self):
        batch = self.coordinator.sync_many([WORK, HOME, SHARED], SyncTokenStore())
        assert batch.ok
        assert list(batch) == [WORK, HOME, SHARED]
        assert len(batch[WORK].changes) == 12
        assert len(batch[HOME].changes) == 3

    def test_batch_isolation(self, caplog):
        store = SyncTokenStore()
        store.merge(self.coordinator.sync_many([WORK, HOME, SHARED], store))
        before = store.get_state(HOME)

        self.remote.fail(HOME, error.AuthorizationError(url=HOME, reason="403"))
        self.remote.put(WORK, f"{WORK}x.ics", '"x"')
        self.remote.put(SHARED, f"{SHARED}y.ics", '"y"')
        with caplog.at_level(logging.ERROR, logger="caldav_sync"):
            batch = self.coordinator.sync_many([WORK, HOME, SHARED], store)

        assert not batch.ok
        assert set(batch.succeeded) == {WORK, SHARED}
        assert isinstance(batch.failed[HOME], error.AuthorizationError)
        assert "sync of %s failed" % HOME in caplog.text

        applied = store.merge(batch)
        assert sorted(applied) == sorted([WORK, SHARED])
        assert store.token(WORK) == "T2"
        assert store.token(SHARED) == "T2"
        assert store.get_state(HOME).token == before.token
        assert store.get_state(HOME).items == before.items

    def test_transport_error_keeps_stored_token(self):
        store = SyncTokenStore()
        store.merge(self.coordinator.sync_many([WORK], store))
        self.remote.fail(WORK, error.ConnectionFailure(url=WORK, reason="refused"))
        batch = self.coordinator.sync_many([WORK], store)
        store.merge(batch)
        assert store.token(WORK) == "T1"

    def test_store_is_not_mutated(self):
        store = SyncTokenStore()
        self.coordinator.sync_many([WORK, HOME], store)
        assert len(store) == 0
        assert store.token(WORK) is None

    def test_raise_for_failures_keeps_successes(self):
        self.remote.fail(SHARED, error.ServerError(url=SHARED, reason="500"))
        batch = self.coordinator.sync_many([WORK, SHARED], SyncTokenStore())
        with pytest.raises(error.PartialBatchFailure) as excinfo:
            batch.raise_for_failures()
        assert WORK in excinfo.value.batch.succeeded
        assert "1 of 2" in str(excinfo.value)

    def test_duplicates_synced_once(self):
        batch = self.coordinator.sync_many([WORK, WORK, HOME], SyncTokenStore())
        assert list(batch) == [WORK, HOME]
        assert self.remote.calls.count(("list_all", WORK)) == 1

    def test_empty_batch(self):
        batch = self.coordinator.sync_many([], SyncTokenStore())
        assert len(batch) == 0
        assert batch.ok

    def test_plain_token_mapping(self):
        batch = self.coordinator.sync_many([WORK], {WORK: "T1"})
        assert not batch[WORK].full_sync
        assert batch[WORK].changes == ()

    def test_unknown_collection_fails_alone(self):
        batch = self.coordinator.sync_many([WORK, "/calendars/u/nope/"], {})
        assert WORK in batch.succeeded
        assert isinstance(batch["/calendars/u/nope/"], error.NotFoundError)

    def test_cancelled_batch(self):
        cancel = threading.Event()
        cancel.set()
        batch = self.coordinator.sync_many([WORK, HOME], SyncTokenStore(), cancel)
        assert all(isinstance(e, error.SyncCancelled) for e in batch.values())
        assert self.remote.calls == []
