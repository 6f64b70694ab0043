"""
Тесты адаптера синхронизации с хранилищем.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from cabin_booking.booking.domain import BookingSnapshot
from cabin_booking.booking.infrastructure import (
    BookingSyncAdapter,
    InMemoryRecordStore,
    StoreTimestamp,
)
from cabin_booking.shared_kernel import BookingStatus, SyncError, WriteError

from conftest import T0, flush, make_booking, raw_record


class TestStoreTimestamp:
    """Тесты собственного типа времени хранилища."""

    def test_round_trip_keeps_microseconds(self):
        value = T0 + timedelta(microseconds=250000)

        stamp = StoreTimestamp.from_datetime(value)

        assert stamp.seconds == 1714557600
        assert stamp.nanoseconds == 250000000
        assert stamp.to_datetime() == value


class TestInMemoryRecordStore:
    """Тесты хранилища в памяти."""

    def test_subscribe_delivers_current_records(self, store):
        store.put_raw("r1", {"cabinId": "C1"})
        received = []

        store.subscribe(received.append, lambda e: None)

        assert received == [[{"cabinId": "C1", "id": "r1"}]]

    async def test_datetime_fields_are_stored_natively(self, store):
        record_id = await store.create({"timestamp": T0})

        stored = store.records()[0]

        assert stored["id"] == record_id
        assert isinstance(stored["timestamp"], StoreTimestamp)

    async def test_update_missing_record_fails(self, store):
        with pytest.raises(KeyError):
            await store.update("missing", {"status": "Approved"})

    async def test_unsubscribed_listener_gets_nothing(self, store):
        received = []
        unsubscribe = store.subscribe(received.append, lambda e: None)
        unsubscribe()

        await store.create({"cabinId": "C1"})
        await flush()

        assert len(received) == 1


class TestNormalization:
    """Тесты нормализации записей."""

    @pytest.mark.parametrize(
        "timestamp",
        [
            T0,
            StoreTimestamp.from_datetime(T0),
            "2024-05-01T10:00:00.000Z",
            "2024-05-01T10:00:00+00:00",
            1714557600000,
        ],
    )
    def test_all_time_representations_normalize_to_same_instant(self, sync, timestamp):
        record = dict(raw_record(make_booking()), id="b1", timestamp=timestamp)

        snapshot = sync.normalize([record])

        assert snapshot.get("b1").timestamp == T0

    def test_broken_store_timestamp_is_discarded(self, sync):
        broken = MagicMock()
        broken.to_datetime.side_effect = TypeError("corrupt")
        record = dict(raw_record(make_booking()), id="b1", timestamp=broken)

        assert len(sync.normalize([record])) == 0

    def test_record_without_timestamp_is_discarded(self, sync):
        record = dict(raw_record(make_booking()), id="b1")
        del record["timestamp"]

        assert len(sync.normalize([record])) == 0

    @pytest.mark.parametrize("timestamp", [None, "not a date", True, {"seconds": 1}])
    def test_unparseable_timestamp_is_discarded(self, sync, timestamp):
        record = dict(raw_record(make_booking()), id="b1", timestamp=timestamp)

        assert len(sync.normalize([record])) == 0

    def test_member_count_mismatch_is_discarded(self, sync):
        record = dict(raw_record(make_booking()), id="b1", capacity=5)

        assert len(sync.normalize([record])) == 0

    def test_valid_records_survive_next_to_invalid_ones(self, sync):
        good = dict(raw_record(make_booking("good")), id="good")
        bad = dict(raw_record(make_booking("bad")), id="bad", status="Unknown")

        snapshot = sync.normalize([bad, good])

        assert [b.id for b in snapshot] == ["good"]

    def test_snapshot_records_receipt_time(self, sync, clock):
        assert sync.normalize([]).received_at == clock()


class TestSubscription:
    """Тесты push-подписки и состояния соединения."""

    async def test_snapshot_follows_store_writes(self, sync, store):
        # Подготовка
        received = []
        sync.subscribe(received.append)

        # Действие
        store.put_raw("b1", raw_record(make_booking()))
        await flush()

        # Проверка
        assert sync.snapshot.get("b1").status == BookingStatus.PENDING
        assert isinstance(received[-1], BookingSnapshot)
        assert len(received[-1]) == 1

    async def test_late_subscriber_gets_last_snapshot_immediately(self, sync, store):
        store.put_raw("b1", raw_record(make_booking()))
        await flush()
        received = []

        sync.subscribe(received.append)

        assert len(received) == 1
        assert received[0].get("b1") is not None

    def test_subscriber_before_first_snapshot_waits(self, store):
        adapter = BookingSyncAdapter(store)
        received = []

        adapter.subscribe(received.append)
        assert received == []

        adapter.connect()
        assert len(received) == 1

    async def test_error_keeps_last_snapshot_and_marks_degraded(self, sync, store):
        # Подготовка
        store.put_raw("b1", raw_record(make_booking()))
        await flush()
        errors = []
        sync.subscribe(lambda s: None, on_error=errors.append)

        # Действие
        store.emit_error(ConnectionError("network down"))

        # Проверка
        assert sync.degraded
        assert isinstance(sync.last_error, SyncError)
        assert isinstance(errors[0], SyncError)
        assert sync.snapshot.get("b1") is not None

    async def test_next_snapshot_clears_degraded(self, sync, store):
        store.emit_error(ConnectionError("network down"))

        store.put_raw("b1", raw_record(make_booking()))
        await flush()

        assert not sync.degraded

    async def test_failing_listener_does_not_block_others(self, sync, store):
        received = []

        def broken(snapshot):
            raise RuntimeError("boom")

        sync.subscribe(broken)
        sync.subscribe(received.append)
        store.put_raw("b1", raw_record(make_booking()))
        await flush()

        assert len(received[-1]) == 1

    async def test_failing_listener_on_subscribe_stays_subscribed(self, sync, store):
        # Подготовка
        calls = []

        def broken(snapshot):
            calls.append(len(snapshot))
            raise RuntimeError("boom")

        # Действие: последний снимок доставляется сразу при подписке
        sync.subscribe(broken)
        store.put_raw("b1", raw_record(make_booking()))
        await flush()

        # Проверка
        assert calls == [0, 1]

    async def test_failing_error_listener_does_not_block_others(self, sync, store):
        errors = []
        sync.subscribe(lambda s: None, on_error=MagicMock(side_effect=RuntimeError("boom")))
        sync.subscribe(lambda s: None, on_error=errors.append)

        store.emit_error(ConnectionError("network down"))

        assert sync.degraded
        assert len(errors) == 1

    async def test_disconnect_stops_updates(self, sync, store):
        sync.disconnect()

        store.put_raw("b1", raw_record(make_booking()))
        await flush()

        assert not sync.connected
        assert len(sync.snapshot) == 0


class TestWrites:
    """Тесты операций записи."""

    async def test_create_returns_record_id(self, sync, store):
        result = await sync.create(raw_record(make_booking()))
        await flush()

        assert result.ok
        assert sync.snapshot.get(result.value) is not None

    async def test_update_writes_fields(self, sync, store):
        store.put_raw("b1", raw_record(make_booking()))

        result = await sync.update("b1", {"status": "Rejected"})
        await flush()

        assert result.ok
        assert sync.snapshot.get("b1").status == BookingStatus.REJECTED

    async def test_delete_removes_record(self, sync, store):
        store.put_raw("b1", raw_record(make_booking()))

        result = await sync.delete("b1")
        await flush()

        assert result.ok
        assert sync.snapshot.get("b1") is None

    @pytest.mark.parametrize("operation", ["create", "update", "delete"])
    async def test_store_failure_becomes_write_error(self, sync, store, operation):
        store.put_raw("b1", raw_record(make_booking()))
        store.fail_writes = ConnectionError("permission denied")

        if operation == "create":
            result = await sync.create(raw_record(make_booking()))
        elif operation == "update":
            result = await sync.update("b1", {"status": "Rejected"})
        else:
            result = await sync.delete("b1")

        assert not result.ok
        assert isinstance(result.error, WriteError)
        assert "permission denied" in str(result.error)

    async def test_update_of_deleted_record_is_write_error(self, sync):
        result = await sync.update("missing", {"status": "Rejected"})

        assert isinstance(result.error, WriteError)
