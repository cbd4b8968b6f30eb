"""Tests for debounced device event delivery."""

import asyncio
from unittest.mock import MagicMock

import pytest

from lanlens._types import Device, UpdateKind
from lanlens.events import DebouncedEmitter


class TestSynchronousDelivery:
    """Without a running loop events are delivered immediately."""

    def test_emit_flushes(self):
        observer = MagicMock()
        emitter = DebouncedEmitter()
        emitter.add_observer(observer)

        emitter.emit(Device(mac="AA:BB:CC:00:00:01"), UpdateKind.DISCOVERED)

        observer.assert_called_once()
        batch = observer.call_args.args[0]
        assert batch[0].kind == UpdateKind.DISCOVERED
        assert emitter.pending_count == 0

    def test_events_are_snapshots(self):
        """Later changes to a device don't leak into delivered events."""
        received = []
        emitter = DebouncedEmitter()
        emitter.add_observer(received.extend)

        device = Device(mac="AA:BB:CC:00:00:01", hostname="before")
        emitter.emit(device, UpdateKind.UPDATED)
        device.hostname = "after"

        assert received[0].device.hostname == "before"

    def test_observer_registration(self):
        observer = MagicMock()
        emitter = DebouncedEmitter()
        emitter.add_observer(observer)
        emitter.add_observer(observer)
        emitter.remove_observer(observer)
        emitter.remove_observer(observer)

        emitter.emit(Device(mac="AA:BB:CC:00:00:01"), UpdateKind.UPDATED)

        observer.assert_not_called()

    def test_failing_observer_does_not_block_others(self):
        good = MagicMock()
        emitter = DebouncedEmitter()
        emitter.add_observer(MagicMock(side_effect=RuntimeError("boom")))
        emitter.add_observer(good)

        emitter.emit(Device(mac="AA:BB:CC:00:00:01"), UpdateKind.UPDATED)

        good.assert_called_once()

    def test_event_to_dict(self):
        received = []
        emitter = DebouncedEmitter()
        emitter.add_observer(received.extend)
        emitter.emit(Device(mac="aa:bb:cc:00:00:01"), UpdateKind.WENT_OFFLINE)

        data = received[0].to_dict()
        assert data["kind"] == "went_offline"
        assert data["device"]["mac"] == "AA:BB:CC:00:00:01"


class TestDebouncedDelivery:
    """Tests for batching inside an event loop."""

    @pytest.mark.asyncio
    async def test_burst_delivered_as_one_batch(self):
        """Should coalesce a burst into one ordered batch."""
        batches = []
        emitter = DebouncedEmitter(debounce_seconds=0.01)
        emitter.add_observer(batches.append)

        for i in range(3):
            emitter.emit(Device(mac=f"AA:BB:CC:00:00:0{i}"), UpdateKind.DISCOVERED)

        assert batches == []
        assert emitter.pending_count == 3

        await asyncio.sleep(0.05)

        assert len(batches) == 1
        assert [e.device.mac for e in batches[0]] == [
            "AA:BB:CC:00:00:00", "AA:BB:CC:00:00:01", "AA:BB:CC:00:00:02"
        ]

    @pytest.mark.asyncio
    async def test_explicit_flush(self):
        observer = MagicMock()
        emitter = DebouncedEmitter(debounce_seconds=10)
        emitter.add_observer(observer)

        emitter.emit(Device(mac="AA:BB:CC:00:00:01"), UpdateKind.UPDATED)
        batch = emitter.flush()

        assert len(batch) == 1
        observer.assert_called_once_with(batch)
        assert emitter.flush() == []

    @pytest.mark.asyncio
    async def test_async_observer_scheduled(self):
        received = asyncio.Event()

        async def observer(batch):
            received.set()

        emitter = DebouncedEmitter(debounce_seconds=0)
        emitter.add_observer(observer)
        emitter.emit(Device(mac="AA:BB:CC:00:00:01"), UpdateKind.DISCOVERED)

        await asyncio.wait_for(received.wait(), timeout=1)
