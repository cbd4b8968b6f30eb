"""
Debounced device event delivery.

Registry mutations arrive in bursts during a scan. Instead of calling
observers once per mutation, events are queued and delivered as one
batch after a short quiet interval; every new event restarts the timer.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ._types import Device, UpdateKind

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.1


@dataclass
class DeviceEvent:
    device: Device
    kind: UpdateKind

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "device": self.device.to_dict()}


Observer = Callable[[list[DeviceEvent]], Any]


class DebouncedEmitter:
    """
    Collects ``DeviceEvent``s and hands them to observers in batches.

    Observers are plain callables taking a list of events. A coroutine
    function is scheduled as a task so a slow consumer never holds up
    the registry. Events keep their emission order within a batch.
    """

    def __init__(self, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS):
        self.debounce_seconds = debounce_seconds
        self._observers: list[Observer] = []
        self._pending: list[DeviceEvent] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()

    def add_observer(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def clear_observers(self) -> None:
        self._observers.clear()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def emit(self, device: Device, kind: UpdateKind) -> None:
        """Queue an event and restart the quiet-interval timer."""
        self._pending.append(DeviceEvent(device.copy(), kind))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: deliver synchronously
            self.flush()
            return

        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.debounce_seconds, self.flush)

    def flush(self) -> list[DeviceEvent]:
        """Deliver everything queued so far; returns the delivered batch."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        batch, self._pending = self._pending, []
        if not batch:
            return batch

        for observer in list(self._observers):
            try:
                result = observer(batch)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
            except Exception:
                logger.exception(f"Device event observer {observer!r} failed")

        logger.debug(f"Delivered {len(batch)} device events to {len(self._observers)} observers")
        return batch
