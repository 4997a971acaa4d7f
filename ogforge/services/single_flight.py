"""
Single-flight coordination: at most one render in flight per key.

The first caller for a key becomes the leader and renders; later callers for
the same key park on the leader's future and receive the identical outcome
(artifact or exception). Slot state is only touched from the event loop
thread, and no await happens between checking and creating a slot.
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict

from ..core.errors import RenderCancelled
from ..utils.debug import print_step


@dataclass
class InFlightSlot:
    key: str
    future: asyncio.Future
    waiters: int = 0


@dataclass
class Flight:
    """A caller's view of a slot: either the leader or a waiter."""

    key: str
    is_leader: bool
    _slot: InFlightSlot = field(repr=False)
    _coordinator: "SingleFlightCoordinator" = field(repr=False)

    @property
    def done(self) -> bool:
        return self._slot.future.done()

    @property
    def waiters(self) -> int:
        return self._slot.waiters

    async def wait(self) -> Any:
        """Wait for the leader's outcome. Raises the leader's exception on failure."""
        try:
            # shield: a cancelled waiter must not cancel the shared future
            return await asyncio.shield(self._slot.future)
        except asyncio.CancelledError:
            if not self._slot.future.done():
                self._slot.waiters -= 1
            raise

    def complete(self, outcome: Any) -> None:
        if not self.is_leader:
            raise RuntimeError(f"Only the leader may complete flight '{self.key}'")
        self._coordinator._finish(self._slot, outcome)


class SingleFlightCoordinator:
    def __init__(self):
        self._slots: Dict[str, InFlightSlot] = {}

    def acquire(self, key: str) -> Flight:
        slot = self._slots.get(key)
        if slot is None:
            slot = InFlightSlot(key=key, future=asyncio.get_running_loop().create_future())
            self._slots[key] = slot
            return Flight(key=key, is_leader=True, _slot=slot, _coordinator=self)

        slot.waiters += 1
        return Flight(key=key, is_leader=False, _slot=slot, _coordinator=self)

    def complete(self, key: str, outcome: Any) -> None:
        """
        Publish the leader's outcome and return the key to idle.

        Args:
            key: Flight key
            outcome: The artifact, or an exception instance to raise in every waiter
        """
        slot = self._slots.get(key)
        if slot is not None:
            self._finish(slot, outcome)

    def _finish(self, slot: InFlightSlot, outcome: Any) -> None:
        if self._slots.get(slot.key) is slot:
            del self._slots[slot.key]
        if slot.future.done():
            return

        key = slot.key
        if isinstance(outcome, BaseException):
            slot.future.set_exception(outcome)
            # Mark retrieved so a flight with no waiters does not warn at GC time
            slot.future.exception()
        else:
            slot.future.set_result(outcome)

        print_step("Single-flight Complete", {
            "key": key,
            "waiters": slot.waiters,
            "failed": isinstance(outcome, BaseException),
        }, "output")

    @asynccontextmanager
    async def flight(self, key: str) -> AsyncIterator[Flight]:
        """
        Scoped acquisition. A leader that leaves the block without completing
        its flight (exception, cancellation, early return) still releases the
        slot, so waiters are never stranded.
        """
        flight = self.acquire(key)
        if not flight.is_leader:
            yield flight
            return

        slot = flight._slot
        try:
            yield flight
        except asyncio.CancelledError:
            self._finish(slot, RenderCancelled(f"Render for '{key}' was cancelled", key=key))
            raise
        except BaseException as exc:
            self._finish(slot, exc)
            raise
        finally:
            if not flight.done:
                self._finish(slot, RenderCancelled(
                    f"Render for '{key}' finished without publishing a result", key=key
                ))

    def in_flight(self, key: str) -> bool:
        return key in self._slots

    @property
    def pending_count(self) -> int:
        return len(self._slots)
