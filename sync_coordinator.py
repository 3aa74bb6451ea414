"""Keeps the observed service status in step with in-flight batches.

All state here lives on the UI context: the controller posts completions
back to it, and the settle delay is scheduled on it. Nothing here locks.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Mapping, Optional, Protocol, Sequence

from brew_services import SERVICE_ROLES, Action, BrewBarError, ServiceStatus, empty_status

logger = logging.getLogger(__name__)


BatchOperation = list[tuple[Action, str]]
Observer = Callable[[ServiceStatus, bool], None]


class Controller(Protocol):
    def set_service_state(self, name: str, running: bool,
                          on_done: Optional[Callable[[], None]] = None) -> None: ...

    def set_service_state_blocking(self, name: str, running: bool) -> None: ...

    def query_status(self, on_done: Callable[[ServiceStatus], None]) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None]) -> None: ...


class CoordinatorState(enum.Enum):
    IDLE   = "idle"
    BUSY   = "busy"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Batch builders
# ---------------------------------------------------------------------------

def toggle_batch(
    status: Mapping[str, bool],
    service: str,
    coupling: Mapping[str, Sequence[str]],
) -> BatchOperation:
    if service not in SERVICE_ROLES:
        raise BrewBarError(f"Unknown service: {service!r}")
    action = Action.STOP if status.get(service, False) else Action.START
    return [(action, name) for name in (service, *coupling.get(service, ()))]


def start_all_batch() -> BatchOperation:
    return [(Action.START, name) for name in SERVICE_ROLES]


def stop_all_batch() -> BatchOperation:
    return [(Action.STOP, name) for name in SERVICE_ROLES]


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class SyncCoordinator:
    SETTLE_DELAY = 0.5

    def __init__(
        self,
        controller: Controller,
        scheduler: Scheduler,
        observer: Optional[Observer] = None,
        settle_delay: Optional[float] = None,
        coupling: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self._controller = controller
        self._scheduler = scheduler
        self._observer = observer
        self._settle_delay = self.SETTLE_DELAY if settle_delay is None else settle_delay
        self._coupling = {"web": ["runtime"]} if coupling is None else dict(coupling)
        self._status: ServiceStatus = empty_status()
        self._state = CoordinatorState.IDLE

    # ---- Observed state -------------------------------------------------

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is not CoordinatorState.IDLE

    def current_status(self) -> ServiceStatus:
        return dict(self._status)

    def _notify(self) -> None:
        if self._observer is not None:
            self._observer(self.current_status(), self.busy)

    # ---- Refresh --------------------------------------------------------

    def refresh(self, on_done: Optional[Callable[[], None]] = None) -> None:
        def _on_status(status: ServiceStatus) -> None:
            if self._state is CoordinatorState.CLOSED:
                return
            merged = empty_status()
            merged.update({k: v for k, v in status.items() if k in merged})
            self._status = merged
            self._notify()
            if on_done is not None:
                on_done()

        self._controller.query_status(_on_status)

    # ---- Batches --------------------------------------------------------

    def submit(self, batch: BatchOperation) -> bool:
        if self._state is not CoordinatorState.IDLE:
            logger.info("batch rejected, coordinator is %s", self._state.value)
            return False

        ops = list(batch)
        unknown = [s for _, s in ops if s not in SERVICE_ROLES]
        if unknown:
            raise BrewBarError(f"Unknown service(s) in batch: {', '.join(unknown)}")

        self._state = CoordinatorState.BUSY
        self._notify()
        logger.info("batch: %s", ", ".join(f"{a.value} {s}" for a, s in ops) or "empty")

        remaining = len(ops)

        def _one_done() -> None:
            nonlocal remaining
            remaining -= 1
            if remaining == 0:
                self._settle()

        if not ops:
            self._settle()
            return True
        for action, service in ops:
            self._controller.set_service_state(service, action is Action.START, _one_done)
        return True

    def _settle(self) -> None:
        if self._state is CoordinatorState.CLOSED:
            return
        self._scheduler.call_later(self._settle_delay, self._after_settle)

    def _after_settle(self) -> None:
        if self._state is CoordinatorState.CLOSED:
            return
        self.refresh(self._finish_batch)

    def _finish_batch(self) -> None:
        self._state = CoordinatorState.IDLE
        self._notify()

    def toggle(self, service: str) -> BatchOperation:
        return toggle_batch(self._status, service, self._coupling)

    def start_all(self) -> BatchOperation:
        return start_all_batch()

    def stop_all(self) -> BatchOperation:
        return stop_all_batch()

    # ---- Shutdown -------------------------------------------------------

    def shutdown(self, stop_services: bool = True) -> None:
        """Stop every service, blocking the caller until each command exits.

        Completions from a batch still in flight are dropped afterwards.
        """
        if self._state is CoordinatorState.CLOSED:
            return
        self._state = CoordinatorState.CLOSED
        self._notify()
        if not stop_services:
            return
        logger.info("shutting down, stopping all services")
        for action, service in self.stop_all():
            self._controller.set_service_state_blocking(service, action is Action.START)
