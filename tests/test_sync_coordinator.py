"""Tests for SyncCoordinator: batch serialization, settle + refresh, shutdown."""

import queue

import pytest

from brew_services import Action, BrewBarError, ServiceController
from sync_coordinator import (
    CoordinatorState,
    SyncCoordinator,
    start_all_batch,
    stop_all_batch,
    toggle_batch,
)


class FakeController:
    """Records commands; completions fire only when the test says so."""

    def __init__(self):
        self.issued = []
        self.pending = []
        self.queries = []
        self.blocking = []

    def set_service_state(self, name, running, on_done=None):
        self.issued.append((Action.START if running else Action.STOP, name))
        self.pending.append(on_done)

    def set_service_state_blocking(self, name, running):
        self.blocking.append((Action.START if running else Action.STOP, name))

    def query_status(self, on_done):
        self.queries.append(on_done)

    def complete_all(self):
        pending, self.pending = self.pending, []
        for cb in pending:
            if cb is not None:
                cb()

    def answer_query(self, status, index=-1):
        self.queries.pop(index)(status)


class FakeScheduler:
    def __init__(self):
        self.calls = []

    def call_later(self, delay, fn):
        self.calls.append((delay, fn))

    def fire(self):
        calls, self.calls = self.calls, []
        for _, fn in calls:
            fn()


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def seen():
    return []


@pytest.fixture
def coord(controller, scheduler, seen):
    return SyncCoordinator(
        controller, scheduler,
        observer=lambda status, busy: seen.append((status, busy)),
    )


def run_batch_to_completion(coord, controller, scheduler, status):
    controller.complete_all()
    scheduler.fire()
    controller.answer_query(status)


# ---------------------------------------------------------------------------
# Batch builders
# ---------------------------------------------------------------------------

class TestBatchBuilders:
    def test_toggle_web_when_running_stops_web_and_runtime(self):
        batch = toggle_batch({"web": True}, "web", {"web": ["runtime"]})
        assert batch == [(Action.STOP, "web"), (Action.STOP, "runtime")]

    def test_toggle_web_when_stopped_starts_web_and_runtime(self):
        batch = toggle_batch({"web": False}, "web", {"web": ["runtime"]})
        assert batch == [(Action.START, "web"), (Action.START, "runtime")]

    def test_toggle_database_has_no_dependency(self):
        batch = toggle_batch({"database": True}, "database", {"web": ["runtime"]})
        assert batch == [(Action.STOP, "database")]

    def test_toggle_missing_entry_counts_as_not_running(self):
        assert toggle_batch({}, "database", {}) == [(Action.START, "database")]

    def test_toggle_unknown_service_raises(self):
        with pytest.raises(BrewBarError):
            toggle_batch({}, "redis", {})

    @pytest.mark.parametrize("status", [
        {"database": False, "web": False, "runtime": False},
        {"database": True, "web": True, "runtime": True},
        {"database": True, "web": False, "runtime": True},
    ])
    def test_start_and_stop_all_ignore_status(self, coord, status):
        coord._status = dict(status)
        assert coord.start_all() == [
            (Action.START, "database"), (Action.START, "web"), (Action.START, "runtime"),
        ]
        assert coord.stop_all() == [
            (Action.STOP, "database"), (Action.STOP, "web"), (Action.STOP, "runtime"),
        ]

    def test_module_builders_match_fixed_set(self):
        assert {s for _, s in start_all_batch()} == {"database", "web", "runtime"}
        assert {s for _, s in stop_all_batch()} == {"database", "web", "runtime"}


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

class TestRefresh:
    def test_initial_status_all_false(self, coord):
        assert coord.current_status() == {"database": False, "web": False, "runtime": False}
        assert coord.busy is False

    def test_refresh_replaces_status_and_notifies(self, coord, controller, seen):
        done = []
        coord.refresh(lambda: done.append(True))
        controller.answer_query({"web": True, "database": False, "runtime": True})

        assert coord.current_status() == {"database": False, "web": True, "runtime": True}
        assert seen[-1] == ({"database": False, "web": True, "runtime": True}, False)
        assert done == [True]

    def test_refresh_ignores_unknown_keys_and_fills_missing(self, coord, controller):
        coord.refresh()
        controller.answer_query({"web": True, "redis": True})
        assert coord.current_status() == {"database": False, "web": True, "runtime": False}

    def test_current_status_is_a_snapshot(self, coord):
        snap = coord.current_status()
        snap["web"] = True
        assert coord.current_status()["web"] is False

    def test_concurrent_refreshes_last_writer_wins(self, coord, controller):
        coord.refresh()
        coord.refresh()
        controller.answer_query({"web": True}, index=1)
        controller.answer_query({"web": False}, index=0)
        assert coord.current_status()["web"] is False

    def test_refresh_allowed_while_busy(self, coord, controller):
        coord.submit(coord.start_all())
        coord.refresh()
        assert len(controller.queries) == 1
        controller.answer_query({"database": True})
        assert coord.busy is True


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------

class TestSubmit:
    def test_submit_sets_busy_and_notifies_immediately(self, coord, controller, seen):
        assert coord.submit(coord.toggle("web")) is True
        assert coord.busy is True
        assert coord.state is CoordinatorState.BUSY
        assert seen == [({"database": False, "web": False, "runtime": False}, True)]

    def test_all_commands_issued_without_waiting(self, coord, controller):
        coord.submit(coord.start_all())
        assert len(controller.issued) == 3
        assert len(controller.pending) == 3

    def test_settle_waits_for_every_completion(self, coord, controller, scheduler):
        coord.submit(coord.start_all())
        first, second, third = controller.pending
        first()
        second()
        assert scheduler.calls == []
        third()
        assert len(scheduler.calls) == 1
        assert scheduler.calls[0][0] == pytest.approx(0.5)

    def test_refresh_only_after_settle(self, coord, controller, scheduler):
        coord.submit(coord.stop_all())
        controller.complete_all()
        assert controller.queries == []
        scheduler.fire()
        assert len(controller.queries) == 1

    def test_busy_cleared_after_post_batch_refresh(self, coord, controller, scheduler, seen):
        coord.submit(coord.start_all())
        run_batch_to_completion(coord, controller, scheduler,
                                {"database": True, "web": True, "runtime": True})
        assert coord.busy is False
        assert coord.state is CoordinatorState.IDLE
        assert seen[-1] == ({"database": True, "web": True, "runtime": True}, False)
        assert seen[-2] == ({"database": True, "web": True, "runtime": True}, True)

    def test_submit_while_busy_is_rejected(self, coord, controller):
        coord.submit(coord.start_all())
        assert coord.submit(coord.stop_all()) is False
        assert controller.issued == coord.start_all()

    def test_unknown_service_in_batch_leaves_state_untouched(self, coord, controller, seen):
        with pytest.raises(BrewBarError):
            coord.submit([(Action.START, "web"), (Action.START, "redis")])
        assert coord.busy is False
        assert controller.issued == []
        assert seen == []

    def test_empty_batch_still_settles_and_refreshes(self, coord, controller, scheduler):
        assert coord.submit([]) is True
        assert coord.busy is True
        scheduler.fire()
        controller.answer_query({})
        assert coord.busy is False

    def test_custom_settle_delay(self, controller, scheduler):
        coord = SyncCoordinator(controller, scheduler, settle_delay=2.0)
        coord.submit(coord.stop_all())
        controller.complete_all()
        assert scheduler.calls[0][0] == 2.0

    def test_toggle_web_scenario(self, coord, controller, scheduler, seen):
        coord.submit(coord.toggle("web"))
        assert controller.issued == [(Action.START, "web"), (Action.START, "runtime")]

        run_batch_to_completion(coord, controller, scheduler,
                                {"database": False, "web": True, "runtime": True})
        assert seen[-1] == ({"database": False, "web": True, "runtime": True}, False)
        assert coord.toggle("web") == [(Action.STOP, "web"), (Action.STOP, "runtime")]

    def test_double_stop_all_runs_one_cycle(self, coord, controller, scheduler):
        assert coord.submit(coord.stop_all()) is True
        assert coord.submit(coord.stop_all()) is False
        assert len(controller.issued) == 3

        controller.complete_all()
        assert len(scheduler.calls) == 1
        scheduler.fire()
        assert len(controller.queries) == 1
        controller.answer_query({})
        assert coord.busy is False

    def test_new_batch_accepted_once_idle(self, coord, controller, scheduler):
        coord.submit(coord.start_all())
        run_batch_to_completion(coord, controller, scheduler, {})
        assert coord.submit(coord.stop_all()) is True


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------

class TestShutdown:
    def test_shutdown_stops_everything_in_order(self, coord, controller):
        coord.shutdown()
        assert controller.blocking == [
            (Action.STOP, "database"), (Action.STOP, "web"), (Action.STOP, "runtime"),
        ]
        assert controller.issued == []
        assert coord.state is CoordinatorState.CLOSED

    def test_shutdown_notifies_busy(self, coord, seen):
        coord.shutdown()
        assert seen[-1][1] is True

    def test_shutdown_without_stopping(self, coord, controller):
        coord.shutdown(stop_services=False)
        assert controller.blocking == []
        assert coord.state is CoordinatorState.CLOSED

    def test_shutdown_twice_is_noop(self, coord, controller):
        coord.shutdown()
        coord.shutdown()
        assert len(controller.blocking) == 3

    def test_in_flight_batch_abandoned(self, coord, controller, scheduler, seen):
        coord.submit(coord.start_all())
        coord.shutdown()
        notified = len(seen)

        controller.complete_all()
        assert scheduler.calls == []
        assert len(seen) == notified
        assert coord.submit(coord.start_all()) is False

    def test_late_refresh_ignored_after_shutdown(self, coord, controller, seen):
        coord.refresh()
        coord.shutdown()
        notified = len(seen)
        controller.answer_query({"web": True})
        assert coord.current_status()["web"] is False
        assert len(seen) == notified


# ---------------------------------------------------------------------------
# With a real ServiceController
# ---------------------------------------------------------------------------

class ExplodingRunner:
    def run(self, args, capture=False):
        raise RuntimeError("embedded null byte")


def test_batch_finishes_when_runner_blows_up(scheduler):
    ui_queue = queue.Queue()
    ctl = ServiceController(ExplodingRunner(), {"web": "nginx", "runtime": "php@8.3",
                                                "database": "mariadb"}, ui_queue.put)
    coord = SyncCoordinator(ctl, scheduler)

    assert coord.submit(coord.toggle("web")) is True
    for _ in range(2):
        ui_queue.get(timeout=5)()
    scheduler.fire()
    ui_queue.get(timeout=5)()

    assert coord.busy is False
    assert coord.current_status() == {"database": False, "web": False, "runtime": False}
