"""Homebrew service control: start/stop/list via `brew services`.

Every command runs on its own worker thread; completions are handed back
through ``post`` so they land on the UI context, never on the worker.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import subprocess
import threading
from typing import Callable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


# Fixed set of managed services, in start-all / stop-all order.
SERVICE_ROLES: tuple[str, ...] = ("database", "web", "runtime")

_RUNNING_TOKENS = ("started", "running")


class BrewBarError(Exception):
    pass


class Action(enum.Enum):
    START = "start"
    STOP  = "stop"

    @classmethod
    def for_running(cls, running: bool) -> "Action":
        return cls.START if running else cls.STOP


ServiceStatus = dict[str, bool]
Post = Callable[[Callable[[], None]], None]


def empty_status() -> ServiceStatus:
    return {role: False for role in SERVICE_ROLES}


def parse_status(text: str, formulae: Mapping[str, str]) -> ServiceStatus:
    """Scan `brew services list` output for running services.

    A service counts as running when its formula name and a running
    indicator both appear on the same line, case-insensitively. Anything
    not matched stays False.
    """
    status = {role: False for role in formulae}
    for line in text.splitlines():
        lowered = line.lower()
        if not any(tok in lowered for tok in _RUNNING_TOKENS):
            continue
        for role, formula in formulae.items():
            if formula.lower() in lowered:
                status[role] = True
    return status


# ---------------------------------------------------------------------------
# Command runners
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class CommandResult:
    returncode: Optional[int]
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class BrewRunner:
    """Best-effort brew invocation: failures are logged, never raised."""

    def __init__(self, brew_path: str = "brew", timeout: Optional[float] = None) -> None:
        self.brew_path = brew_path
        self.timeout = timeout

    def run(self, args: Sequence[str], capture: bool = False) -> CommandResult:
        cmd = [self.brew_path, *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            logger.warning("brew not found at %s", self.brew_path)
            return CommandResult(None)
        except subprocess.TimeoutExpired:
            logger.warning("brew %s timed out after %ss", " ".join(args), self.timeout)
            return CommandResult(None)
        except (OSError, ValueError) as exc:
            logger.warning("could not launch brew %s: %s", " ".join(args), exc)
            return CommandResult(None)

        stdout = result.stdout.decode(errors="replace") if capture and result.stdout else ""
        if result.returncode != 0:
            logger.info("brew %s exited with %d", " ".join(args), result.returncode)
        return CommandResult(result.returncode, stdout)


class StrictBrewRunner(BrewRunner):
    """Like BrewRunner, but a launch failure or non-zero exit raises."""

    def run(self, args: Sequence[str], capture: bool = False) -> CommandResult:
        result = super().run(args, capture=capture)
        if result.returncode is None:
            raise BrewBarError(f"brew {' '.join(args)} could not be run")
        if result.returncode != 0:
            raise BrewBarError(f"brew {' '.join(args)} failed with exit code {result.returncode}")
        return result


# ---------------------------------------------------------------------------
# Service controller
# ---------------------------------------------------------------------------

class ServiceController:
    def __init__(
        self,
        runner: BrewRunner,
        formulae: Mapping[str, str],
        post: Post,
        on_error: Optional[Callable[[str, Exception], None]] = None,
    ) -> None:
        self._runner = runner
        self._formulae = dict(formulae)
        self._post = post
        self._on_error = on_error

    @property
    def formulae(self) -> dict[str, str]:
        return dict(self._formulae)

    def _formula(self, name: str) -> str:
        try:
            return self._formulae[name]
        except KeyError:
            raise BrewBarError(f"Unknown service: {name!r}") from None

    def _report_error(self, name: str, exc: Exception) -> None:
        if self._on_error is not None:
            on_error = self._on_error
            self._post(lambda: on_error(name, exc))

    def set_service_state(
        self,
        name: str,
        running: bool,
        on_done: Optional[Callable[[], None]] = None,
    ) -> None:
        formula = self._formula(name)
        action = Action.for_running(running)

        def _worker() -> None:
            try:
                self._runner.run(["services", action.value, formula])
            except BrewBarError as exc:
                logger.warning("%s %s: %s", action.value, name, exc)
                self._report_error(name, exc)
            except Exception as exc:
                logger.exception("%s %s failed unexpectedly", action.value, name)
                self._report_error(name, exc)
            finally:
                if on_done is not None:
                    self._post(on_done)

        logger.info("%s %s (%s)", action.value, name, formula)
        threading.Thread(target=_worker, daemon=True).start()

    def set_service_state_blocking(self, name: str, running: bool) -> None:
        formula = self._formula(name)
        action = Action.for_running(running)
        logger.info("%s %s (%s), waiting", action.value, name, formula)
        try:
            self._runner.run(["services", action.value, formula])
        except BrewBarError as exc:
            logger.warning("%s %s: %s", action.value, name, exc)
        except Exception:
            logger.exception("%s %s failed unexpectedly", action.value, name)

    def query_status(self, on_done: Callable[[ServiceStatus], None]) -> None:
        def _worker() -> None:
            status = {role: False for role in self._formulae}
            try:
                result = self._runner.run(["services", "list"], capture=True)
                status = parse_status(result.stdout, self._formulae)
            except BrewBarError as exc:
                logger.warning("services list: %s", exc)
                self._report_error("list", exc)
            except Exception as exc:
                logger.exception("services list failed unexpectedly")
                self._report_error("list", exc)
            finally:
                logger.debug("status %s", status)
                self._post(lambda: on_done(status))

        threading.Thread(target=_worker, daemon=True).start()
