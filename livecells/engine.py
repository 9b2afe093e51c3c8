"""
ExecutionEngine: serialises every cell run through one interpreter.
"""

import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from livecells.capture import (
    GraphicArtifact,
    GraphicSink,
    OutputCapture,
    OutputRecord,
    format_output_block,
)
from livecells.kernel import ScriptExecutionError

logger = logging.getLogger(__name__)

RUN_LABEL = "Run"
LOADING_LABEL = "Loading..."


class RunLock:
    """
    Single-slot mutex guarding the shared interpreter.

    There is no waiting: try_acquire() either takes the slot or
    reports that someone else holds it.
    """

    def __init__(self):
        self._owner: Any = None
        self._held = False
        self._subscribers: list[Callable[[bool], None]] = []

    @property
    def held(self) -> bool:
        return self._held

    @property
    def owner(self) -> Any:
        return self._owner

    def subscribe(self, callback: Callable[[bool], None]):
        self._subscribers.append(callback)

    def try_acquire(self, owner: Any = None) -> bool:
        if self._held:
            return False
        self._held = True
        self._owner = owner
        self._notify()
        return True

    def release(self):
        if not self._held:
            raise RuntimeError("release of an unheld run lock")
        self._held = False
        self._owner = None
        self._notify()

    def _notify(self):
        for callback in self._subscribers:
            callback(self._held)


class RunTrigger:
    """Run affordance of one run target. State is derived, never stored."""

    def __init__(self, lock: RunLock, interpreter):
        self._lock = lock
        self._interpreter = interpreter
        self._listeners: list[Callable[["RunTrigger"], None]] = []
        lock.subscribe(lambda _held: self._changed())
        interpreter.add_ready_callback(self._changed)

    @property
    def disabled(self) -> bool:
        return self._lock.held or not self._interpreter.ready

    @property
    def label(self) -> str:
        return RUN_LABEL if self._interpreter.ready else LOADING_LABEL

    def on_change(self, callback: Callable[["RunTrigger"], None]):
        self._listeners.append(callback)

    def _changed(self):
        for callback in self._listeners:
            callback(self)


@dataclass
class RunOutcome:
    """What one accepted run produced."""
    text: str = ""
    records: list[OutputRecord] = field(default_factory=list)
    artifact: Optional[GraphicArtifact] = None
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def has_output(self) -> bool:
        return bool(self.text.strip())

    @property
    def has_graphic(self) -> bool:
        return self.artifact is not None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ExecutionEngine:
    """
    Owns the run lock and drives the per-run sequence.

    A run takes the lock, waits for the interpreter, captures its
    streams and graphics, renders them into the target's regions and
    releases the lock on every exit path. Runs requested while the
    lock is held are dropped.
    """

    def __init__(self, interpreter, lock: Optional[RunLock] = None):
        self.interpreter = interpreter
        self.lock = lock or RunLock()
        self.capture = OutputCapture()
        self.triggers: list[RunTrigger] = []
        interpreter.stdout = lambda text: self.capture.add("stdout", text)
        interpreter.stderr = lambda text: self.capture.add("stderr", text)

    def trigger(self) -> RunTrigger:
        """Create a run affordance bound to this engine's lock."""
        run_trigger = RunTrigger(self.lock, self.interpreter)
        self.triggers.append(run_trigger)
        return run_trigger

    async def execute(self, source: str, target, render: bool = True) -> Optional[RunOutcome]:
        """
        Run source on behalf of target.

        Args:
            source: Code to run
            target: Run target whose cell owns the run and whose regions are rendered
            render: Whether to write the outcome into the target's regions

        Returns:
            RunOutcome, or None if the run was dropped
        """
        cell = target.cell
        if cell.running:
            logger.debug("Run of %s dropped: cell already running", target.id)
            return None
        if not self.lock.try_acquire(target):
            logger.debug("Run of %s dropped: interpreter busy", target.id)
            return None

        cell.running = True
        try:
            await self.interpreter.wait_ready()
            self.capture.reset()
            sink = GraphicSink()
            self.interpreter.graphic_target = sink

            try:
                await self.interpreter.load_packages_from_imports(source)
            except Exception as e:
                logger.warning("Dependency resolution failed for %s: %s", target.id, e)

            value = None
            error = None
            try:
                value = await self.interpreter.run(source)
            except Exception as e:
                error = e
                self.capture.add("stderr", _describe_error(e))
            else:
                if value is not None:
                    self.capture.add("stdout", repr(value))

            records = self.capture.drain()
            artifact = None
            if len(sink) > 0:
                artifact = GraphicArtifact(list(sink.elements), cell.options.fig_cap or None)

            outcome = RunOutcome(
                text=format_output_block(records),
                records=records,
                artifact=artifact,
                value=value,
                error=error,
            )
            if render:
                self._render(target, outcome)
            return outcome
        finally:
            cell.running = False
            self.lock.release()

    def _render(self, target, outcome: RunOutcome):
        target.output.clear()
        target.graphic.clear()

        if outcome.has_output:
            target.output.show(outcome.records, outcome.text)
        else:
            target.output.hide()

        if outcome.artifact is not None:
            target.graphic.show(outcome.artifact)
        else:
            target.graphic.mark_empty()


def _describe_error(error: Exception) -> str:
    if isinstance(error, ScriptExecutionError):
        return str(error)
    return "".join(traceback.format_exception_only(type(error), error)).rstrip("\n")
