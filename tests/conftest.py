"""Pytest fixtures shared across all test modules."""

import asyncio

import pytest

from livecells.cells import create_cell
from livecells.document import CellDeclaration, CellOptions
from livecells.engine import ExecutionEngine
from livecells.kernel import DependencyResolutionError


class FakeInterpreter:
    """
    Scriptable stand-in for IPythonInterpreter.

    scripts maps source text to a callable receiving the interpreter;
    it may write to the sinks, draw into the graphic target, return a
    value or raise. Setting gate to an asyncio.Event holds every run
    until the event is set.
    """

    def __init__(self, ready: bool = True):
        self.stdout = None
        self.stderr = None
        self.graphic_target = None
        self.scripts = {}
        self.runs = []
        self.gate = None
        self.missing_modules = []
        self.dependency_checks = 0
        self._ready = asyncio.Event()
        self._callbacks = []
        if ready:
            self._ready.set()

    @property
    def ready(self):
        return self._ready.is_set()

    def add_ready_callback(self, callback):
        self._callbacks.append(callback)

    async def start(self):
        self._ready.set()
        for callback in self._callbacks:
            callback()

    async def wait_ready(self):
        await self._ready.wait()

    async def load_packages_from_imports(self, source):
        self.dependency_checks += 1
        if self.missing_modules:
            raise DependencyResolutionError(list(self.missing_modules))
        return []

    async def install_packages(self, names):
        pass

    async def run(self, source):
        self.runs.append(source)
        if self.gate is not None:
            await self.gate.wait()
        script = self.scripts.get(source)
        if script is None:
            return None
        return script(self)


@pytest.fixture
def interpreter():
    return FakeInterpreter()


@pytest.fixture
def unready_interpreter():
    """A fake interpreter that is still booting."""
    return FakeInterpreter(ready=False)


@pytest.fixture
def engine(interpreter):
    return ExecutionEngine(interpreter)


@pytest.fixture
def make_cell(engine):
    """Build a cell from code and options on the shared engine."""
    counter = {"n": 0}

    def _make(code="", feedback=None, **options):
        counter["n"] += 1
        declaration = CellDeclaration(
            code=code,
            id=str(counter["n"]),
            options=CellOptions(**options),
        )
        return create_cell(declaration, engine, feedback=feedback)

    return _make
