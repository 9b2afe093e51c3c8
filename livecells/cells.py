"""
Cells: interactive, output and setup variants plus their run targets.
"""

import html
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterator, Optional

from livecells.buffer import TextBuffer
from livecells.capture import GraphicArtifact, OutputRecord
from livecells.document import CellDeclaration

logger = logging.getLogger(__name__)

RUN_ALL_COMMAND = "run-all"
RUN_SELECTION_COMMAND = "run-selection"
FEEDBACK_HEADER = "AI-Feedback:"


# ---------------------------------------------------------------------- #
# Regions
# ---------------------------------------------------------------------- #


class Region(ABC):
    """A display area under a cell. revision counts every mutation."""

    def __init__(self):
        self.has_content = False
        self.revision = 0

    def _touch(self):
        self.revision += 1

    def clear(self):
        self._reset()
        self.has_content = False
        self._touch()

    @abstractmethod
    def _reset(self):
        ...


class OutputRegion(Region):
    def __init__(self):
        super().__init__()
        self.records: list[OutputRecord] = []
        self.text = ""
        self.visible = False

    def _reset(self):
        self.records = []
        self.text = ""
        self.visible = False

    def show(self, records: list[OutputRecord], text: str):
        self.records = list(records)
        self.text = text
        self.visible = True
        self.has_content = True
        self._touch()

    def hide(self):
        self.visible = False
        self.has_content = False
        self._touch()


class GraphicRegion(Region):
    def __init__(self):
        super().__init__()
        self.artifact: Optional[GraphicArtifact] = None

    def _reset(self):
        self.artifact = None

    def show(self, artifact: GraphicArtifact):
        self.artifact = artifact
        self.has_content = True
        self._touch()

    def mark_empty(self):
        self.has_content = False
        self._touch()


class FeedbackRegion(Region):
    def __init__(self):
        super().__init__()
        self.header = ""
        self.text = ""

    def _reset(self):
        self.header = ""
        self.text = ""

    @property
    def html(self) -> str:
        if not self.text:
            return ""
        return html.escape(self.text).replace("\n", "<br>")

    def show(self, text: str):
        self.header = FEEDBACK_HEADER
        self.text = text
        self.has_content = True
        self._touch()


# ---------------------------------------------------------------------- #
# Run targets
# ---------------------------------------------------------------------- #


class RunTarget:
    """One editor buffer with its output, graphic and feedback regions."""

    def __init__(
        self,
        target_id: str,
        cell: "BaseCell",
        buffer: TextBuffer,
        run_trigger=None,
        feedback_enabled: bool = False,
    ):
        self.id = target_id
        self.cell = cell
        self.buffer = buffer
        self.initial_source = buffer.text
        self.run_trigger = run_trigger
        self.feedback_enabled = feedback_enabled
        self.output = OutputRegion()
        self.graphic = GraphicRegion()
        self.feedback = FeedbackRegion()

    @property
    def source(self) -> str:
        return self.buffer.text

    def reset(self):
        """Restore the initial source and clear regions that hold content."""
        self.buffer.text = self.initial_source
        for region in (self.output, self.graphic, self.feedback):
            if region.has_content:
                region.clear()

    def view(self) -> dict:
        artifact = self.graphic.artifact
        return {
            "id": self.id,
            "source": self.buffer.text,
            "read_only": self.buffer.read_only,
            "output": self.output.text if self.output.visible else "",
            "records": [r.to_dict() for r in self.output.records],
            "graphic": artifact.to_dict() if artifact is not None else None,
            "feedback": self.feedback.text,
        }


# ---------------------------------------------------------------------- #
# Cells
# ---------------------------------------------------------------------- #


class BaseCell:
    """Common state of every cell: declaration, running flag, run targets."""

    kind = "base"

    def __init__(self, declaration: CellDeclaration, engine):
        self.declaration = declaration
        self.engine = engine
        self.running = False
        self.targets: list[RunTarget] = []
        self._create_targets()

    def _create_targets(self):
        self.targets.append(
            RunTarget(self.id, self, TextBuffer(self.code, read_only=True))
        )

    @property
    def id(self) -> str:
        return self.declaration.id

    @property
    def code(self) -> str:
        return self.declaration.code

    @property
    def options(self):
        return self.declaration.options

    async def _run_silently(self):
        target = self.targets[0]
        return await self.engine.execute(target.source, target, render=False)

    async def execute(self) -> Any:
        outcome = await self._run_silently()
        return outcome.value if outcome is not None else None

    def render(self) -> list[dict]:
        return []

    def reset(self):
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


class InteractiveCell(BaseCell):
    """
    Editable cell with run, reset, copy and feedback affordances.

    A second run target can be appended once; it shares the page-wide
    run lock with every other target.
    """

    kind = "interactive"

    def __init__(self, declaration: CellDeclaration, engine, feedback=None):
        self.feedback = feedback
        self.can_append_block = True
        super().__init__(declaration, engine)

    def _create_targets(self):
        self._add_target(self.id, self.code, self.options.read_only)

    def _add_target(self, target_id: str, source: str, read_only: bool) -> RunTarget:
        buffer = TextBuffer(source, read_only=read_only)
        target = RunTarget(
            target_id,
            self,
            buffer,
            run_trigger=self.engine.trigger(),
            feedback_enabled=self.feedback is not None and not read_only,
        )
        buffer.register_command(RUN_ALL_COMMAND, lambda: self.engine.execute(buffer.text, target))
        buffer.register_command(
            RUN_SELECTION_COMMAND,
            lambda: self.engine.execute(buffer.run_selection_or_line(), target),
        )
        self.targets.append(target)
        return target

    async def run(self, index: int = 0):
        target = self.targets[index]
        return await target.buffer.invoke(RUN_ALL_COMMAND)

    async def run_selection(self, index: int = 0):
        target = self.targets[index]
        return await target.buffer.invoke(RUN_SELECTION_COMMAND)

    async def execute(self):
        return await self.run(0)

    def copy(self, index: int = 0) -> str:
        return self.targets[index].buffer.text

    def reset(self, index: Optional[int] = None):
        targets = self.targets if index is None else [self.targets[index]]
        for target in targets:
            target.reset()

    def append_block(self) -> Optional[RunTarget]:
        """Add the second, editable run target. Only the first call does anything."""
        if not self.can_append_block:
            return None
        self.can_append_block = False
        target = self._add_target(f"{self.id}.2", "", read_only=False)
        logger.debug("Appended run target %s", target.id)
        return target

    async def request_feedback(self, index: int = 0) -> bool:
        target = self.targets[index]
        if not target.feedback_enabled:
            logger.debug("Feedback not available for %s", target.id)
            return False
        return await self.feedback.request(target)

    def render(self) -> list[dict]:
        return [target.view() for target in self.targets]


class OutputCell(BaseCell):
    """Runs its code and hands the raw result back to the caller."""

    kind = "output"

    def __init__(self, declaration: CellDeclaration, engine, feedback=None):
        super().__init__(declaration, engine)
        self.result: Any = None

    async def execute(self) -> Any:
        self.result = await super().execute()
        return self.result

    def render(self) -> list[dict]:
        return [{"id": self.id, "result": self.result}]


class SetupCell(BaseCell):
    """Runs preamble code; nothing it produces is ever shown."""

    kind = "setup"

    def __init__(self, declaration: CellDeclaration, engine, feedback=None):
        super().__init__(declaration, engine)

    async def execute(self) -> None:
        if await self._run_silently() is None:
            logger.warning("Setup cell %s was not run: interpreter busy", self.id)
        return None


CELL_KINDS = {
    "interactive": InteractiveCell,
    "output": OutputCell,
    "setup": SetupCell,
}


def create_cell(declaration: CellDeclaration, engine, feedback=None) -> BaseCell:
    """Build the cell variant named by the declaration's context option."""
    context = declaration.options.context
    cell_class = CELL_KINDS.get(context)
    if cell_class is None:
        logger.debug("Cell %s has context %r, using interactive", declaration.id, context)
        cell_class = InteractiveCell
    return cell_class(declaration, engine, feedback=feedback)


class CellRegistry:
    """The cells of one page, in document order."""

    def __init__(self):
        self._cells: list[BaseCell] = []

    def add(self, cell: BaseCell) -> BaseCell:
        self._cells.append(cell)
        return cell

    def get(self, cell_id: str) -> BaseCell:
        for cell in self._cells:
            if cell.id == cell_id:
                return cell
        raise KeyError(cell_id)

    def of_kind(self, kind: type) -> list[BaseCell]:
        return [c for c in self._cells if isinstance(c, kind)]

    async def execute_all(self, kind: Optional[type] = None) -> list[Any]:
        """Execute cells one after another, optionally only one variant."""
        results = []
        for cell in self._cells:
            if kind is not None and not isinstance(cell, kind):
                continue
            results.append(await cell.execute())
        return results

    def __iter__(self) -> Iterator[BaseCell]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)
