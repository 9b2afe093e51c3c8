"""
livecells: runnable, editable code cells sharing one Python interpreter.

This package provides:
- An execution engine that serialises cell runs behind a single lock
- Output and figure capture rendered into each cell's regions
- Interactive, output and setup cell variants built from a document
- Optional AI feedback through a remote chat API or a local server
"""

from livecells.cells import CellRegistry, InteractiveCell, OutputCell, RunTarget, SetupCell, create_cell
from livecells.config import Settings
from livecells.document import CellDeclaration, CellOptions, Document
from livecells.engine import ExecutionEngine, RunLock, RunOutcome
from livecells.feedback import FeedbackPipeline, LocalServerBackend, RemoteModelBackend
from livecells.kernel import IPythonInterpreter
from livecells.page import Page

__version__ = "0.1.0"
__all__ = [
    "CellDeclaration",
    "CellOptions",
    "CellRegistry",
    "Document",
    "ExecutionEngine",
    "FeedbackPipeline",
    "IPythonInterpreter",
    "InteractiveCell",
    "LocalServerBackend",
    "OutputCell",
    "Page",
    "RemoteModelBackend",
    "RunLock",
    "RunOutcome",
    "RunTarget",
    "Settings",
    "SetupCell",
    "create_cell",
]
