"""
Page: wires the interpreter, engine, feedback pipeline and cells of a document.
"""

import logging
from typing import Optional

import httpx

from livecells.cells import CellRegistry, SetupCell, create_cell
from livecells.config import Settings
from livecells.document import Document
from livecells.engine import ExecutionEngine
from livecells.feedback import FeedbackPipeline, Notifier, make_backend
from livecells.kernel import DependencyResolutionError, IPythonInterpreter

logger = logging.getLogger(__name__)

STARTUP_MESSAGE = "Python interpreter ready. Cells can now be run."


class Page:
    """
    Everything one document needs at runtime.

    There is a single interpreter and a single run lock per page; every
    cell and every run target shares them.
    """

    def __init__(
        self,
        document: Document,
        settings: Optional[Settings] = None,
        interpreter=None,
        notifier: Optional[Notifier] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.document = document
        self.settings = settings or Settings.from_env().merged(**document.settings)
        self.interpreter = interpreter or IPythonInterpreter(auto_install=self.settings.auto_install)
        self.engine = ExecutionEngine(self.interpreter)
        self.notifier = notifier or Notifier()

        self.feedback: Optional[FeedbackPipeline] = None
        if self.settings.feedback:
            backend = make_backend(self.settings, transport=transport)
            self.feedback = FeedbackPipeline(self.engine, backend, self.notifier)

        self.registry = CellRegistry()
        for declaration in document.cells:
            self.registry.add(create_cell(declaration, self.engine, feedback=self.feedback))

    @property
    def lock(self):
        return self.engine.lock

    async def boot(self):
        """Start the interpreter, install packages and run the setup cells."""
        await self.interpreter.start()

        if self.settings.packages:
            try:
                await self.interpreter.install_packages(self.settings.packages)
            except DependencyResolutionError as e:
                logger.warning("Package installation failed: %s", e)

        if self.settings.show_startup_message:
            logger.info(STARTUP_MESSAGE)

        await self.registry.execute_all(SetupCell)
