"""
Tests for Page wiring and boot.
"""

import pytest

from livecells.cells import InteractiveCell, OutputCell, SetupCell
from livecells.config import Settings
from livecells.document import Document
from livecells.feedback import LocalServerBackend, RemoteModelBackend
from livecells.page import Page


def _document():
    doc = Document()
    doc.add_cell("import math", context="setup")
    doc.add_cell("print(math.pi)")
    doc.add_cell("math.sqrt(16)", context="output")
    return doc


class TestPage:
    """Test cases for Page."""

    def test_builds_cells_by_context(self, interpreter):
        page = Page(_document(), settings=Settings(), interpreter=interpreter)

        kinds = [type(cell) for cell in page.registry]
        assert kinds == [SetupCell, InteractiveCell, OutputCell]
        assert page.feedback is None
        assert page.lock is page.engine.lock

    @pytest.mark.parametrize("backend,expected", [
        ("remote", RemoteModelBackend),
        ("local", LocalServerBackend),
    ])
    def test_feedback_pipeline_when_enabled(self, interpreter, backend, expected):
        page = Page(_document(), settings=Settings(feedback=True, backend=backend), interpreter=interpreter)

        assert isinstance(page.feedback.backend, expected)
        cell = page.registry.get("2")
        assert cell.targets[0].feedback_enabled

    def test_document_settings_apply(self, interpreter, monkeypatch):
        monkeypatch.setenv("LIVECELLS_API_KEY", "from-env")
        doc = _document()
        doc.settings = {"feedback": True, "backend": "flask"}

        page = Page(doc, interpreter=interpreter)

        assert page.settings.api_key == "from-env"
        assert page.settings.backend == "local"

    @pytest.mark.asyncio
    async def test_boot_runs_only_setup_cells(self, unready_interpreter):
        page = Page(_document(), settings=Settings(), interpreter=unready_interpreter)
        trigger = page.registry.get("2").targets[0].run_trigger
        assert trigger.disabled

        await page.boot()

        assert unready_interpreter.ready
        assert unready_interpreter.runs == ["import math"]
        assert not trigger.disabled
        assert not page.lock.held
