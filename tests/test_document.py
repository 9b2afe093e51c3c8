"""
Tests for Document, CellDeclaration and CellOptions.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from livecells.document import CellDeclaration, CellOptions, Document


class TestCellOptions:
    """Declared options use hyphenated names."""

    def test_aliases(self):
        options = CellOptions.model_validate({"read-only": True, "fig-cap": "Sine"})
        assert options.read_only
        assert options.fig_cap == "Sine"

    @pytest.mark.parametrize("value,expected", [
        ("true", True),
        ("True", True),
        ("false", False),
        ("", False),
        (None, False),
        (1, True),
    ])
    def test_read_only_flag_parsing(self, value, expected):
        assert CellOptions.model_validate({"read-only": value}).read_only is expected

    def test_unknown_options_kept(self):
        options = CellOptions.model_validate({"context": "setup", "results": "hide"})
        assert options.context == "setup"
        assert options.model_dump()["results"] == "hide"


class TestCellDeclaration:
    def test_numeric_id_coerced(self):
        assert CellDeclaration.model_validate({"code": "x", "id": 3}).id == "3"

    def test_id_required(self):
        with pytest.raises(ValidationError):
            CellDeclaration.model_validate({"code": "x"})

    def test_to_dict_uses_aliases(self):
        cell = CellDeclaration(code="x", id="1", options=CellOptions(read_only=True))
        assert cell.to_dict() == {"code": "x", "id": "1", "options": {"read-only": True}}


class TestDocument:
    """Test cases for Document."""

    def test_add_cell_numbers_ids(self):
        doc = Document()
        first = doc.add_cell("a")
        second = doc.add_cell("b", context="output")
        assert (first.id, second.id) == ("1", "2")
        assert doc.get_cell("2").options.context == "output"

    def test_get_cell_missing(self):
        with pytest.raises(KeyError):
            Document().get_cell("9")

    def test_new_document(self):
        doc = Document.new()
        assert [c.options.context for c in doc.cells] == ["setup", "interactive"]

    def test_save_and_load(self, tmp_path):
        doc = Document(settings={"feedback": True})
        doc.add_cell("print(1)", **{"read-only": "true", "fig-cap": "Plot"})
        path = tmp_path / "nested" / "doc.json"

        doc.save(path)
        loaded = Document.load(path)

        assert loaded.settings == {"feedback": True}
        assert loaded.cells[0].code == "print(1)"
        assert loaded.cells[0].options.read_only
        assert loaded.cells[0].options.fig_cap == "Plot"
        raw = json.loads(Path(path).read_text())
        assert raw["cells"][0]["options"]["fig-cap"] == "Plot"

    def test_from_dict_defaults(self):
        doc = Document.from_dict({"cells": [{"code": "x", "id": 1}]})
        assert doc.version == "1.0"
        assert doc.settings == {}
        assert doc.cells[0].id == "1"
