"""
Document: JSON description of the cells embedded in a page.
"""

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CellOptions(BaseModel):
    """Options declared on a cell. Unknown options are kept as-is."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    context: Optional[str] = None
    label: Optional[str] = None
    classes: Optional[str] = None
    read_only: bool = Field(default=False, alias="read-only")
    fig_cap: Optional[str] = Field(default=None, alias="fig-cap")

    @field_validator("read_only", mode="before")
    @classmethod
    def _parse_flag(cls, value):
        # Declarations carry flags as "true"/"false" strings.
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value) if value is not None else False


class CellDeclaration(BaseModel):
    """A serialized cell: code, id and options."""
    code: str = ""
    id: str
    options: CellOptions = Field(default_factory=CellOptions)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return str(value)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "id": self.id,
            "options": self.options.model_dump(by_alias=True, exclude_none=True),
        }


class Document(BaseModel):
    """
    The cells of a page plus document-level settings.

    Settings use the same keys as livecells.config.Settings and
    override values coming from the environment.
    """

    version: str = "1.0"
    cells: list[CellDeclaration] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)

    def add_cell(self, code: str = "", **options) -> CellDeclaration:
        """Append a cell with the next free numeric id."""
        cell = CellDeclaration(
            code=code,
            id=str(len(self.cells) + 1),
            options=CellOptions(**options),
        )
        self.cells.append(cell)
        return cell

    def get_cell(self, cell_id: str) -> CellDeclaration:
        for cell in self.cells:
            if cell.id == cell_id:
                return cell
        raise KeyError(cell_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "version": self.version,
            "cells": [cell.to_dict() for cell in self.cells],
            "settings": self.settings,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        """Create from dictionary."""
        return cls(
            version=data.get("version", "1.0"),
            cells=[CellDeclaration.model_validate(c) for c in data.get("cells", [])],
            settings=data.get("settings", {}),
        )

    def save(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "Document":
        path = Path(path)
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def new(cls) -> "Document":
        """Create a small starter document."""
        doc = cls()
        doc.add_cell("import math", context="setup")
        doc.add_cell('print("Hello from livecells!")\nmath.sqrt(16)', context="interactive")
        return doc
