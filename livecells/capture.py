"""
Output capture: stream records and graphic sinks for a single run.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

StreamName = Literal["stdout", "stderr"]


@dataclass
class OutputRecord:
    """One stretch of text written to stdout or stderr."""
    stream: StreamName
    text: str

    def to_dict(self) -> dict:
        return {"type": "stream", "name": self.stream, "text": self.text}


class OutputCapture:
    """
    Accumulates the stream records of one run in emission order.

    Consecutive writes to the same stream are merged, so the records
    alternate between streams exactly as the run interleaved them.
    """

    def __init__(self):
        self._records: list[OutputRecord] = []

    @property
    def records(self) -> list[OutputRecord]:
        return list(self._records)

    def reset(self):
        self._records.clear()

    def add(self, stream: StreamName, text: str):
        if stream not in ("stdout", "stderr"):
            raise ValueError(f"unknown stream: {stream!r}")
        if not text:
            return
        if self._records and self._records[-1].stream == stream:
            self._records[-1].text += text
        else:
            self._records.append(OutputRecord(stream, text))

    def drain(self) -> list[OutputRecord]:
        """Return every record captured so far and empty the buffer."""
        records, self._records = self._records, []
        return records


def format_output_block(records: list[OutputRecord]) -> str:
    """Join records into the single block shown under a cell."""
    parts = []
    for record in records:
        text = record.text
        if parts and not parts[-1].endswith("\n"):
            parts.append("\n")
        parts.append(text)
    return "".join(parts).rstrip("\n")


class GraphicSink:
    """Target that figures and image displays are drawn into during a run."""

    def __init__(self):
        self.elements: list[dict[str, Any]] = []

    def add(self, bundle: dict[str, Any]):
        self.elements.append(bundle)

    def __len__(self) -> int:
        return len(self.elements)


@dataclass
class GraphicArtifact:
    """The one figure container rendered for a run."""
    elements: list[dict[str, Any]] = field(default_factory=list)
    caption: Optional[str] = None

    def to_dict(self) -> dict:
        return {"elements": self.elements, "caption": self.caption}
