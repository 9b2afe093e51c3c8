"""
Utility functions for rendering cells in the terminal.
"""

from rich.console import Group
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from livecells.capture import OutputRecord


def format_rich_record(record: OutputRecord) -> Text:
    """
    Format an output record as a Rich Text.

    stderr is shown in red so errors stand out from regular output.
    """
    text = record.text.rstrip("\n")
    if record.stream == "stderr":
        return Text(text, style="red")
    return Text(text)


def format_graphic(graphic: dict) -> Text:
    """Describe a rendered figure; terminals cannot show the image itself."""
    count = len(graphic.get("elements", []))
    label = f"[figure: {count} element{'s' if count != 1 else ''}]"
    text = Text(label, style="magenta")
    if graphic.get("caption"):
        text.append(f"  {graphic['caption']}", style="italic")
    return text


def render_target(view: dict, title: str = "") -> Panel:
    """Build a panel showing one run target's source and regions."""
    parts = [Syntax(view["source"] or " ", "python", theme="monokai", line_numbers=True)]

    records = view.get("records") or []
    if view.get("output"):
        parts.append(Text("Output", style="bold dim"))
        parts.extend(format_rich_record(OutputRecord(r["name"], r["text"])) for r in records)

    if view.get("graphic"):
        parts.append(format_graphic(view["graphic"]))

    if view.get("feedback"):
        parts.append(Text("AI-Feedback:", style="bold cyan"))
        parts.append(Text(view["feedback"]))

    border = "yellow" if view.get("read_only") else "blue"
    return Panel(Group(*parts), title=title or view["id"], border_style=border)


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to max_length, adding ellipsis if needed."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
