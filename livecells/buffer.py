"""
TextBuffer: the editable source of one run target.
"""

from typing import Any, Callable


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


class TextBuffer:
    """
    Minimal editor model behind a code cell.

    Keeps LF line endings, a selection as character offsets and a
    1-based (line, column) cursor. Commands are named callbacks, the
    way keyboard shortcuts are bound in an editor widget.
    """

    def __init__(self, text: str = "", read_only: bool = False):
        self._text = _normalize(text)
        self.read_only = read_only
        self.selection: tuple[int, int] = (0, 0)
        self.cursor: tuple[int, int] = (1, 1)
        self._commands: dict[str, Callable[[], Any]] = {}
        self._size_listeners: list[Callable[[int], None]] = []

    @property
    def text(self) -> str:
        return self._text

    @text.setter
    def text(self, value: str):
        before = self.line_count
        self._text = _normalize(value)
        self.selection = (0, 0)
        if self.cursor[0] > self.line_count:
            self.cursor = (self.line_count, 1)
        if self.line_count != before:
            for callback in self._size_listeners:
                callback(self.line_count)

    def edit(self, text: str):
        """Replace the text as the user would; refused for read-only buffers."""
        if self.read_only:
            raise PermissionError("buffer is read-only")
        self.text = text

    @property
    def lines(self) -> list[str]:
        return self._text.split("\n")

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def line(self, number: int) -> str:
        return self.lines[number - 1]

    def select(self, start: int, end: int):
        if not (0 <= start <= end <= len(self._text)):
            raise ValueError(f"selection out of range: {start}..{end}")
        self.selection = (start, end)

    @property
    def selected_text(self) -> str:
        start, end = self.selection
        return self._text[start:end]

    def set_cursor(self, line: int, column: int = 1):
        if not 1 <= line <= self.line_count:
            raise ValueError(f"line out of range: {line}")
        self.cursor = (line, column)

    def run_selection_or_line(self) -> str:
        """
        Return the code a run-selection command should execute.

        With an empty selection the cursor's line is returned and the
        cursor moves to the start of the next line, adding a trailing
        line when the cursor was on the last one.
        """
        selected = self.selected_text
        if selected:
            return selected

        line_number = self.cursor[0]
        current = self.line(line_number)
        if line_number + 1 > self.line_count:
            self.text = self._text + "\n"
        self.cursor = (line_number + 1, 1)
        return current

    # ------------------------------------------------------------------ #
    # Commands and notifications
    # ------------------------------------------------------------------ #

    def register_command(self, name: str, callback: Callable[[], Any]):
        self._commands[name] = callback

    def invoke(self, name: str) -> Any:
        """Invoke a registered command and return whatever it returns."""
        try:
            callback = self._commands[name]
        except KeyError:
            raise KeyError(f"no command registered as {name!r}") from None
        return callback()

    @property
    def commands(self) -> list[str]:
        return list(self._commands)

    def on_content_size_change(self, callback: Callable[[int], None]):
        self._size_listeners.append(callback)
