"""
IPythonInterpreter: the one shared script interpreter behind every cell.
"""

import ast
import asyncio
import base64
import importlib.util
import io
import logging
import os
import re
import sys
import traceback
from typing import Any, Callable, Optional

from IPython.core.displayhook import DisplayHook
from IPython.core.displaypub import DisplayPublisher
from IPython.core.interactiveshell import InteractiveShell

logger = logging.getLogger(__name__)

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

# Import names whose distribution is published under another name.
_PACKAGE_ALIASES = {
    "sklearn": "scikit-learn",
    "PIL": "pillow",
    "yaml": "pyyaml",
    "cv2": "opencv-python",
    "bs4": "beautifulsoup4",
}


class ScriptExecutionError(Exception):
    """Raised by IPythonInterpreter.run when the submitted code fails."""

    def __init__(self, ename: str, evalue: str, traceback_text: str = ""):
        super().__init__(traceback_text or f"{ename}: {evalue}")
        self.ename = ename
        self.evalue = evalue
        self.traceback_text = traceback_text


class DependencyResolutionError(Exception):
    """Raised when modules imported by a cell cannot be made available."""

    def __init__(self, missing: list[str], detail: str = ""):
        message = "Could not resolve: " + ", ".join(missing)
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.missing = missing


def find_imports(source: str) -> list[str]:
    """Return the top-level module names imported by source, in order."""
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return []

    names = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            candidates = [alias.name for alias in node.names]
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            candidates = [node.module]
        else:
            continue
        for name in candidates:
            top = name.split(".")[0]
            if top not in names:
                names.append(top)
    return names


def strip_ansi(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


def _importable(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        # Already in sys.modules without a __spec__, e.g. built at runtime.
        return name in sys.modules


class _SinkWriter(io.TextIOBase):
    """File-like object forwarding writes to a sink callback."""

    def __init__(self, emit: Callable[[str], None]):
        super().__init__()
        self._emit = emit

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if text:
            self._emit(text)
        return len(text)

    @property
    def encoding(self) -> str:
        return "utf-8"


class _QuietDisplayHook(DisplayHook):
    """Keeps the last expression value without printing an Out[n] prompt."""

    def write_output_prompt(self):
        pass

    def write_format_data(self, format_dict, md_dict=None):
        pass


class _RoutingDisplayPublisher(DisplayPublisher):
    """Hands display() bundles to the interpreter instead of printing them."""

    def publish(self, data, metadata=None, source=None, **kwargs):
        handler = getattr(self.shell, "display_handler", None)
        if handler is None:
            super().publish(data, metadata=metadata, source=source, **kwargs)
            return
        handler(data)


class _CellShell(InteractiveShell):
    """InteractiveShell that records tracebacks instead of printing them."""

    display_handler: Optional[Callable[[dict], None]] = None
    last_traceback: str = ""

    def _showtraceback(self, etype, evalue, stb):
        self.last_traceback = strip_ansi(self.InteractiveTB.stb2text(stb))


class IPythonInterpreter:
    """
    Process-wide interpreter shared by every cell on a page.

    Wraps a single IPython shell and exposes:
    - async run() returning the last expression value or raising
    - redirectable stdout/stderr sink callbacks
    - a settable graphic target receiving figures and image displays
    - dependency resolution from the imports of a cell
    """

    def __init__(self, auto_install: bool = False):
        self.auto_install = auto_install
        self.shell: Optional[_CellShell] = None
        self.stdout: Callable[[str], Any] = sys.__stdout__.write
        self.stderr: Callable[[str], Any] = sys.__stderr__.write
        self.graphic_target = None
        self.execution_count = 0
        self._ready = asyncio.Event()
        self._ready_callbacks: list[Callable[[], None]] = []

    # ------------------------------------------------------------------ #
    # Readiness
    # ------------------------------------------------------------------ #

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def add_ready_callback(self, callback: Callable[[], None]):
        self._ready_callbacks.append(callback)

    async def start(self):
        """Boot the shell. Calling it again is a no-op."""
        if self.ready:
            return
        os.environ.setdefault("MPLBACKEND", "agg")
        self.shell = _CellShell.instance(
            displayhook_class=_QuietDisplayHook,
            display_pub_class=_RoutingDisplayPublisher,
        )
        self.shell.display_handler = self._route_display
        self.shell.user_ns["__livecells__"] = True
        self._ready.set()
        logger.info("Interpreter ready")
        for callback in self._ready_callbacks:
            callback()

    async def wait_ready(self):
        await self._ready.wait()

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def run(self, source: str) -> Any:
        """
        Run source in the shared namespace.

        Returns:
            Value of the trailing expression, or None

        Raises:
            ScriptExecutionError: if compiling or running the code fails
        """
        await self.wait_ready()
        self.execution_count += 1
        shell = self.shell
        shell.last_traceback = ""

        try:
            transformed = shell.transform_cell(source)
            preprocessing_exc = None
        except Exception:
            transformed = source
            preprocessing_exc = sys.exc_info()

        stdout = _SinkWriter(self._emit_stdout)
        stderr = _SinkWriter(self._emit_stderr)
        saved = sys.stdout, sys.stderr
        sys.stdout, sys.stderr = stdout, stderr
        try:
            result = await shell.run_cell_async(
                source,
                store_history=True,
                transformed_cell=transformed,
                preprocessing_exc_tuple=preprocessing_exc,
            )
        finally:
            sys.stdout, sys.stderr = saved
            self._flush_figures()

        error = result.error_before_exec or result.error_in_exec
        if error is not None:
            trace = shell.last_traceback or "".join(
                traceback.format_exception_only(type(error), error)
            )
            raise ScriptExecutionError(
                type(error).__name__, str(error), trace.rstrip("\n")
            ) from error

        return result.result

    def _emit_stdout(self, text: str):
        self.stdout(text)

    def _emit_stderr(self, text: str):
        self.stderr(text)

    def _route_display(self, data: dict):
        if any(mime.startswith("image/") for mime in data) and self.graphic_target is not None:
            self.graphic_target.add(data)
            return
        text = data.get("text/plain")
        if text:
            self._emit_stdout(text + "\n")

    def _flush_figures(self):
        """Move open matplotlib figures into the graphic target."""
        pyplot = sys.modules.get("matplotlib.pyplot")
        if pyplot is None:
            return
        if self.graphic_target is not None:
            for num in pyplot.get_fignums():
                figure = pyplot.figure(num)
                buffer = io.BytesIO()
                figure.savefig(buffer, format="png", bbox_inches="tight")
                self.graphic_target.add({
                    "image/png": base64.b64encode(buffer.getvalue()).decode("ascii"),
                    "text/plain": repr(figure),
                })
        pyplot.close("all")

    # ------------------------------------------------------------------ #
    # Dependencies
    # ------------------------------------------------------------------ #

    async def load_packages_from_imports(self, source: str) -> list[str]:
        """
        Make sure every module imported by source can be imported.

        Returns:
            Names of the imported top-level modules

        Raises:
            DependencyResolutionError: if a module is missing and cannot be installed
        """
        imports = find_imports(source)
        missing = [name for name in imports if not _importable(name)]
        if missing:
            if not self.auto_install:
                raise DependencyResolutionError(missing)
            await self.install_packages([_PACKAGE_ALIASES.get(m, m) for m in missing])
            importlib.invalidate_caches()
        return imports

    async def install_packages(self, names: list[str]):
        """Install distributions with pip into the running environment."""
        if not names:
            return
        logger.info("Installing packages: %s", ", ".join(names))
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "pip", "install", "--quiet", *names,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, err = await process.communicate()
        if process.returncode != 0:
            raise DependencyResolutionError(names, err.decode(errors="replace").strip())

    # ------------------------------------------------------------------ #
    # Namespace
    # ------------------------------------------------------------------ #

    def get_variable(self, name: str) -> Any:
        """Get a variable from the namespace."""
        return self.shell.user_ns.get(name)

    def set_variable(self, name: str, value: Any):
        """Set a variable in the namespace."""
        self.shell.user_ns[name] = value

    def get_defined_names(self) -> list[str]:
        """Get list of user-defined names in namespace."""
        return [k for k in self.shell.user_ns.keys() if not k.startswith("_")]

    def reset(self):
        """Reset the namespace to a clean state."""
        if self.shell is not None:
            self.shell.reset()
            self.shell.user_ns["__livecells__"] = True
        self.execution_count = 0
