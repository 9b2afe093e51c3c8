"""
CLI interface for livecells with Rich output.
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.status import Status

from livecells.cells import InteractiveCell, OutputCell
from livecells.config import Settings
from livecells.document import Document
from livecells.feedback import Notifier
from livecells.page import Page
from livecells.utils import render_target, truncate_text

console = Console()


class ConsoleNotifier(Notifier):
    """Shows alerts and prompts on the console."""

    def alert(self, message: str):
        super().alert(message)
        console.print(f"[red]Alert:[/red] {message}")

    def prompt(self, message: str):
        super().prompt(message)
        console.print(f"[yellow]{message}[/yellow] [dim](--api-key or LIVECELLS_API_KEY)[/dim]")


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_page(path: str, **overrides) -> Page:
    document = Document.load(Path(path))
    settings = Settings.from_env().merged(**document.settings).merged(**overrides)
    return Page(document, settings=settings, notifier=ConsoleNotifier())


def _print_cell(cell):
    if isinstance(cell, InteractiveCell):
        for view in cell.render():
            title = f"[bold]{view['id']}[/bold]"
            if cell.options.label:
                title += f"  [dim]{cell.options.label}[/dim]"
            console.print(render_target(view, title=title))
    elif isinstance(cell, OutputCell):
        console.print(f"[dim]--- Output cell {cell.id} ---[/dim]")
        console.print(truncate_text(repr(cell.result), 400))


@click.group()
def main():
    """livecells: runnable code cells sharing one Python interpreter."""
    pass


@main.command()
@click.argument("path", type=click.Path(), default="document.json")
def new(path: str):
    """Create a new document with a setup and an interactive cell."""
    doc = Document.new()
    doc.save(Path(path))
    console.print(Panel(
        f"[green]Created:[/green] {path}\n"
        f"[dim]Cells:[/dim] {len(doc.cells)}",
        title="[bold blue]livecells[/bold blue]",
        border_style="green",
    ))
    console.print(f"\n[dim]Run with:[/dim] livecells run {path}")


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--feedback", "with_feedback", is_flag=True, help="Request AI feedback for editable cells")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def run(path: str, with_feedback: bool, verbose: bool):
    """Run every cell of a document and show the results."""
    _setup_logging(verbose)
    page = _load_page(path, feedback=True if with_feedback else None)

    async def _run():
        with Status("Loading Python...", console=console, spinner="dots"):
            await page.boot()
        for cell in page.registry:
            if isinstance(cell, (InteractiveCell, OutputCell)):
                await cell.execute()
            if with_feedback and isinstance(cell, InteractiveCell):
                await cell.request_feedback()
            _print_cell(cell)

    asyncio.run(_run())

    failed = [
        t.id for c in page.registry if isinstance(c, InteractiveCell)
        for t in c.targets if any(r.stream == "stderr" for r in t.output.records)
    ]
    if failed:
        console.print(f"[yellow]Cells with errors: {', '.join(failed)}[/yellow]")
    else:
        console.print(f"[green]All {len(page.registry)} cells executed[/green]")


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.argument("cell_id")
@click.option("--backend", type=click.Choice(["remote", "local"]), default=None, help="Feedback backend")
@click.option("--base-url", default=None, help="Base URL of the model API")
@click.option("--api-key", default=None, help="API key for the model API")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def feedback(path: str, cell_id: str, backend: str, base_url: str, api_key: str, verbose: bool):
    """Request AI feedback for one interactive cell."""
    _setup_logging(verbose)
    page = _load_page(path, feedback=True, backend=backend, base_url=base_url, api_key=api_key)

    try:
        cell = page.registry.get(cell_id)
    except KeyError:
        raise click.BadParameter(f"no cell with id {cell_id!r}", param_hint="CELL_ID")
    if not isinstance(cell, InteractiveCell):
        raise click.BadParameter(f"cell {cell_id!r} is not interactive", param_hint="CELL_ID")

    async def _feedback():
        await page.boot()
        return await cell.request_feedback()

    ok = asyncio.run(_feedback())
    _print_cell(cell)
    if not ok:
        sys.exit(1)


@main.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=5000, type=int, help="Port to listen on")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def serve(host: str, port: int, verbose: bool):
    """Launch the local feedback server."""
    _setup_logging(verbose)
    from livecells.web import launch_server
    launch_server(host=host, port=port)


if __name__ == "__main__":
    main()
