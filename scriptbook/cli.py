"""
CLI interface for scriptbook with Rich output.
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.status import Status
from rich.syntax import Syntax
from rich.text import Text

from scriptbook import __version__
from scriptbook.config import Settings
from scriptbook.content import ContentProvider
from scriptbook.notebook import Cell, Notebook, RunState
from scriptbook.provider import KernelProvider
from scriptbook.utils import format_duration, format_rich_output, get_cell_status

console = Console()

STARTER_CELLS = [
    "# Welcome to scriptbook!\n# Cells share one Python session; variables persist.\nmessage = 'hello'",
    "message.upper()",
]


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _print_cell(index: int, cell: Cell):
    """Print a cell's source and its output panel."""
    status_char, status_style = get_cell_status(cell)
    duration = format_duration(cell.last_run_duration)
    subtitle = f"[{status_style}]{status_char}[/{status_style}]"
    if duration:
        subtitle += f" [dim]{duration}[/dim]"

    if cell.source.strip():
        content = Syntax(cell.source, "python", theme="monokai", line_numbers=True, word_wrap=True)
    else:
        content = Text("(empty)", style="dim italic")

    console.print(Panel(
        content,
        title=f"[bold]In [{index}][/bold]",
        title_align="left",
        subtitle=subtitle if cell.run_state != RunState.IDLE else None,
        subtitle_align="right",
        border_style=status_style if status_style != "dim" else "blue",
        padding=(0, 1),
    ))

    for output in cell.outputs:
        if output.output_type == "error":
            console.print(Panel(
                format_rich_output(output),
                title="[red]Error[/red]",
                title_align="left",
                border_style="red",
                padding=(0, 1),
            ))
        else:
            console.print(Panel(
                format_rich_output(output),
                title=f"[blue]Out [{index}][/blue]",
                title_align="left",
                border_style="blue",
                padding=(0, 1),
            ))


async def _run_notebook(nb: Notebook, settings: Settings):
    """Execute every cell of ``nb`` and shut the session down afterwards."""
    provider = KernelProvider(settings=settings)
    try:
        if settings.sequential:
            await provider.run_all_cells(nb)
        else:
            tasks = provider.execute_all_cells(nb)
            await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        await provider.shutdown()


@click.group()
@click.version_option(__version__, prog_name="scriptbook")
def main():
    """scriptbook: plain-text Python notebooks with a persistent session."""
    pass


@main.command()
@click.argument("path", type=click.Path(dir_okay=False), default="notebook.pynb")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing file")
def new(path: str, force: bool):
    """Create a new notebook."""
    target = Path(path)
    if target.exists() and not force:
        console.print(f"[red]{path} already exists[/red] [dim](use --force to overwrite)[/dim]")
        sys.exit(1)

    nb = Notebook(path=target)
    for source in STARTER_CELLS:
        nb.add_cell(source=source)
    ContentProvider().save_notebook(nb)

    console.print(Panel(
        f"[green]Created:[/green] {path}\n"
        f"[dim]Cells:[/dim] {len(nb.cells)}",
        title="[bold blue]scriptbook[/bold blue]",
        border_style="green",
    ))
    console.print(f"\n[dim]Run with:[/dim] scriptbook run {path}")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def show(path: str):
    """Show the cells of a notebook."""
    nb = ContentProvider().load_notebook(path)
    console.print(Panel(
        f"[bold]{nb.name}[/bold]  [dim]{path}[/dim]  [dim]{len(nb.cells)} cells[/dim]",
        title="[bold blue]scriptbook[/bold blue]",
        border_style="blue",
    ))
    for i, cell in enumerate(nb.cells):
        _print_cell(i, cell)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--sequential", "-s", is_flag=True, default=False,
              help="Run cells strictly top to bottom instead of all at once")
@click.option("--timeout", "-t", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Seconds to wait for each cell before interrupting it")
@click.option("--verbose", "-v", is_flag=True, help="Log session activity")
def run(path: str, sequential: bool, timeout: float, verbose: bool):
    """Run every cell of a notebook and print the outputs."""
    try:
        settings = Settings.from_env(
            execute_timeout=timeout,
            sequential=True if sequential else None,
            log_level="DEBUG" if verbose else None,
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        sys.exit(1)
    _configure_logging(settings.log_level)

    nb = ContentProvider().load_notebook(path)
    console.print(Panel(
        f"[bold]{nb.name}[/bold]  [dim]{path}[/dim]",
        title="[bold blue]scriptbook[/bold blue]",
        border_style="blue",
    ))

    with Status("Executing...", console=console, spinner="dots"):
        asyncio.run(_run_notebook(nb, settings))

    for i, cell in enumerate(nb.cells):
        _print_cell(i, cell)

    total = len(nb.cells)
    failed = sum(1 for c in nb.cells if c.run_state == RunState.ERROR)
    console.print()
    if failed:
        console.print(f"[yellow]{total - failed}/{total} cells succeeded[/yellow]")
        sys.exit(1)
    console.print(f"[green]All {total} cells executed successfully[/green]")


if __name__ == "__main__":
    main()
