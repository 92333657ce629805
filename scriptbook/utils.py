"""
Utility functions for rendering cells and outputs.
"""

import json
from typing import Any, Optional

from rich.syntax import Syntax
from rich.text import Text

from scriptbook.notebook import Cell, ErrorOutput, RichOutput, RunState

# Richest first.
PREFERRED_MIME_TYPES = ("text/html", "text/markdown", "application/json", "text/plain")


def _pick_mime(data: dict[str, Any]) -> tuple[Optional[str], Any]:
    for mime_type in PREFERRED_MIME_TYPES:
        if mime_type in data:
            return mime_type, data[mime_type]
    return None, None


def _as_text(mime_type: Optional[str], value: Any) -> str:
    if mime_type == "application/json" and not isinstance(value, str):
        return json.dumps(value, indent=2)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def format_output(output) -> str:
    """
    Format an output for display (plain text).

    Args:
        output: RichOutput or ErrorOutput from a cell

    Returns:
        Formatted string for display
    """
    if isinstance(output, ErrorOutput):
        return f"{output.name}: {output.message}"

    if isinstance(output, RichOutput):
        mime_type, value = _pick_mime(output.data)
        if mime_type is None:
            return str(output.data) if output.data else ""
        return _as_text(mime_type, value)

    return str(output)


def format_rich_output(output, show_trace: bool = True):
    """
    Format an output as a Rich renderable.

    Args:
        output: RichOutput or ErrorOutput from a cell
        show_trace: Append the traceback to error outputs

    Returns:
        Rich renderable object for console display
    """
    if isinstance(output, ErrorOutput):
        error_text = Text()
        error_text.append(output.name, style="bold red")
        error_text.append(f": {output.message}", style="red")
        if show_trace and output.trace:
            error_text.append(f"\n{output.trace.rstrip()}", style="dim red")
        return error_text

    if isinstance(output, RichOutput):
        mime_type, value = _pick_mime(output.data)
        text = _as_text(mime_type, value)
        if mime_type == "application/json":
            return Syntax(text, "json", theme="monokai", line_numbers=False)
        if mime_type in ("text/html", "text/markdown"):
            return Text(text, style="cyan")
        if mime_type is None:
            return Text(str(output.data), style="dim")
        return Text(text)

    return Text(str(output), style="dim")


def get_cell_status(cell: Cell) -> tuple[str, str]:
    """
    Get status indicator and style for a cell.

    Returns:
        Tuple of (indicator_string, rich_style)
    """
    if cell.run_state == RunState.SUCCESS:
        return ("ok", "green")
    if cell.run_state == RunState.ERROR:
        return ("err", "red")
    if cell.run_state == RunState.RUNNING:
        return ("..", "yellow")
    return ("--", "dim")


def format_duration(seconds: Optional[float]) -> str:
    """Human readable run duration, empty when unknown."""
    if seconds is None:
        return ""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, rest = divmod(seconds, 60)
    return f"{int(minutes)}m{rest:04.1f}s"


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to max_length, adding ellipsis if needed."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
