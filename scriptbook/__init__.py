"""
scriptbook: plain-text Python notebooks with a persistent session per document.

This package provides:
- A .pynb codec: cells separated by a delimiter line, no JSON
- One long-lived IPython process per open document, so state carries
  from cell to cell
- Per-cell run state, timing and a single rich or error output
"""

__version__ = "0.1.0"

from scriptbook.codec import CELL_DELIMITER, decode, encode
from scriptbook.config import Settings
from scriptbook.content import ContentProvider, NotebookBackup
from scriptbook.errors import (
    CancellationNotSupportedError,
    CellExecutionError,
    DelimiterCollisionError,
    ScriptbookError,
    SessionDiedError,
    SessionError,
    SessionProtocolError,
    SessionTimeoutError,
)
from scriptbook.executor import CellExecutor
from scriptbook.notebook import Cell, ErrorOutput, Notebook, NotebookData, RichOutput, RunState
from scriptbook.provider import KernelProvider
from scriptbook.session import ExecutionErr, ExecutionOk, Session

__all__ = [
    "CELL_DELIMITER",
    "decode",
    "encode",
    "Settings",
    "ContentProvider",
    "NotebookBackup",
    "CancellationNotSupportedError",
    "CellExecutionError",
    "DelimiterCollisionError",
    "ScriptbookError",
    "SessionDiedError",
    "SessionError",
    "SessionProtocolError",
    "SessionTimeoutError",
    "CellExecutor",
    "Cell",
    "ErrorOutput",
    "Notebook",
    "NotebookData",
    "RichOutput",
    "RunState",
    "KernelProvider",
    "ExecutionErr",
    "ExecutionOk",
    "Session",
]
