"""
KernelProvider: one Session per open document, and the execution operations
the host calls.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from scriptbook.config import Settings
from scriptbook.executor import CellExecutor
from scriptbook.notebook import Cell, Notebook
from scriptbook.session import Session

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Path, Settings], Session]


def _default_session_factory(cwd: Path, settings: Settings) -> Session:
    return Session(cwd, settings=settings)


class KernelProvider:
    """
    Maps documents to sessions.

    Sessions are keyed on the document's path, created on first use and
    scoped to the document's folder. They are a cache: dropping one only
    loses interpreter state, never document content. Construct one provider
    per host and pass it where it is needed.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        """
        Args:
            settings: Passed to every session created
            session_factory: ``(cwd, settings) -> session``; defaults to Session
        """
        self.settings = settings or Settings.from_env()
        self._session_factory = session_factory or _default_session_factory
        self._executors: dict[str, CellExecutor] = {}

    def __contains__(self, document: Notebook) -> bool:
        return document.key in self._executors

    def __len__(self) -> int:
        return len(self._executors)

    def _executor(self, document: Notebook) -> CellExecutor:
        key = document.key
        executor = self._executors.get(key)
        if executor is None:
            session = self._session_factory(document.directory, self.settings)
            executor = CellExecutor(session)
            self._executors[key] = executor
            logger.debug("Created session for %s in %s", key, document.directory)
        return executor

    def provide_kernel(self, document: Notebook) -> Session:
        """
        Get the session for a document, creating it if needed.

        Returns the same session for the same document every time.
        """
        return self._executor(document).session

    async def execute_cell(self, document: Notebook, cell: Cell) -> Cell:
        """Execute one cell of a document in the document's session."""
        return await self._executor(document).execute_cell(cell)

    def execute_all_cells(self, document: Notebook) -> list[asyncio.Task]:
        """
        Start every cell of a document without waiting between them.

        Completions may arrive out of order. The tasks are returned so a
        host that wants to can wait for them.
        """
        return self._executor(document).execute_all_cells(list(document.cells))

    async def run_all_cells(self, document: Notebook) -> list[Cell]:
        """Execute every cell of a document strictly in order."""
        return await self._executor(document).run_all_cells(list(document.cells))

    def cancel_cell_execution(self, document: Notebook, cell: Cell) -> bool:
        """
        Best-effort cancel of one cell.

        Returns:
            True if the cell was dropped from the queue or interrupted
        """
        executor = self._executors.get(document.key)
        if executor is None:
            return False
        return executor.cancel_cell(cell)

    def cancel_all_cells_execution(self, document: Notebook) -> int:
        """
        Best-effort cancel of everything running for a document.

        Returns:
            Number of cells cancelled or interrupted
        """
        executor = self._executors.get(document.key)
        if executor is None:
            return 0
        return executor.cancel_all()

    async def close_document(self, document: Notebook) -> bool:
        """
        Forget a closed document and stop its session.

        Returns:
            True if the document had a session
        """
        executor = self._executors.pop(document.key, None)
        if executor is None:
            return False
        executor.cancel_all()
        await executor.session.shutdown()
        logger.debug("Closed session for %s", document.key)
        return True

    async def shutdown(self):
        """Stop every session."""
        executors = list(self._executors.values())
        self._executors.clear()
        for executor in executors:
            executor.cancel_all()
        await asyncio.gather(
            *(executor.session.shutdown() for executor in executors),
            return_exceptions=True,
        )
