"""
CellExecutor: runs cells against a Session and records the outcome on the cell.
"""

import asyncio
import logging
import time
import traceback
from datetime import datetime
from typing import Callable, Iterable, Optional

from scriptbook.errors import CellExecutionError
from scriptbook.notebook import Cell

logger = logging.getLogger(__name__)


class CellExecutor:
    """
    Drives the run state of cells executed in one session.

    A cell goes idle -> running -> success or error. Running clears the
    outputs and stamps the start time; success stores one rich output and
    the duration; error stores one error output and no duration.
    """

    def __init__(
        self,
        session,
        clock: Optional[Callable[[], datetime]] = None,
        timer: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            session: Anything with ``async execute(code, *, label=None)``
            clock: Wall clock for ``run_start_time``
            timer: Monotonic timer for ``last_run_duration``
        """
        self.session = session
        self.clock = clock or datetime.now
        self.timer = timer or time.perf_counter
        self._tasks: dict[str, asyncio.Task] = {}

    async def execute_cell(self, cell: Cell) -> Cell:
        """
        Execute one cell and record its outputs and run metadata.

        Errors raised by the code never propagate; they become the cell's
        error output. Cancellation is recorded and then re-raised.
        """
        task = asyncio.current_task()
        if task is not None:
            self._tasks[cell.id] = task

        cell.mark_running(self.clock())
        started = self.timer()
        try:
            result = await self.session.execute(cell.source, label=cell.id)
        except CellExecutionError as e:
            cell.mark_error(e.name, e.message, e.trace)
            logger.debug("Cell %s failed: %s: %s", cell.id, e.name, e.message)
        except asyncio.CancelledError:
            cell.mark_error("CancelledError", "Execution was cancelled")
            raise
        except Exception as e:
            logger.exception("Unexpected failure executing cell %s", cell.id)
            cell.mark_error(type(e).__name__, str(e), traceback.format_exc())
        else:
            cell.mark_success(result.data, self.timer() - started)
            logger.debug("Cell %s finished in %.3fs", cell.id, cell.last_run_duration)
        finally:
            if task is not None and self._tasks.get(cell.id) is task:
                del self._tasks[cell.id]
        return cell

    def execute_all_cells(self, cells: Iterable[Cell]) -> list[asyncio.Task]:
        """
        Start every cell without waiting for the previous one.

        Requests reach the session in document order, but each cell's
        outputs land as soon as its own reply does, and one cell failing
        does not stop the rest. Must be called from a running event loop.

        Returns:
            The spawned tasks, in document order
        """
        loop = asyncio.get_running_loop()
        tasks = []
        for cell in cells:
            task = loop.create_task(self.execute_cell(cell), name=f"execute:{cell.id}")
            self._tasks[cell.id] = task
            task.add_done_callback(lambda t, cell_id=cell.id: self._forget(cell_id, t))
            tasks.append(task)
        return tasks

    def _forget(self, cell_id: str, task: asyncio.Task):
        if self._tasks.get(cell_id) is task:
            del self._tasks[cell_id]

    async def run_all_cells(self, cells: Iterable[Cell]) -> list[Cell]:
        """Execute cells strictly top to bottom, each after the previous finished."""
        done = []
        for cell in cells:
            done.append(await self.execute_cell(cell))
        return done

    def cancel_cell(self, cell: Cell) -> bool:
        """
        Cancel one cell's execution.

        A cell still waiting for the session is dropped; the cell currently
        running in the session is interrupted.

        Returns:
            True if anything was cancelled or interrupted
        """
        if self.session.busy_with == cell.id:
            return self.session.interrupt()
        task = self._tasks.get(cell.id)
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    def cancel_all(self) -> int:
        """
        Cancel every queued cell, then interrupt the one in flight.

        Returns:
            Number of cells cancelled or interrupted
        """
        in_flight = self.session.busy_with
        count = 0
        for cell_id, task in list(self._tasks.items()):
            if cell_id != in_flight and not task.done():
                task.cancel()
                count += 1
        if in_flight is not None and self.session.interrupt():
            count += 1
        return count

    @property
    def pending_cells(self) -> list[str]:
        """Ids of cells whose execution has not finished."""
        return [cell_id for cell_id, task in self._tasks.items() if not task.done()]
