"""
Tests for CellExecutor against scripted sessions.
"""

import asyncio
from datetime import datetime

import pytest

from scriptbook.executor import CellExecutor
from scriptbook.notebook import Cell, ErrorOutput, RichOutput, RunState

from tests.stubs import StubSession, err, ok


def fixed_clock():
    return datetime(2024, 1, 1, 9, 0, 0)


class TestExecuteCell:
    """Test the single-cell state machine."""

    @pytest.mark.asyncio
    async def test_success_path(self):
        session = StubSession(script={"1+1": (0, {"status": "ok", "data": {"text/plain": "2"}})})
        executor = CellExecutor(session)
        cell = Cell(source="1+1")

        await executor.execute_cell(cell)

        assert cell.run_state == RunState.SUCCESS
        assert cell.outputs == [RichOutput(data={"text/plain": "2"})]
        assert cell.last_run_duration is not None
        assert cell.last_run_duration >= 0
        assert cell.run_start_time is not None

    @pytest.mark.asyncio
    async def test_error_path(self):
        session = StubSession(script={
            "x.y.z": (0, err("ReferenceError", "x is not defined", "...")),
        })
        executor = CellExecutor(session)
        cell = Cell(source="x.y.z")

        await executor.execute_cell(cell)

        assert cell.run_state == RunState.ERROR
        assert cell.outputs == [
            ErrorOutput(name="ReferenceError", message="x is not defined", trace="...")
        ]
        assert cell.last_run_duration is None
        assert cell.run_start_time is not None

    @pytest.mark.asyncio
    async def test_start_time_and_duration_from_injected_clocks(self):
        ticks = iter([100.0, 100.75])
        executor = CellExecutor(
            StubSession(script={"2": (0, ok("2"))}),
            clock=fixed_clock,
            timer=lambda: next(ticks),
        )
        cell = Cell(source="2")

        await executor.execute_cell(cell)

        assert cell.run_start_time == fixed_clock()
        assert cell.last_run_duration == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_running_state_while_in_flight(self):
        session = StubSession(script={"slow": (0.05, ok("done"))})
        executor = CellExecutor(session)
        cell = Cell(source="slow")
        cell.outputs = [RichOutput(data={"text/plain": "stale"})]

        task = asyncio.ensure_future(executor.execute_cell(cell))
        await asyncio.sleep(0.01)

        assert cell.run_state == RunState.RUNNING
        assert cell.outputs == []
        assert cell.run_start_time is not None

        await task
        assert cell.run_state == RunState.SUCCESS

    @pytest.mark.asyncio
    async def test_rerun_replaces_previous_output(self):
        session = StubSession(script={"boom": (0, err("ValueError", "bad"))})
        executor = CellExecutor(session)
        cell = Cell(source="ok")

        await executor.execute_cell(cell)
        assert cell.run_state == RunState.SUCCESS

        cell.source = "boom"
        await executor.execute_cell(cell)

        assert cell.run_state == RunState.ERROR
        assert len(cell.outputs) == 1
        assert cell.last_run_duration is None

    @pytest.mark.asyncio
    async def test_label_is_cell_id(self):
        seen = []

        class LabelSession(StubSession):
            async def execute(self, code, *, label=None):
                seen.append(label)
                return await super().execute(code, label=label)

        cell = Cell(source="x")
        await CellExecutor(LabelSession()).execute_cell(cell)

        assert seen == [cell.id]

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_output(self):
        class BrokenSession(StubSession):
            async def execute(self, code, *, label=None):
                raise RuntimeError("pipe closed")

        cell = Cell(source="x")
        await CellExecutor(BrokenSession()).execute_cell(cell)

        assert cell.run_state == RunState.ERROR
        assert cell.outputs[0].name == "RuntimeError"
        assert cell.outputs[0].message == "pipe closed"
        assert "RuntimeError" in cell.outputs[0].trace

    @pytest.mark.asyncio
    async def test_malformed_reply_becomes_protocol_error(self):
        session = StubSession(script={"x": (0, {"unexpected": True})})
        cell = Cell(source="x")

        await CellExecutor(session).execute_cell(cell)

        assert cell.run_state == RunState.ERROR
        assert cell.outputs[0].name == "SessionProtocolError"


class TestConcurrentCells:
    """Results must reach the cell that asked for them."""

    @pytest.mark.asyncio
    async def test_no_cross_talk_when_first_is_slower(self):
        session = StubSession(script={
            "first": (0.1, ok("result of first")),
            "second": (0.01, ok("result of second")),
        })
        executor = CellExecutor(session)
        first, second = Cell(source="first"), Cell(source="second")

        await asyncio.gather(executor.execute_cell(first), executor.execute_cell(second))

        assert first.outputs == [RichOutput(data={"text/plain": "result of first"})]
        assert second.outputs == [RichOutput(data={"text/plain": "result of second"})]
        assert session.completed == ["second", "first"]

    @pytest.mark.asyncio
    async def test_no_cross_talk_with_serial_session(self):
        session = StubSession(serial=True, script={
            "first": (0.05, ok("A")),
            "second": (0, ok("B")),
        })
        executor = CellExecutor(session)
        first, second = Cell(source="first"), Cell(source="second")

        await asyncio.gather(executor.execute_cell(first), executor.execute_cell(second))

        assert first.outputs[0].data == {"text/plain": "A"}
        assert second.outputs[0].data == {"text/plain": "B"}
        assert session.completed == ["first", "second"]


class TestExecuteAll:
    """Test fan-out and sequential batch execution."""

    @pytest.mark.asyncio
    async def test_fan_out_starts_in_order_and_returns_tasks(self):
        session = StubSession(script={
            "a": (0.05, ok("A")),
            "b": (0, ok("B")),
            "c": (0.02, ok("C")),
        })
        executor = CellExecutor(session)
        cells = [Cell(source=s) for s in "abc"]

        tasks = executor.execute_all_cells(cells)
        assert len(tasks) == 3
        assert sorted(executor.pending_cells) == sorted(c.id for c in cells)

        await asyncio.gather(*tasks)

        assert session.calls == ["a", "b", "c"]
        assert session.completed == ["b", "c", "a"]
        assert [c.outputs[0].data["text/plain"] for c in cells] == ["A", "B", "C"]
        assert executor.pending_cells == []

    @pytest.mark.asyncio
    async def test_fan_out_does_not_wait(self):
        session = StubSession(script={"a": (0.05, ok("A"))})
        executor = CellExecutor(session)
        cells = [Cell(source="a"), Cell(source="b")]

        tasks = executor.execute_all_cells(cells)

        assert all(c.run_state == RunState.IDLE for c in cells)
        await asyncio.sleep(0)
        assert all(c.run_state == RunState.RUNNING for c in cells)
        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_error_does_not_abort_batch(self):
        session = StubSession(script={"bad": (0, err("NameError", "name 'q' is not defined"))})
        executor = CellExecutor(session)
        cells = [Cell(source="ok1"), Cell(source="bad"), Cell(source="ok2")]

        await asyncio.gather(*executor.execute_all_cells(cells))

        assert [c.run_state for c in cells] == [RunState.SUCCESS, RunState.ERROR, RunState.SUCCESS]

    @pytest.mark.asyncio
    async def test_run_all_cells_is_sequential(self):
        session = StubSession(script={"a": (0.05, ok("A")), "b": (0, ok("B"))})
        executor = CellExecutor(session)
        cells = [Cell(source="a"), Cell(source="b")]

        done = await executor.run_all_cells(cells)

        assert done == cells
        assert session.completed == ["a", "b"]


class TestCancellation:
    """Test cancel_cell / cancel_all."""

    @pytest.mark.asyncio
    async def test_cancel_queued_cell(self):
        session = StubSession(serial=True, script={"slow": (0.1, ok("S"))})
        executor = CellExecutor(session)
        slow, queued = Cell(source="slow"), Cell(source="queued")

        tasks = executor.execute_all_cells([slow, queued])
        await asyncio.sleep(0.01)

        assert executor.cancel_cell(queued) is True
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert isinstance(results[1], asyncio.CancelledError)
        assert queued.run_state == RunState.ERROR
        assert queued.outputs[0].name == "CancelledError"
        assert slow.run_state == RunState.SUCCESS
        assert "queued" not in session.completed

    @pytest.mark.asyncio
    async def test_cancel_in_flight_cell_interrupts(self):
        session = StubSession(serial=True, script={"loop": (5, ok("never"))})
        executor = CellExecutor(session)
        cell = Cell(source="loop")

        tasks = executor.execute_all_cells([cell])
        await asyncio.sleep(0.01)

        assert executor.cancel_cell(cell) is True
        await asyncio.gather(*tasks)

        assert session.interrupts == 1
        assert cell.run_state == RunState.ERROR
        assert cell.outputs[0].name == "KeyboardInterrupt"

    @pytest.mark.asyncio
    async def test_cancel_finished_cell_is_noop(self):
        executor = CellExecutor(StubSession())
        cell = Cell(source="x")
        await executor.execute_cell(cell)

        assert executor.cancel_cell(cell) is False
        assert cell.run_state == RunState.SUCCESS

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        session = StubSession(serial=True, script={"loop": (5, ok("never"))})
        executor = CellExecutor(session)
        cells = [Cell(source="loop"), Cell(source="a"), Cell(source="b")]

        tasks = executor.execute_all_cells(cells)
        await asyncio.sleep(0.01)

        assert executor.cancel_all() == 3
        await asyncio.gather(*tasks, return_exceptions=True)

        assert session.interrupts == 1
        assert all(c.run_state == RunState.ERROR for c in cells)
        assert cells[0].outputs[0].name == "KeyboardInterrupt"
        assert [c.outputs[0].name for c in cells[1:]] == ["CancelledError", "CancelledError"]
        assert session.completed == []
