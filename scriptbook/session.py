"""
Session: one interpreter process per document, driven asynchronously.

Requests go to the child process over a multiprocessing queue; a reader
thread routes every reply back to the future waiting on that request's id.
Calls are serialised with an asyncio lock, so the child sees one request at
a time and replies come back in the order the calls were made.
"""

import asyncio
import logging
import multiprocessing
import os
import queue
import signal
import threading
from pathlib import Path
from typing import Annotated, Any, Optional, Union, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from scriptbook.config import Settings
from scriptbook.errors import (
    CancellationNotSupportedError,
    CellExecutionError,
    SessionDiedError,
    SessionProtocolError,
    SessionTimeoutError,
)
from scriptbook.kernel import kernel_main

logger = logging.getLogger(__name__)


class ExecutionOk(BaseModel):
    """The cell ran; ``data`` is the rendered value."""
    status: Literal["ok"] = "ok"
    data: dict[str, Any] = Field(default_factory=dict)


class ExecutionErr(BaseModel):
    """The cell raised."""
    status: Literal["error"] = "error"
    name: str = "Error"
    message: str = ""
    trace: str = ""

    @field_validator("name", "message", mode="before")
    @classmethod
    def _as_text(cls, value):
        return value if isinstance(value, str) else str(value)

    @field_validator("trace", mode="before")
    @classmethod
    def _join_trace(cls, value):
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return "\n".join(str(line) for line in value)
        return value if isinstance(value, str) else str(value)


ExecutionResult = Annotated[Union[ExecutionOk, ExecutionErr], Field(discriminator="status")]

_reply_adapter = TypeAdapter(ExecutionResult)


def coerce_reply(payload: Any) -> Union[ExecutionOk, ExecutionErr]:
    """
    Validate a raw reply from the interpreter process.

    Anything that is not a well-formed ok/error reply becomes an
    ``ExecutionErr`` named ``SessionProtocolError``.
    """
    try:
        return _reply_adapter.validate_python(payload)
    except ValidationError as e:
        return ExecutionErr(
            name="SessionProtocolError",
            message=f"Malformed reply from interpreter process ({e.error_count()} errors)",
            trace=str(e),
        )


def _settle(future: asyncio.Future, reply: Optional[dict] = None,
            error: Optional[BaseException] = None):
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(reply)


def _settle_threadsafe(future: asyncio.Future, reply: Optional[dict] = None,
                       error: Optional[BaseException] = None):
    try:
        future.get_loop().call_soon_threadsafe(_settle, future, reply, error)
    except RuntimeError:
        # Event loop already closed; nobody is waiting anymore.
        pass


class _Channel:
    """One interpreter process, its queues and its outstanding requests."""

    def __init__(self, process, requests, replies):
        self.process = process
        self.requests = requests
        self.replies = replies
        self.pending: dict[str, asyncio.Future] = {}
        self.lock = threading.Lock()
        self.closed = threading.Event()
        self.reader: Optional[threading.Thread] = None

    def register(self, request_id: str, future: asyncio.Future):
        with self.lock:
            self.pending[request_id] = future

    def discard(self, request_id: str):
        with self.lock:
            self.pending.pop(request_id, None)

    def claim(self, request_id) -> Optional[asyncio.Future]:
        with self.lock:
            return self.pending.pop(request_id, None)

    def fail_all(self, message: str, error_class=SessionDiedError):
        with self.lock:
            futures = list(self.pending.values())
            self.pending.clear()
        for future in futures:
            _settle_threadsafe(future, error=error_class(message))


class Session:
    """
    Persistent interpreter process for one document.

    The process is started lazily by the first ``execute`` and runs in
    ``cwd``. Variables defined by one call are visible to the next.
    """

    def __init__(self, cwd: Union[str, Path], settings: Optional[Settings] = None):
        """
        Args:
            cwd: Working directory of the interpreter process
            settings: Timeouts and process options (defaults from environment)
        """
        self.cwd = Path(cwd)
        self.settings = settings or Settings.from_env()
        self._context = multiprocessing.get_context(self.settings.start_method)
        self._channel: Optional[_Channel] = None
        self._lock = asyncio.Lock()
        self._in_flight: Optional[str] = None
        self.busy_with: Optional[str] = None

    def __repr__(self) -> str:
        return f"<Session cwd={str(self.cwd)!r} pid={self.pid}>"

    @property
    def pid(self) -> Optional[int]:
        return self._channel.process.pid if self._channel else None

    @property
    def is_alive(self) -> bool:
        return self._channel is not None and self._channel.process.is_alive()

    def start(self):
        """Start the interpreter process if it is not running."""
        if self.is_alive:
            return
        if self._channel is not None:
            logger.warning(
                "Interpreter process for %s exited with code %s; starting a new one",
                self.cwd, self._channel.process.exitcode,
            )
            self._close_channel(self._channel)
            self._channel = None

        requests = self._context.Queue()
        replies = self._context.Queue()
        process = self._context.Process(
            target=kernel_main,
            args=(requests, replies, str(self.cwd)),
            name=f"scriptbook-kernel:{self.cwd.name}",
            daemon=True,
        )
        process.start()

        channel = _Channel(process, requests, replies)
        channel.reader = threading.Thread(
            target=self._read_replies,
            args=(channel,),
            name=f"scriptbook-reader-{process.pid}",
            daemon=True,
        )
        channel.reader.start()
        self._channel = channel
        logger.info("Started interpreter process %s in %s", process.pid, self.cwd)

    def _read_replies(self, channel: _Channel):
        """Route replies to their futures until the channel closes or the process dies."""
        while not channel.closed.is_set():
            try:
                reply = channel.replies.get(timeout=self.settings.poll_interval)
            except queue.Empty:
                if not channel.process.is_alive() and not channel.closed.is_set():
                    logger.error(
                        "Interpreter process %s died with exit code %s",
                        channel.process.pid, channel.process.exitcode,
                    )
                    channel.fail_all(
                        f"Interpreter process exited with code {channel.process.exitcode}"
                    )
                    return
                continue
            except (EOFError, OSError, ValueError):
                if not channel.closed.is_set():
                    channel.fail_all("Lost connection to the interpreter process")
                return
            except Exception as e:
                # The reply arrived but could not be unpickled. Only one
                # request is in flight, so it is the one to fail.
                logger.exception("Unreadable reply from interpreter process %s",
                                 channel.process.pid)
                channel.fail_all(f"Unreadable reply from interpreter process: {e}",
                                 SessionProtocolError)
                continue

            request_id = reply.get("id") if isinstance(reply, dict) else None
            future = channel.claim(request_id)
            if future is None:
                logger.warning("Dropping reply for unknown or abandoned request %s", request_id)
                continue
            _settle_threadsafe(future, reply=reply)

    async def execute(self, code: str, *, label: Optional[str] = None) -> ExecutionOk:
        """
        Run code in the interpreter process.

        Args:
            code: Python source to run
            label: Caller tag, exposed as ``busy_with`` while the request is in flight

        Returns:
            ExecutionOk with the rendered value

        Raises:
            CellExecutionError: The code raised (or the process failed, as a
                SessionError subclass)
        """
        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.start)
            channel = self._channel
            request_id = uuid4().hex
            future = loop.create_future()
            channel.register(request_id, future)
            try:
                channel.requests.put({"type": "execute", "id": request_id, "code": code})
                self._in_flight = request_id
                self.busy_with = label
                reply = await asyncio.wait_for(future, self.settings.execute_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Request %s timed out after %ss; interrupting process %s",
                    request_id, self.settings.execute_timeout, channel.process.pid,
                )
                self._interrupt_quietly(channel)
                raise SessionTimeoutError(
                    f"No reply within {self.settings.execute_timeout} seconds"
                ) from None
            finally:
                channel.discard(request_id)
                self._in_flight = None
                self.busy_with = None

        outcome = coerce_reply(reply)
        if isinstance(outcome, ExecutionErr):
            raise CellExecutionError(outcome.name, outcome.message, outcome.trace)
        return outcome

    def interrupt(self) -> bool:
        """
        Interrupt the request currently in flight.

        Returns:
            True if a signal was sent, False if nothing was running

        Raises:
            CancellationNotSupportedError: If the platform cannot deliver SIGINT
        """
        channel = self._channel
        if self._in_flight is None:
            return False
        if channel is None or not channel.process.is_alive():
            return False
        self._send_sigint(channel)
        logger.info("Interrupted interpreter process %s", channel.process.pid)
        return True

    def _send_sigint(self, channel: _Channel):
        if os.name == "nt" or not hasattr(signal, "SIGINT"):
            raise CancellationNotSupportedError(
                "Interrupting the interpreter process is not supported on this platform"
            )
        os.kill(channel.process.pid, signal.SIGINT)

    def _interrupt_quietly(self, channel: _Channel):
        try:
            if channel.process.is_alive():
                self._send_sigint(channel)
        except (CancellationNotSupportedError, ProcessLookupError) as e:
            logger.debug("Could not interrupt process %s: %s", channel.process.pid, e)

    def _close_channel(self, channel: _Channel):
        channel.closed.set()
        process = channel.process
        if process.is_alive():
            try:
                channel.requests.put({"type": "shutdown"})
            except (OSError, ValueError):
                pass
            process.join(timeout=self.settings.shutdown_timeout)
            if process.is_alive():
                logger.warning("Interpreter process %s did not exit; terminating", process.pid)
                process.terminate()
                process.join(timeout=1)
        if channel.reader is not None and channel.reader is not threading.current_thread():
            channel.reader.join(timeout=self.settings.poll_interval * 5)
        channel.fail_all("Session was shut down")
        for q in (channel.requests, channel.replies):
            q.cancel_join_thread()
            q.close()
        logger.info("Stopped interpreter process %s", process.pid)

    def close(self):
        """Stop the interpreter process. The next ``execute`` starts a fresh one."""
        channel = self._channel
        self._channel = None
        if channel is not None:
            self._close_channel(channel)

    def restart(self):
        """Discard all interpreter state and start a fresh process."""
        logger.info("Restarting interpreter process for %s", self.cwd)
        self.close()
        self.start()

    async def shutdown(self):
        """Stop the interpreter process without blocking the event loop."""
        channel = self._channel
        self._channel = None
        if channel is not None:
            await asyncio.get_running_loop().run_in_executor(None, self._close_channel, channel)
