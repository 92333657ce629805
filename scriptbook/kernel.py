"""
NotebookKernel: persistent IPython shell, and the child-process loop that serves it.
"""

import logging
import os
import pickle
import sys
import traceback
from multiprocessing import Queue
from typing import Any, Optional

from IPython.core.displayhook import DisplayHook
from IPython.core.interactiveshell import InteractiveShell
from IPython.utils.capture import capture_output

logger = logging.getLogger(__name__)


def _build_mime_bundle(obj) -> dict:
    """
    Build a MIME bundle dictionary from an object.

    Checks for IPython rich display methods and builds a dict
    mapping MIME types to their representations. For display objects
    that have a primary content attribute (e.g. HTML.data), use that
    as the text/plain fallback instead of repr().
    """
    rich_content = None

    rich_entries = []
    for mime_type, method_name in [
        ("text/html", "_repr_html_"),
        ("text/markdown", "_repr_markdown_"),
        ("application/json", "_repr_json_"),
        ("text/latex", "_repr_latex_"),
        ("image/svg+xml", "_repr_svg_"),
        ("image/png", "_repr_png_"),
    ]:
        method = getattr(obj, method_name, None)
        if callable(method):
            value = method()
            if value is not None:
                rich_entries.append((mime_type, value))
                if rich_content is None:
                    rich_content = value

    plain = rich_content if rich_content is not None else repr(obj)
    data = {"text/plain": plain}
    for mime_type, value in rich_entries:
        data[mime_type] = value

    return data


_PLAIN_TYPES = (str, bytes, int, float, bool, type(None))


def _plain(value):
    """Reduce a bundle value to builtin data the host process can unpickle."""
    if type(value) in _PLAIN_TYPES:
        return value
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return str(value)


def _format_trace(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Describe an exception the way a failed execute reply does."""
    return {
        "status": "error",
        "name": type(exc).__name__,
        "message": str(exc),
        "trace": _format_trace(exc),
    }


def sendable_reply(reply: dict[str, Any]) -> dict[str, Any]:
    """
    Make sure a reply can cross the process boundary.

    ``Queue.put`` pickles in a feeder thread and silently drops what it
    cannot pickle; an unpicklable value becomes an error reply instead.
    """
    try:
        pickle.dumps(reply)
    except Exception as e:
        payload = error_payload(e)
        payload["message"] = f"Cell value cannot be sent back from the interpreter: {e}"
        payload["id"] = reply.get("id")
        return payload
    return reply


class _QuietDisplayHook(DisplayHook):
    """Records the cell's value without printing an ``Out[n]:`` prompt."""

    def write_output_prompt(self):
        pass

    def write_format_data(self, format_dict, md_dict=None):
        pass


class NotebookKernel:
    """
    Persistent IPython shell that turns one cell into one reply payload.

    Namespace, imports and history persist across ``execute`` calls, which
    is what makes a document's cells share state.
    """

    def __init__(self):
        self.ip = InteractiveShell.instance(displayhook_class=_QuietDisplayHook)
        self.execution_count = 0
        self.ip.user_ns["__notebook__"] = True

    def execute(self, code: str) -> dict[str, Any]:
        """
        Run code and describe the outcome.

        Args:
            code: Python source of one cell

        Returns:
            ``{"status": "ok", "data": bundle}`` or
            ``{"status": "error", "name", "message", "trace"}``
        """
        self.execution_count += 1
        try:
            with capture_output() as captured:
                result = self.ip.run_cell(code, store_history=True, silent=False)
        except KeyboardInterrupt as e:
            return error_payload(e)

        error = result.error_before_exec or result.error_in_exec
        if error is not None:
            return error_payload(error)

        try:
            data = self._result_bundle(result.result, captured)
        except Exception as e:
            # A user __repr__ or _repr_*_ method raised.
            return error_payload(e)
        return {"status": "ok", "data": data}

    def _result_bundle(self, value, captured) -> dict[str, Any]:
        """Pick the single rendered value for a successful cell."""
        if value is not None:
            data = _build_mime_bundle(value)
        elif captured.outputs:
            data = dict(captured.outputs[-1].data)
        else:
            data = {"text/plain": ""}

        streams = captured.stdout + captured.stderr
        if streams:
            plain = data.get("text/plain", "")
            if not isinstance(plain, str):
                plain = str(plain)
            data["text/plain"] = streams + plain if plain else streams.rstrip("\n")
        return {mime_type: _plain(value) for mime_type, value in data.items()}

    def get_variable(self, name: str) -> Any:
        """Get a variable from the namespace."""
        return self.ip.user_ns.get(name)

    def reset(self):
        """Reset the shell to a clean state."""
        self.ip.reset()
        self.execution_count = 0
        self.ip.user_ns["__notebook__"] = True


def kernel_main(requests: Queue, replies: Queue, cwd: Optional[str] = None):
    """
    Main loop for the interpreter process.

    Runs in a separate process. Every ``execute`` request gets exactly one
    reply carrying the request's id; ``shutdown`` ends the loop.
    """
    if cwd:
        os.chdir(cwd)
        sys.path.insert(0, cwd)

    kernel = NotebookKernel()
    logger.debug("Kernel ready in %s", os.getcwd())

    while True:
        try:
            request = requests.get()
        except KeyboardInterrupt:
            # Interrupt landed between cells; nothing to stop.
            continue
        except (EOFError, OSError):
            break

        kind = request.get("type")
        if kind == "shutdown":
            break
        if kind != "execute":
            logger.warning("Ignoring unknown request type %r", kind)
            continue

        try:
            reply = kernel.execute(request.get("code", ""))
        except KeyboardInterrupt as e:
            reply = error_payload(e)
        except Exception as e:
            logger.exception("Kernel failed while executing request %s", request.get("id"))
            reply = error_payload(e)
        reply["id"] = request.get("id")
        replies.put(sendable_reply(reply))

    logger.debug("Kernel shutting down")
