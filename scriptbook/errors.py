"""
Exceptions raised by scriptbook.
"""


class ScriptbookError(Exception):
    """Base class for all scriptbook errors."""


class DelimiterCollisionError(ScriptbookError):
    """A cell source contains the cell delimiter and cannot be saved."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(
            f"Cell {index} contains the cell delimiter and would not survive a reload"
        )


class CellExecutionError(ScriptbookError):
    """
    Code in a cell failed to run.

    Carries the three fields shown on the cell's error output.
    """

    def __init__(self, name: str, message: str, trace: str = ""):
        self.name = name
        self.message = message
        self.trace = trace
        super().__init__(f"{name}: {message}")


class SessionError(CellExecutionError):
    """The interpreter process itself failed, not the user's code."""

    def __init__(self, message: str, trace: str = ""):
        super().__init__(type(self).__name__, message, trace)


class SessionDiedError(SessionError):
    """The interpreter process exited while a request was pending."""


class SessionTimeoutError(SessionError):
    """No reply arrived within the configured execute timeout."""


class SessionProtocolError(SessionError):
    """A reply from the interpreter process could not be read."""


class CancellationNotSupportedError(ScriptbookError):
    """The platform cannot interrupt a running interpreter process."""
