"""
Notebook: in-memory document model for .pynb files.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field

LANGUAGE = "python"


class RunState(str, Enum):
    """Execution state of a cell."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class RichOutput(BaseModel):
    """A rendered value, keyed by MIME type."""
    output_type: Literal["rich"] = "rich"
    data: dict[str, Any] = Field(default_factory=dict)


class ErrorOutput(BaseModel):
    """An error raised by the cell's code."""
    output_type: Literal["error"] = "error"
    name: str
    message: str
    trace: str = ""


Output = Annotated[Union[RichOutput, ErrorOutput], Field(discriminator="output_type")]


def _new_cell_id() -> str:
    return f"cell_{uuid4().hex[:12]}"


class Cell(BaseModel):
    """
    A single code cell.

    Only ``id`` and ``source`` describe the document; run state, timing and
    outputs live in memory and are rebuilt on every execution.
    """
    id: str = Field(default_factory=_new_cell_id)
    source: str = ""
    run_state: RunState = RunState.IDLE
    run_start_time: Optional[datetime] = None
    last_run_duration: Optional[float] = None
    outputs: list[Output] = Field(default_factory=list)

    def mark_running(self, now: datetime):
        self.run_state = RunState.RUNNING
        self.run_start_time = now
        self.outputs = []

    def mark_success(self, data: dict[str, Any], duration: float):
        self.outputs = [RichOutput(data=data)]
        self.run_state = RunState.SUCCESS
        self.last_run_duration = max(0.0, duration)

    def mark_error(self, name: str, message: str, trace: str = ""):
        self.outputs = [ErrorOutput(name=name, message=message, trace=trace)]
        self.run_state = RunState.ERROR
        self.last_run_duration = None

    def reset(self):
        """Drop outputs and timing, back to idle."""
        self.run_state = RunState.IDLE
        self.run_start_time = None
        self.last_run_duration = None
        self.outputs = []

    def to_dict(self) -> dict:
        """Convert to dictionary for display or transport."""
        return {
            "id": self.id,
            "source": self.source,
            "run_state": self.run_state.value,
            "run_start_time": self.run_start_time.isoformat() if self.run_start_time else None,
            "last_run_duration": self.last_run_duration,
            "outputs": [o.model_dump() for o in self.outputs],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cell":
        """Create from dictionary."""
        start = data.get("run_start_time")
        return cls(
            id=data.get("id") or _new_cell_id(),
            source=data.get("source", ""),
            run_state=RunState(data.get("run_state", "idle")),
            run_start_time=datetime.fromisoformat(start) if start else None,
            last_run_duration=data.get("last_run_duration"),
            outputs=data.get("outputs", []),
        )


class NotebookData(BaseModel):
    """What opening a document hands back to the host."""
    languages: list[str] = Field(default_factory=lambda: [LANGUAGE])
    cells: list[Cell] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Notebook(BaseModel):
    """
    An open document: an ordered list of cells bound to a file.

    The document's identity is its path. Sessions are keyed on ``key`` and
    run in ``directory``.
    """

    path: Path
    cells: list[Cell] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=lambda: [LANGUAGE])
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        """Stable identity of the document."""
        return str(Path(self.path).expanduser().resolve())

    @property
    def directory(self) -> Path:
        """Folder the document's session runs in."""
        return Path(self.key).parent

    @property
    def name(self) -> str:
        return Path(self.path).stem

    def add_cell(self, cell: Optional[Cell] = None, **kwargs) -> Cell:
        """
        Add a new cell to the end of the notebook.

        Args:
            cell: Cell to add, or create new one
            **kwargs: Arguments for new cell if cell not provided

        Returns:
            The added cell
        """
        if cell is None:
            cell = Cell(**kwargs)
        self.cells.append(cell)
        return cell

    def insert_cell(self, index: int, cell: Optional[Cell] = None, **kwargs) -> Cell:
        """Insert a cell at a specific index."""
        if cell is None:
            cell = Cell(**kwargs)
        self.cells.insert(index, cell)
        return cell

    def remove_cell(self, index: int) -> Cell:
        """Remove a cell by index."""
        return self.cells.pop(index)

    def get_cell(self, index: int) -> Cell:
        """Get a cell by index."""
        return self.cells[index]

    def update_cell(self, index: int, source: str) -> Cell:
        """
        Replace a cell's source.

        Editing invalidates the previous run, so the cell goes back to idle.
        """
        cell = self.cells[index]
        cell.source = source
        cell.reset()
        return cell

    def clear_outputs(self):
        """Reset every cell to idle."""
        for cell in self.cells:
            cell.reset()

    @classmethod
    def from_data(cls, path: Path, data: NotebookData) -> "Notebook":
        """Bind opened document data to its path."""
        return cls(
            path=Path(path),
            cells=data.cells,
            languages=data.languages,
            metadata=data.metadata,
        )
