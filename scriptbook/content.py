"""
ContentProvider: reads and writes .pynb documents for the host.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from scriptbook.codec import decode_bytes, encode_bytes
from scriptbook.notebook import LANGUAGE, Notebook, NotebookData

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class NotebookBackup:
    """Handle to a crash-recovery copy of a document."""
    id: str
    remove: Callable[[], None] = field(repr=False)

    def delete(self):
        """Remove the backup copy."""
        self.remove()


class ContentProvider:
    """
    Load and save documents through the codec.

    Storage errors (missing files, permissions) propagate unchanged to the
    caller. Outputs and run state are never written.
    """

    def open_notebook(self, path: PathLike, backup_id: Optional[str] = None) -> NotebookData:
        """
        Read a document.

        Args:
            path: Document to open
            backup_id: When given, read this backup instead of ``path``

        Returns:
            NotebookData with one idle cell per delimited segment
        """
        source = Path(backup_id) if backup_id else Path(path)
        raw = source.read_bytes()
        cells = decode_bytes(raw)
        logger.debug("Opened %s (%d cells)", source, len(cells))
        return NotebookData(languages=[LANGUAGE], cells=cells)

    def load_notebook(self, path: PathLike, backup_id: Optional[str] = None) -> Notebook:
        """Open a document and bind it to ``path``."""
        return Notebook.from_data(Path(path), self.open_notebook(path, backup_id=backup_id))

    def _write(self, target: Path, document: Notebook):
        data = encode_bytes(document.cells)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("Wrote %s (%d cells)", target, len(document.cells))

    def save_notebook(self, document: Notebook):
        """Write a document back to its own path."""
        self._write(Path(document.path), document)

    def save_notebook_as(self, target: PathLike, document: Notebook):
        """Write a document to a different path; the document keeps its own."""
        self._write(Path(target), document)

    def backup_notebook(self, document: Notebook, destination: PathLike) -> NotebookBackup:
        """
        Write a recovery copy of a document.

        Returns:
            Backup handle whose ``id`` can be passed back to ``open_notebook``
        """
        destination = Path(destination)
        self.save_notebook_as(destination, document)
        return NotebookBackup(
            id=str(destination),
            remove=lambda: destination.unlink(missing_ok=True),
        )
