"""
Codec: .pynb text <-> ordered list of cells.

A document is the cells' sources joined by a delimiter line, with a blank
line on either side of every delimiter. Decoding splits on the bare
delimiter and strips each segment, so leading and trailing whitespace of a
cell does not survive a save/reload cycle.
"""

from typing import Iterable

from scriptbook.errors import DelimiterCollisionError
from scriptbook.notebook import Cell

ENCODING = "utf-8"


def delimiter_line(label: str) -> str:
    """Format a single-line marker such as ``/*--< CELL DELIM >--*/``."""
    return f"/*--< {label} >--*/"


CELL_DELIMITER = delimiter_line("CELL DELIM")
CELL_SEPARATOR = f"\n\n{CELL_DELIMITER}\n\n"


def decode(text: str) -> list[Cell]:
    """
    Split document text into idle cells.

    Args:
        text: Document content

    Returns:
        One cell per delimited segment; empty text yields a single empty cell
    """
    return [Cell(source=segment.strip()) for segment in text.split(CELL_DELIMITER)]


def encode(cells: Iterable[Cell]) -> str:
    """
    Join cell sources into document text.

    Raises:
        DelimiterCollisionError: If a source contains the delimiter, since the
            saved file would reload as a different number of cells
    """
    sources = []
    for index, cell in enumerate(cells):
        if CELL_DELIMITER in cell.source:
            raise DelimiterCollisionError(index)
        sources.append(cell.source)
    return CELL_SEPARATOR.join(sources)


def decode_bytes(raw: bytes) -> list[Cell]:
    return decode(raw.decode(ENCODING))


def encode_bytes(cells: Iterable[Cell]) -> bytes:
    return encode(cells).encode(ENCODING)
