"""
Abstract adapter interface for grid document backends.

The GridAdapter protocol defines the contract that every backend must satisfy:
read a template into a Workbook and write a filled Workbook back out.
The concrete implementation shipped here is XlsxAdapter (openpyxl).
"""

from typing import Any, Protocol

from gridfill.spreadsheet.workbook import Workbook


class GridAdapter(Protocol):
    """Protocol for grid document backends.

    An adapter owns the translation between a document format and the
    in-memory Workbook the engine works on.
    """

    def read(self) -> Workbook:
        """Load the template document.

        Returns:
            The template as a Workbook. Adapters may keep a handle to the
            underlying document in ``Workbook.native``.
        """
        ...

    def write(self, workbook: Workbook, target: Any) -> None:
        """Serialize a filled workbook.

        Args:
            workbook: The filled workbook
            target: A path or a writable binary stream
        """
        ...
