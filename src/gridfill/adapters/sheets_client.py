"""
Google Sheets API client wrapper.

Thin layer over gspread that converts API failures into SheetsAPIError and
exposes just the calls the publisher needs.
"""

from typing import Any, Dict, List

import gspread
from gspread.exceptions import APIError

from gridfill.exceptions import SheetsAPIError


class SheetsClient:
    """
    A wrapper around gspread for Google Sheets API operations.

    Attributes:
        gc: The authenticated gspread client instance
    """

    def __init__(self, gc: gspread.Client) -> None:
        """
        Args:
            gc: An authenticated gspread client, e.g. from ``gspread.service_account()``
                or ``gspread.oauth()``.
        """
        self.gc = gc

    def create_spreadsheet(self, title: str) -> gspread.Spreadsheet:
        """
        Create a new spreadsheet.

        Raises:
            SheetsAPIError: If the API call fails
        """
        try:
            return self.gc.create(title)
        except APIError as e:
            raise SheetsAPIError(f"Failed to create spreadsheet '{title}': {e}") from e

    def add_sheet(
        self,
        spreadsheet: gspread.Spreadsheet,
        name: str,
        rows: int = 1000,
        cols: int = 26
    ) -> gspread.Worksheet:
        """
        Add a new worksheet (tab) to an existing spreadsheet.

        Raises:
            SheetsAPIError: If the API call fails
        """
        try:
            return spreadsheet.add_worksheet(title=name, rows=rows, cols=cols)
        except APIError as e:
            raise SheetsAPIError(
                f"Failed to add worksheet '{name}' to spreadsheet: {e}"
            ) from e

    def batch_update_values(
        self,
        worksheet: gspread.Worksheet,
        updates: List[Dict[str, Any]]
    ) -> None:
        """
        Write several value ranges in one call. Values are stored as given.

        Args:
            worksheet: The worksheet to write to
            updates: Dictionaries with 'range' (A1 notation) and 'values' (2D list)

        Raises:
            SheetsAPIError: If the API call fails
        """
        if not updates:
            return

        try:
            worksheet.batch_update(updates)
        except APIError as e:
            raise SheetsAPIError(
                f"Failed to batch update {len(updates)} value ranges: {e}"
            ) from e

    def batch_update_formulas(
        self,
        worksheet: gspread.Worksheet,
        updates: List[Dict[str, Any]]
    ) -> None:
        """
        Write several formulas in one call. Values are parsed as user input so
        that text starting with '=' becomes a formula.

        Raises:
            SheetsAPIError: If the API call fails
        """
        if not updates:
            return

        try:
            worksheet.batch_update(updates, raw=False)
        except APIError as e:
            raise SheetsAPIError(
                f"Failed to batch update {len(updates)} formulas: {e}"
            ) from e

    def merge_cells(self, worksheet: gspread.Worksheet, range_name: str) -> None:
        """
        Merge a block of cells.

        Args:
            worksheet: The worksheet holding the block
            range_name: The A1 notation range (e.g., "A1:C2")

        Raises:
            SheetsAPIError: If the API call fails
        """
        try:
            worksheet.merge_cells(range_name)
        except APIError as e:
            raise SheetsAPIError(f"Failed to merge range '{range_name}': {e}") from e
