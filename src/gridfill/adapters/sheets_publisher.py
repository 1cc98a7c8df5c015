"""
Google Sheets publisher with batch operations and retry logic.

This module provides the SheetsPublisher class, which writes a filled workbook
to a new Google Sheets spreadsheet. It handles:
- Batch operations to minimize API calls
- Rate limiting to stay within quota
- Retry logic with exponential backoff for transient failures
- Spreadsheet size validation
"""

import logging
import time
from typing import Any, Callable, Dict, List

import gspread
from gspread.exceptions import APIError

from gridfill.adapters.plan import PublishPlan, PublishStep, StepType
from gridfill.adapters.sheets_client import SheetsClient
from gridfill.exceptions import PublishValidationError, SheetsAPIError
from gridfill.spreadsheet.model import CellRef, Region
from gridfill.spreadsheet.operations import (
    CreateSheet,
    MergeCells,
    SetFormula,
    SetValues,
    workbook_to_operations,
)
from gridfill.spreadsheet.workbook import Workbook

logger = logging.getLogger(__name__)

# Google Sheets limits
MAX_CELLS = 10_000_000  # 10 million cells per spreadsheet
MAX_FORMULA_CELLS = 5_000_000  # ~5 million formula cells (conservative estimate)


class SheetsPublisher:
    """Publishes filled workbooks to the Google Sheets API.

    Attributes:
        client: SheetsClient wrapper for API calls
        max_retries: Maximum number of retry attempts for transient failures
        base_delay: Base delay in seconds for exponential backoff
        rate_limit_delay: Delay between steps to avoid rate limits
    """

    def __init__(
        self,
        client: SheetsClient,
        max_retries: int = 3,
        base_delay: float = 1.0,
        rate_limit_delay: float = 0.5,
    ):
        self.client = client
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.rate_limit_delay = rate_limit_delay

    def publish(self, workbook: Workbook, title: str) -> gspread.Spreadsheet:
        """Publish a filled workbook as a new spreadsheet.

        Hidden sheets are not published. The first visible sheet is shown first.

        Args:
            workbook: The filled workbook
            title: Title for the new spreadsheet

        Returns:
            The created Spreadsheet object
        """
        ops = workbook_to_operations(workbook)
        main_sheet = next((op.name for op in ops if isinstance(op, CreateSheet)), None)
        plan = PublishPlan.from_operations(ops, main_sheet=main_sheet)
        logger.debug("%s", plan.explain())
        return self.execute(plan, title)

    def execute(self, plan: PublishPlan, title: str) -> gspread.Spreadsheet:
        """Execute a publish plan, creating a new spreadsheet.

        Raises:
            PublishValidationError: If the plan is invalid or too large
            SheetsAPIError: If API calls fail after retries
        """
        self._validate_plan_size(plan)

        spreadsheet = self._retry_operation(
            lambda: self.client.create_spreadsheet(title),
            f"create spreadsheet '{title}'"
        )
        worksheets: Dict[str, gspread.Worksheet] = {}

        for step in plan.steps:
            if step.step_type == StepType.CREATE_SHEETS:
                self._execute_create_sheets(spreadsheet, step, worksheets)
            elif step.step_type == StepType.WRITE_VALUES:
                self._execute_write_values(step, worksheets)
            elif step.step_type == StepType.WRITE_FORMULAS:
                self._execute_write_formulas(step, worksheets)
            elif step.step_type == StepType.MERGE_CELLS:
                self._execute_merge_cells(step, worksheets)

            if self.rate_limit_delay > 0:
                time.sleep(self.rate_limit_delay)

        if plan.main_sheet and plan.main_sheet in worksheets:
            main_ws = worksheets[plan.main_sheet]
            self._retry_operation(
                lambda: main_ws.update_index(0),
                f"reorder main sheet '{plan.main_sheet}'"
            )

        logger.info("Published spreadsheet %r with %d sheet(s)", title, len(worksheets))
        return spreadsheet

    def _validate_plan_size(self, plan: PublishPlan) -> None:
        """Check that the plan fits within Google Sheets limits.

        Raises:
            PublishValidationError: If the spreadsheet would be too large
        """
        total_cells = 0
        total_formula_cells = 0

        for step in plan.steps:
            for op in step.operations:
                if isinstance(op, CreateSheet):
                    total_cells += op.rows * op.cols
                elif isinstance(op, SetFormula):
                    total_formula_cells += 1

        if total_cells > MAX_CELLS:
            raise PublishValidationError(
                f"Workbook too large for Google Sheets: {total_cells:,} cells "
                f"(limit: {MAX_CELLS:,})."
            )
        if total_formula_cells > MAX_FORMULA_CELLS:
            raise PublishValidationError(
                f"Too many formulas for Google Sheets: {total_formula_cells:,} "
                f"(limit: ~{MAX_FORMULA_CELLS:,})."
            )

    def _execute_create_sheets(
        self,
        spreadsheet: gspread.Spreadsheet,
        step: PublishStep,
        worksheets: Dict[str, gspread.Worksheet]
    ) -> None:
        for i, op in enumerate(step.operations):
            if not isinstance(op, CreateSheet):
                continue

            if i == 0:
                # reuse the sheet every new spreadsheet starts with
                worksheet = self._retry_operation(lambda: spreadsheet.sheet1, "get default sheet")
                self._retry_operation(
                    lambda: worksheet.update_title(op.name),
                    f"rename default sheet to '{op.name}'"
                )
                if worksheet.row_count != op.rows or worksheet.col_count != op.cols:
                    self._retry_operation(
                        lambda: worksheet.resize(rows=op.rows, cols=op.cols),
                        f"resize sheet '{op.name}'"
                    )
            else:
                worksheet = self._retry_operation(
                    lambda: self.client.add_sheet(spreadsheet, op.name, rows=op.rows, cols=op.cols),
                    f"create sheet '{op.name}'"
                )
            worksheets[op.name] = worksheet

    def _worksheet(self, worksheets: Dict[str, gspread.Worksheet], sheet: str, action: str) -> gspread.Worksheet:
        worksheet = worksheets.get(sheet)
        if not worksheet:
            raise PublishValidationError(f"Cannot {action}: sheet '{sheet}' not found")
        return worksheet

    def _execute_write_values(
        self,
        step: PublishStep,
        worksheets: Dict[str, gspread.Worksheet]
    ) -> None:
        updates_by_sheet: Dict[str, List[Dict[str, Any]]] = {}
        for op in step.operations:
            if not isinstance(op, SetValues) or not op.values:
                continue
            region = Region(
                op.sheet, op.row, op.col, op.row + len(op.values) - 1, op.col + len(op.values[0]) - 1
            )
            updates_by_sheet.setdefault(op.sheet, []).append({"range": region.to_a1(), "values": op.values})

        for sheet_name, updates in updates_by_sheet.items():
            worksheet = self._worksheet(worksheets, sheet_name, "write values")
            self._retry_operation(
                lambda: self.client.batch_update_values(worksheet, updates),
                f"batch update {len(updates)} value ranges to {sheet_name}"
            )

    def _execute_write_formulas(
        self,
        step: PublishStep,
        worksheets: Dict[str, gspread.Worksheet]
    ) -> None:
        # grouping by sheet keeps the plan's sheet order
        updates_by_sheet: Dict[str, List[Dict[str, Any]]] = {}
        for op in step.operations:
            if not isinstance(op, SetFormula):
                continue
            formula = op.formula if op.formula.startswith("=") else f"={op.formula}"
            updates_by_sheet.setdefault(op.sheet, []).append({
                "range": CellRef(op.sheet, op.row, op.col).to_a1(),
                "values": [[formula]],
            })

        for sheet_name, updates in updates_by_sheet.items():
            worksheet = self._worksheet(worksheets, sheet_name, "write formula")
            self._retry_operation(
                lambda: self.client.batch_update_formulas(worksheet, updates),
                f"batch update {len(updates)} formulas to {sheet_name}"
            )

    def _execute_merge_cells(
        self,
        step: PublishStep,
        worksheets: Dict[str, gspread.Worksheet]
    ) -> None:
        for op in step.operations:
            if not isinstance(op, MergeCells):
                continue
            worksheet = self._worksheet(worksheets, op.sheet, "merge cells")
            range_name = Region(op.sheet, op.row_start, op.col_start, op.row_end, op.col_end).to_a1()
            self._retry_operation(
                lambda: self.client.merge_cells(worksheet, range_name),
                f"merge {range_name} on {op.sheet}"
            )

    def _retry_operation(self, operation: Callable[[], Any], description: str) -> Any:
        """Run an operation, retrying with exponential backoff.

        Raises:
            SheetsAPIError: If the operation fails after all retries
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                return operation()
            except (APIError, SheetsAPIError) as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning("Failed to %s (attempt %d), retrying in %.1fs: %s", description, attempt + 1, delay, e)
                    time.sleep(delay)

        raise SheetsAPIError(
            f"Failed to {description} after {self.max_retries + 1} attempts: {last_error}"
        )
