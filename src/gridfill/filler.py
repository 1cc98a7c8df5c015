"""
End-to-end fill utilities.

Every entry point runs the same pipeline (read template, parse commands, build
the command tree, render against the data, write) and differs only in where
the template comes from and where the output goes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Union

from gridfill.adapters.base import GridAdapter
from gridfill.adapters.xlsx import XlsxAdapter
from gridfill.commands.parser import parse_template
from gridfill.commands.tree import build_tree
from gridfill.context import Context
from gridfill.engine.diagnostics import Diagnostic, DiagnosticLog
from gridfill.engine.transformer import Transformer
from gridfill.exceptions import GridFillError
from gridfill.expressions.evaluator import Evaluator
from gridfill.options import FillOptions
from gridfill.spreadsheet.workbook import Workbook

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class FillResult:
    """Outcome of a fill.

    Attributes:
        workbook: The filled workbook
        diagnostics: Recoverable problems recorded while rendering
    """
    workbook: Workbook
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.diagnostics


def _as_mapping(data: Any) -> Mapping:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Fill data must be a mapping of names to values, got {type(data).__name__}")
    return data


class Filler:
    """Fills templates with data.

    Attributes:
        options: Fill options
        evaluator: Expression evaluator configured with the options' notation
    """

    def __init__(
        self,
        options: Optional[FillOptions] = None,
        functions: Optional[Dict[str, Callable[..., Any]]] = None,
    ) -> None:
        """
        Args:
            options: Fill options (defaults apply when omitted)
            functions: Extra functions callable from expressions, by name
        """
        self.options = options or FillOptions()
        self.evaluator = Evaluator(self.options.notation, functions)

    def fill_workbook(self, template: Workbook, data: Optional[Mapping[str, Any]] = None) -> FillResult:
        """Render a template workbook against data.

        The template is not modified.

        Args:
            template: The template workbook
            data: Names visible to expressions

        Returns:
            FillResult with the output workbook and recorded diagnostics

        Raises:
            TemplateParseError: If an annotation is not a valid command
            ConfigurationError: If the command geometry is invalid
            EvaluationError: On the first evaluation error, in fail-fast mode
        """
        log = DiagnosticLog(self.options.fail_fast)
        context = Context.root(_as_mapping(data))
        try:
            roots = build_tree(parse_template(template), template.sheet_names)
            transformer = Transformer(template, self.evaluator, log, self.options)
            workbook = transformer.transform(roots, context)
        except GridFillError as e:
            e.diagnostics = list(log)
            raise
        return FillResult(workbook, list(log))

    def run(self, adapter: GridAdapter, target: Any, data: Optional[Mapping[str, Any]] = None) -> FillResult:
        """Read through ``adapter``, fill, and write the output to ``target``."""
        template = adapter.read()
        logger.info("Filling template with sheets %s", template.sheet_names)
        result = self.fill_workbook(template, data)

        if self.options.pre_write is not None:
            self.options.pre_write(result.workbook)
        try:
            adapter.write(result.workbook, target)
        except GridFillError as e:
            e.diagnostics = list(result.diagnostics)
            raise
        logger.info(
            "Filled %d sheet(s) with %d diagnostic(s)", len(result.workbook.sheets), len(result.diagnostics)
        )
        return result


def fill_workbook(
    template: Workbook,
    data: Optional[Mapping[str, Any]] = None,
    options: Optional[FillOptions] = None,
) -> FillResult:
    """Render an in-memory template workbook against data."""
    return Filler(options).fill_workbook(template, data)


def fill(
    template_path: PathLike,
    output_path: PathLike,
    data: Optional[Mapping[str, Any]] = None,
    options: Optional[FillOptions] = None,
) -> FillResult:
    """Fill an .xlsx template and write the result to ``output_path``.

    Args:
        template_path: Path of the template document
        output_path: Path the filled document is written to
        data: Names visible to expressions
        options: Fill options

    Returns:
        FillResult with the output workbook and recorded diagnostics
    """
    return Filler(options).run(XlsxAdapter(template_path), output_path, data)


def fill_bytes(
    template_path: PathLike,
    data: Optional[Mapping[str, Any]] = None,
    options: Optional[FillOptions] = None,
) -> bytes:
    """Fill an .xlsx template and return the serialized output."""
    adapter = XlsxAdapter(template_path)
    filler = Filler(options)
    result = filler.fill_workbook(adapter.read(), data)
    if filler.options.pre_write is not None:
        filler.options.pre_write(result.workbook)
    return adapter.to_bytes(result.workbook)


def fill_stream(
    source: BinaryIO,
    output: BinaryIO,
    data: Optional[Mapping[str, Any]] = None,
    options: Optional[FillOptions] = None,
) -> FillResult:
    """Fill a template read from a binary stream and write to another stream."""
    return Filler(options).run(XlsxAdapter(source), output, data)


def publish_to_sheets(
    template_path: PathLike,
    title: str,
    gc: Any,
    data: Optional[Mapping[str, Any]] = None,
    options: Optional[FillOptions] = None,
) -> Any:
    """Fill an .xlsx template and publish the result as a Google Sheet.

    Args:
        template_path: Path of the template document
        title: Title for the new Google Sheet
        gc: An authenticated ``gspread.Client`` (from
            ``gspread.service_account()`` or ``gspread.oauth()``)
        data: Names visible to expressions
        options: Fill options

    Returns:
        A ``gspread.Spreadsheet`` object for the newly created sheet.
    """
    from gridfill.adapters.sheets_client import SheetsClient
    from gridfill.adapters.sheets_publisher import SheetsPublisher

    filler = Filler(options)
    result = filler.fill_workbook(XlsxAdapter(template_path).read(), data)
    if filler.options.pre_write is not None:
        filler.options.pre_write(result.workbook)
    return SheetsPublisher(SheetsClient(gc)).publish(result.workbook, title)
