"""
gridfill - Fill spreadsheet templates with data.

A template is an ordinary spreadsheet. Commands such as ``jx:area``,
``jx:each`` and ``jx:if`` are written in cell comments and mark rectangular
regions; ``${...}`` placeholders in cell text are replaced with data. Filling
replicates, filters, sorts and groups blocks, and rewrites formulas so they
keep pointing at the cells they were written against.

Usage:
    >>> import gridfill
    >>> data = {"employees": [{"name": "Alice", "salary": 5000}]}
    >>> result = gridfill.fill("template.xlsx", "report.xlsx", data)
    >>> result.diagnostics
    []

Key components:
- Filler / fill: entry points running the whole pipeline
- FillOptions: placeholder notation, template sheet handling, error policy
- XlsxAdapter: reads and writes .xlsx documents
- SheetsPublisher: publishes a filled workbook to Google Sheets
- describe / validate: inspect a template without filling it
"""

import logging

from .adapters import SheetsPublisher, XlsxAdapter
from .describe import describe
from .engine import Diagnostic
from .exceptions import *
from .filler import (
    FillResult,
    Filler,
    fill,
    fill_bytes,
    fill_stream,
    fill_workbook,
    publish_to_sheets,
)
from .options import FillOptions
from .spreadsheet import Workbook, Worksheet
from .validate import ValidationIssue, validate

# Version
__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    'Filler',
    'FillOptions',
    'FillResult',
    'fill',
    'fill_bytes',
    'fill_stream',
    'fill_workbook',
    'publish_to_sheets',
    'describe',
    'validate',
    'ValidationIssue',
    'Diagnostic',
    'Workbook',
    'Worksheet',
    'XlsxAdapter',
    'SheetsPublisher',
]
