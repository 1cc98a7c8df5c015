"""
Adapter module for gridfill.

This module provides the backends that move workbooks in and out of the
engine. ``XlsxAdapter`` reads and writes .xlsx documents through openpyxl;
``SheetsPublisher`` publishes a filled workbook to Google Sheets through gspread.
"""

from gridfill.adapters.base import GridAdapter
from gridfill.adapters.plan import PublishPlan, PublishStep, StepType
from gridfill.adapters.sheets_client import SheetsClient
from gridfill.adapters.sheets_publisher import SheetsPublisher
from gridfill.adapters.xlsx import XlsxAdapter

__all__ = [
    "GridAdapter",
    "PublishPlan",
    "PublishStep",
    "StepType",
    "SheetsClient",
    "SheetsPublisher",
    "XlsxAdapter",
]
