"""
Exception classes for gridfill.

These exceptions are used throughout the gridfill package to signal error conditions
while parsing a template, building the command tree, evaluating expressions and
reading or writing grid documents.

Errors fall into four families:
- TemplateParseError: the annotation text of a cell is not a valid command
- ConfigurationError: the commands are valid but their geometry is not
- EvaluationError: an expression could not be evaluated against the data
- AdapterError: the underlying document could not be read or written
"""

from typing import Any, List, Optional


class GridFillError(Exception):
    """Base class for every error raised by gridfill.

    Attributes:
        location: Optional sheet-qualified cell address (e.g. ``Sheet1!B3``)
            pointing at the template cell that caused the error
        diagnostics: Non-fatal diagnostics accumulated before the error was
            raised. Filled in by the entry points before the error escapes.
    """

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        self.message = message
        self.location = location
        self.diagnostics: List[Any] = []
        if location:
            super().__init__(f"{location}: {message}")
        else:
            super().__init__(message)


class TemplateParseError(GridFillError):
    """Raised when a cell annotation cannot be parsed into commands.

    Parse errors always abort the fill because the template itself is
    structurally invalid. Common causes include:
        - An unknown command name (``jx:loop(...)``)
        - A required attribute missing (every command needs ``lastCell``)
        - An attribute value of the wrong shape (``direction="UP"``)
        - Unbalanced parentheses or quotes
    """
    pass


class UnknownCommandError(TemplateParseError):
    """Raised when an annotation names a command that does not exist."""
    pass


class MissingAttributeError(TemplateParseError):
    """Raised when a command is missing one of its required attributes."""
    pass


class InvalidAttributeError(TemplateParseError):
    """Raised when an attribute value is not acceptable for its command.

    Examples:
        - ``lastCell`` that is not an A1 address
        - ``direction`` other than DOWN or RIGHT
        - ``imageType`` that is not a known image format
    """
    pass


class MalformedCommandError(TemplateParseError):
    """Raised when a declaration does not follow ``jx:name(key="value" ...)``."""
    pass


class ConfigurationError(GridFillError):
    """Raised when parsed commands cannot be arranged into a valid tree.

    Configuration errors always abort the fill. Examples:
        - A command region reaching outside its enclosing area
        - Two sibling commands sharing cells
        - An each command whose last cell lies before its anchor
        - A multisheet name list whose length differs from the item count
    """
    pass


class RegionOutOfBoundsError(ConfigurationError):
    """Raised when a command region is not contained in its parent region."""
    pass


class OverlappingCommandsError(ConfigurationError):
    """Raised when two sibling commands cover at least one common cell."""
    pass


class EmptyEachRegionError(ConfigurationError):
    """Raised when an each command declares a zero-extent block."""
    pass


class MultisheetMismatchError(ConfigurationError):
    """Raised when a multisheet name list and its items differ in length."""
    pass


class EvaluationError(GridFillError):
    """Raised when an expression cannot be evaluated.

    Evaluation errors are recoverable by default: the offending cell renders
    empty, a diagnostic is recorded and the fill continues. With
    ``FillOptions(fail_fast=True)`` the first one aborts the fill.

    Common causes include:
        - An identifier that is not bound in any scope
        - Arithmetic or ordering comparison between incompatible values
        - A syntactically invalid expression
    """

    def __init__(
        self,
        message: str,
        location: Optional[str] = None,
        expression: Optional[str] = None,
    ) -> None:
        super().__init__(message, location)
        self.expression = expression


class UnresolvedVariableError(EvaluationError):
    """Raised when an identifier or property cannot be resolved."""
    pass


class TypeMismatchError(EvaluationError):
    """Raised when an operator is applied to values of incompatible kinds."""
    pass


class ExpressionSyntaxError(EvaluationError):
    """Raised when an expression string cannot be parsed."""
    pass


class AdapterError(GridFillError):
    """Raised when the underlying grid document cannot be read or written.

    This error wraps exceptions from openpyxl, Pillow and the file system and
    always aborts the fill. Common causes include:
        - A template path that does not exist or is not a workbook
        - Image bytes that cannot be decoded
        - An output location that cannot be written
    """
    pass


class SheetsAPIError(AdapterError):
    """Raised when a Google Sheets API call fails.

    This error wraps exceptions from the Google Sheets API (via gspread) and
    provides context about which operation failed. Common causes include:
        - Authentication failures
        - Rate limiting (HTTP 429)
        - Network connectivity issues
        - Invalid spreadsheet IDs or permissions errors
        - API quota exceeded
    """
    pass


class PublishValidationError(GridFillError):
    """Raised when a publishing plan is invalid.

    Examples:
        - Operations targeting a sheet that is never created
        - Duplicate sheet names
        - A workbook too large for Google Sheets limits
    """
    pass
