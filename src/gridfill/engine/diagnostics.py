"""
Diagnostics for recoverable evaluation errors.

When a placeholder or command expression cannot be evaluated the engine does
not abort by default: the cell renders empty and a Diagnostic is appended to
the DiagnosticLog. In fail-fast mode the log re-raises instead.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from gridfill.exceptions import EvaluationError

logger = logging.getLogger(__name__)


class Severity(Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    """A problem recorded during a fill.

    Attributes:
        severity: How serious the problem is
        location: Sheet-qualified template cell the problem belongs to
        message: Human-readable description
        expression: The expression being evaluated, when there was one
    """
    severity: Severity
    location: Optional[str]
    message: str
    expression: Optional[str] = None

    def __str__(self) -> str:
        where = f"{self.location}: " if self.location else ""
        what = f" [{self.expression}]" if self.expression else ""
        return f"{self.severity.value.upper()} {where}{self.message}{what}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "location": self.location,
            "message": self.message,
            "expression": self.expression,
        }


class DiagnosticLog:
    """Collects diagnostics and applies the recoverable-error policy."""

    def __init__(self, fail_fast: bool = False) -> None:
        self.fail_fast = fail_fast
        self.entries: List[Diagnostic] = []

    def record(self, error: EvaluationError, location: Optional[str] = None) -> None:
        """Record an evaluation error, or raise it in fail-fast mode.

        Raises:
            EvaluationError: ``error`` itself, when fail-fast is enabled
        """
        location = error.location or location
        if self.fail_fast:
            if error.location is None and location:
                error.location = location
                error.args = (f"{location}: {error.message}",)
            raise error
        diagnostic = Diagnostic(Severity.ERROR, location, error.message, error.expression)
        self.entries.append(diagnostic)
        logger.warning("%s", diagnostic)

    def warn(self, message: str, location: Optional[str] = None) -> None:
        diagnostic = Diagnostic(Severity.WARNING, location, message)
        self.entries.append(diagnostic)
        logger.warning("%s", diagnostic)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
