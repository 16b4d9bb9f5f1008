"""
docsed Error Handling

Structured errors for parsing and executing sed expressions against Google
Docs. Every error carries a machine-readable code and can be rendered as a
StructuredError for JSON output on the command line.
"""
import json
import logging
from enum import Enum
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for sed operations."""

    # Parse errors
    INVALID_EXPRESSION = "INVALID_EXPRESSION"
    INVALID_TABLE_REFERENCE = "INVALID_TABLE_REFERENCE"
    INVALID_IMAGE_REFERENCE = "INVALID_IMAGE_REFERENCE"
    INVALID_BRACE = "INVALID_BRACE"
    INVALID_PATTERN = "INVALID_PATTERN"

    # Document errors
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    CELL_OUT_OF_RANGE = "CELL_OUT_OF_RANGE"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"

    # Run errors
    NO_EXPRESSIONS = "NO_EXPRESSIONS"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"
    API_ERROR = "API_ERROR"


@dataclass
class ErrorContext:
    """Additional context for error messages."""
    expression_index: Optional[int] = None
    pattern: Optional[str] = None
    replacement: Optional[str] = None
    raw: Optional[str] = None
    table_count: Optional[int] = None
    document_id: Optional[str] = None


@dataclass
class StructuredError:
    """
    Structured error response.

    Attributes:
        error: Always True for error responses
        code: Machine-readable error code from ErrorCode enum
        message: Human-readable error description
        suggestion: Optional advice on how to fix the issue
        context: Additional context like the failing expression
    """
    error: bool = True
    code: str = ""
    message: str = ""
    suggestion: str = ""
    context: Optional[ErrorContext] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {
            "error": self.error,
            "code": self.code,
            "message": self.message,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.context:
            ctx = {k: v for k, v in asdict(self.context).items() if v is not None}
            if ctx:
                result["context"] = ctx
        return result

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


class SedError(Exception):
    """Base class for every docsed failure."""

    code: ErrorCode = ErrorCode.INVALID_EXPRESSION

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        suggestion: str = "",
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.suggestion = suggestion
        self.context = context

    def to_structured(self) -> StructuredError:
        return StructuredError(
            code=self.code.value,
            message=self.message,
            suggestion=self.suggestion,
            context=self.context,
        )


class SedParseError(SedError):
    """Raised when an expression, reference or brace directive is malformed."""

    code = ErrorCode.INVALID_EXPRESSION


class SedPatternError(SedError):
    """Raised when a search pattern does not compile as a regular expression."""

    code = ErrorCode.INVALID_PATTERN


class SedTableError(SedError):
    """Raised when a table, row, column or cell cannot be addressed."""

    code = ErrorCode.TABLE_NOT_FOUND


class SedExecutionError(SedError):
    """
    Wraps a failure raised while executing one expression of a run.

    The message carries the 1-based expression position and the literal
    pattern and replacement so the user can locate the failing line.
    """

    def __init__(self, index: int, pattern: str, replacement: str, cause: BaseException):
        self.index = index
        self.cause = cause
        code = getattr(cause, "code", ErrorCode.API_ERROR)
        super().__init__(
            f"expression {index} (pattern={pattern!r}, repl={replacement!r}): {cause}",
            code=code if isinstance(code, ErrorCode) else ErrorCode.API_ERROR,
            context=ErrorContext(
                expression_index=index, pattern=pattern, replacement=replacement
            ),
        )


def no_expressions_error() -> SedError:
    return SedError(
        "no sed expressions provided (use positional arg, -e, -f, or stdin)",
        code=ErrorCode.NO_EXPRESSIONS,
        suggestion="Pass an expression such as 's/old/new/g'",
    )
