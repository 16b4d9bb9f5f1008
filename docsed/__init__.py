"""
docsed

sed-style editing for Google Docs: expressions are parsed, compiled into
Docs API batchUpdate requests and applied to a document.
"""

from .errors import (
    ErrorCode,
    SedError,
    SedExecutionError,
    SedParseError,
    SedPatternError,
    SedTableError,
)
from .sed_expression import SedExpression
from .sed_parser import parse_expression, parse_expressions

__all__ = [
    "ErrorCode",
    "SedError",
    "SedExecutionError",
    "SedParseError",
    "SedPatternError",
    "SedTableError",
    "SedExpression",
    "parse_expression",
    "parse_expressions",
]
