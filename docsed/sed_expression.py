"""
Parsed sed expression model.

Everything here is immutable once the parser has produced it. Structural
references (tables, cells, images) are tagged values rather than magic
integers so routing can match on them directly.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from docsed.errors import ErrorCode, SedPatternError, SedTableError

# Patterns that address document positions rather than text.
POSITIONAL_PATTERNS = ("^", "$", "^$")


class Command(str, Enum):
    """sed command letter."""
    SUBSTITUTE = "s"
    DELETE = "d"
    APPEND = "a"
    INSERT = "i"
    TRANSLITERATE = "y"


class ExprKind(str, Enum):
    """Execution strategy an expression is routed to."""
    COMMAND = "command"
    TABLE = "table"
    POSITIONAL = "positional"
    CELL = "cell"
    TABLE_CREATE = "table_create"
    IMAGE = "image"
    IMAGE_INSERT = "image_insert"
    NATIVE = "native"
    MANUAL = "manual"


class TriState(Enum):
    """Boolean style flag that may also be left untouched."""
    UNSET = "unset"
    TRUE = "true"
    FALSE = "false"

    @classmethod
    def of(cls, value: bool) -> "TriState":
        return cls.TRUE if value else cls.FALSE

    @property
    def is_set(self) -> bool:
        return self is not TriState.UNSET

    def as_bool(self) -> Optional[bool]:
        if self is TriState.UNSET:
            return None
        return self is TriState.TRUE


@dataclass(frozen=True)
class TableSelector:
    """
    Addresses one table by signed 1-based index, or every table.

    ``index`` is None when the selector means all tables. Negative indices
    count from the end of the document.
    """
    index: Optional[int] = None

    @classmethod
    def all(cls) -> "TableSelector":
        return cls(None)

    @property
    def is_all(self) -> bool:
        return self.index is None

    def resolve(self, table_count: int) -> List[int]:
        """
        Resolve the selector into 0-based table positions.

        Args:
            table_count: Number of tables in the document

        Returns:
            Ascending list of 0-based positions

        Raises:
            SedTableError: If the document has no tables or the index is out of range
        """
        if table_count == 0:
            raise SedTableError("document has no tables", code=ErrorCode.TABLE_NOT_FOUND)
        if self.index is None:
            return list(range(table_count))
        position = self.index - 1 if self.index > 0 else table_count + self.index
        if position < 0 or position >= table_count:
            raise SedTableError(
                f"table {self.index} out of range (document has {table_count} tables)",
                code=ErrorCode.TABLE_NOT_FOUND,
            )
        return [position]

    def __str__(self) -> str:
        return "*" if self.index is None else str(self.index)


@dataclass(frozen=True)
class RowColOp:
    """
    Row or column mutation.

    Attributes:
        kind: "insert", "append" or "delete"
        target: 1-based row/column (negative counts from the end for delete,
            0 for append)
    """
    kind: str
    target: int = 0

    def __str__(self) -> str:
        if self.kind == "append":
            return "$+"
        if self.kind == "insert":
            return f"+{self.target}"
        return str(self.target)


@dataclass(frozen=True)
class CellRef:
    """
    Reference to cells of a table.

    Row and column are 1-based; 0 is a wildcard. A range is set when
    end_row/end_col are non-zero. row_op/col_op turn the reference into a
    row or column mutation. sub_pattern restricts replacement to text inside
    each addressed cell.
    """
    table: TableSelector
    row: int = 0
    col: int = 0
    end_row: int = 0
    end_col: int = 0
    row_op: Optional[RowColOp] = None
    col_op: Optional[RowColOp] = None
    sub_pattern: str = ""

    @property
    def table_index(self) -> Optional[int]:
        return self.table.index

    @property
    def is_range(self) -> bool:
        return self.end_row > 0 and self.end_col > 0

    @property
    def is_mutation(self) -> bool:
        return self.row_op is not None or self.col_op is not None

    @property
    def is_wildcard(self) -> bool:
        return not self.is_mutation and not self.is_range and (self.row == 0 or self.col == 0)

    @property
    def is_single(self) -> bool:
        return not self.is_mutation and not self.is_range and self.row > 0 and self.col > 0

    def with_sub_pattern(self, sub_pattern: str) -> "CellRef":
        return CellRef(
            table=self.table,
            row=self.row,
            col=self.col,
            end_row=self.end_row,
            end_col=self.end_col,
            row_op=self.row_op,
            col_op=self.col_op,
            sub_pattern=sub_pattern,
        )

    def label(self) -> str:
        """Short display label used by dry-run output."""
        kind = f"cell |{self.table}|[{self.row},{self.col}]"
        if self.row == 0 or self.col == 0:
            kind += " (wildcard)"
        return kind


@dataclass(frozen=True)
class ImageRef:
    """
    Reference to existing images.

    Exactly one of: ``all_images``, a signed 1-based ``position`` or an
    ``alt_pattern`` regex matched against image titles/descriptions.
    """
    position: int = 0
    all_images: bool = False
    alt_pattern: str = ""

    @property
    def by_alt(self) -> bool:
        return bool(self.alt_pattern)

    def to_pattern(self) -> str:
        """Render as the image pattern form used in search patterns."""
        if self.all_images:
            return "!(*)"
        if self.alt_pattern:
            return f"![{self.alt_pattern}]"
        return f"!({self.position})"

    def __str__(self) -> str:
        if self.all_images:
            return "{img=*}"
        if self.alt_pattern:
            return "{img=" + self.alt_pattern + "}"
        return "{img=" + str(self.position) + "}"


@dataclass(frozen=True)
class TableCreateSpec:
    """Dimensions and optional contents of a table to create."""
    rows: int
    cols: int
    header: bool = False
    cells: Optional[Tuple[Tuple[str, ...], ...]] = None


@dataclass(frozen=True)
class SedExpression:
    """
    One parsed sed expression.

    ``replacement`` is an internal template: ``${N}`` is a backreference and
    ``$$`` a literal dollar sign.
    """
    pattern: str
    replacement: str = ""
    command: Command = Command.SUBSTITUTE
    global_: bool = False
    nth_match: int = 0
    cell_ref: Optional[CellRef] = None
    table_ref: Optional[TableSelector] = None
    brace: Any = None
    brace_spans: Tuple[Any, ...] = field(default_factory=tuple)
    raw: str = ""

    @property
    def is_positional(self) -> bool:
        return (
            self.command is Command.SUBSTITUTE
            and self.cell_ref is None
            and self.table_ref is None
            and self.pattern in POSITIONAL_PATTERNS
        )

    def compile_pattern(self) -> "re.Pattern[str]":
        """
        Compile the search pattern.

        Raises:
            SedPatternError: If the pattern is not a valid regular expression
        """
        try:
            return re.compile(self.pattern)
        except re.error as e:
            raise SedPatternError(f"invalid regex {self.pattern!r}: {e}") from e
