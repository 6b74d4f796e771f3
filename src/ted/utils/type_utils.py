"""Type utilities for coercing, formatting and sizing column values."""

import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List

from ted.core.dialect import DbType, Dialect

# Text a user types to set a cell to NULL
NULL_GLYPH = "\\0"
NULL_DISPLAY = "null"
EMPTY_DISPLAY = "·"

# Variable-width types without a declared length
UNBOUNDED_SIZE = 1024 * 1024


class _EmptyCell:
    """Marker for an insert cell the user has not filled in."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY_CELL"

    def __bool__(self) -> bool:
        return False


EMPTY_CELL = _EmptyCell()

# Estimated byte width per declared base type
TYPE_SIZES = {
    "tinyint": 1,
    "smallint": 2,
    "int2": 2,
    "int": 4,
    "integer": 4,
    "int4": 4,
    "mediumint": 4,
    "bigint": 8,
    "int8": 8,
    "serial": 4,
    "bigserial": 8,
    "real": 8,
    "double": 8,
    "double precision": 8,
    "float": 8,
    "float4": 4,
    "float8": 8,
    "bool": 1,
    "boolean": 1,
    "uuid": 16,
    "date": 8,
    "time": 8,
    "timestamp": 8,
    "timestamptz": 8,
    "datetime": 8,
    "decimal": 16,
    "numeric": 16,
}

_VARIABLE_WIDTH = ("char", "text", "clob", "varchar", "character varying", "string", "json")
_BINARY = ("bytea", "blob", "binary", "varbinary")
_FLOAT_MARKERS = ("real", "double", "float", "numeric", "decimal")
_CHAR_LENGTH = re.compile(r"\(\s*(\d+)\s*(?:,\s*\d+\s*)?\)")
_ENUM_TYPE = re.compile(r"^\s*enum\s*\((.*)\)\s*$", re.IGNORECASE | re.DOTALL)


def parse_char_length(column_type: str) -> int:
    """Extract the declared length from a type such as ``varchar(32)``.

    Returns -1 when the type declares no length.
    """
    match = _CHAR_LENGTH.search(column_type)
    if match:
        return int(match.group(1))
    return -1


def base_type(column_type: str) -> str:
    """Lowercase type name without length, precision or modifiers."""
    return _CHAR_LENGTH.sub("", column_type).strip().lower().replace(" unsigned", "")


def size_of(column_type: str, char_len: int = -1) -> int:
    """Estimate the byte width of a value of the given declared type.

    Args:
        column_type: Type as declared by the backend
        char_len: Declared character length, or -1 when unknown

    Returns:
        Estimated size in bytes; unbounded text and binary types count as 1 MiB
    """
    name = base_type(column_type)
    if char_len < 0:
        char_len = parse_char_length(column_type)

    if name in TYPE_SIZES:
        return TYPE_SIZES[name]
    if any(marker in name for marker in _BINARY):
        return UNBOUNDED_SIZE
    if any(marker in name for marker in _VARIABLE_WIDTH):
        return char_len if char_len > 0 else UNBOUNDED_SIZE
    return 8


def is_boolean_type(column_type: str) -> bool:
    return "bool" in column_type.lower()


def is_integer_type(column_type: str) -> bool:
    name = column_type.lower()
    return "int" in name and "interval" not in name and "point" not in name


def is_float_type(column_type: str) -> bool:
    name = column_type.lower()
    return any(marker in name for marker in _FLOAT_MARKERS)


def is_numeric_type(column_type: str) -> bool:
    return is_integer_type(column_type) or is_float_type(column_type)


def coerce_value(raw: str, column_type: str, null_glyph: str = NULL_GLYPH) -> Any:
    """
    Convert text typed by the user into a value suitable for binding.

    Parsing failures fall back to the raw string so the backend can reject it
    with its own error message.

    Args:
        raw: Text entered in the cell editor
        column_type: Declared column type
        null_glyph: Text that stands for NULL

    Returns:
        None, bool, int, float or the original string
    """
    if raw == null_glyph:
        return None

    if is_boolean_type(column_type):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "t"):
            return True
        if lowered in ("0", "false", "f"):
            return False
        return raw

    if is_integer_type(column_type):
        try:
            return int(raw.strip())
        except ValueError:
            return raw

    if is_float_type(column_type):
        try:
            return float(raw.strip())
        except ValueError:
            return raw

    return raw


def format_value(value: Any, null_glyph: str = NULL_GLYPH) -> str:
    """
    Render a value as editable text; the inverse of coerce_value().
    """
    if value is None:
        return null_glyph
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def display_value(value: Any) -> str:
    """Render a value for display in a grid cell."""
    if value is None:
        return NULL_DISPLAY
    if value is EMPTY_CELL:
        return EMPTY_DISPLAY
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = format_value(value)
    if text == "":
        return EMPTY_DISPLAY
    return text.replace("\n", "\\n").replace("\t", "\\t")


def format_literal(value: Any, column_type: str, dialect: Dialect, null_glyph: str = NULL_GLYPH) -> str:
    """
    Render a value as an inline SQL literal, used for statement previews.

    Args:
        value: Value to render
        column_type: Declared type of the target column
        dialect: Dialect the literal is rendered for
        null_glyph: Text that stands for NULL

    Returns:
        SQL literal text
    """
    if value is None or value is EMPTY_CELL or value == null_glyph:
        return "NULL"
    if isinstance(value, bool):
        if dialect.db_type == DbType.POSTGRES:
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        hex_value = bytes(value).hex()
        if dialect.db_type == DbType.POSTGRES:
            return f"'\\x{hex_value}'::bytea"
        return f"X'{hex_value}'"
    if isinstance(value, (datetime, date, time)):
        return f"'{value.isoformat()}'"

    text = str(value)
    if is_numeric_type(column_type) and _looks_numeric(text):
        return text
    return "'" + text.replace("'", "''") + "'"


def _looks_numeric(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def parse_enum_values(column_type: str) -> List[str]:
    """
    Parse the members of an ``enum('a','b')`` style type.

    Quotes inside members are doubled ('it''s') or backslash-escaped. Returns
    an empty list when the type is not an enum.
    """
    match = _ENUM_TYPE.match(column_type)
    if not match:
        return []

    values = []
    body = match.group(1)
    current: List[str] = []
    in_quote = False
    i = 0
    while i < len(body):
        ch = body[i]
        if in_quote:
            if ch == "\\" and i + 1 < len(body):
                current.append(body[i + 1])
                i += 1
            elif ch == "'":
                if i + 1 < len(body) and body[i + 1] == "'":
                    current.append("'")
                    i += 1
                else:
                    in_quote = False
                    values.append("".join(current))
                    current = []
            else:
                current.append(ch)
        elif ch == "'":
            in_quote = True
        i += 1
    return values
