"""SQL Query Validator for ted.

Validates user-supplied SQL before it is opened as a read-only relation:
exactly one statement, and only SELECT or WITH ... SELECT.
"""

import logging
import re
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class QueryKind(Enum):
    """Allowed custom query forms."""

    SELECT = "SELECT"
    WITH = "WITH"


# Statements that write or change structure
RESTRICTED_OPERATIONS = {
    "INSERT",
    "UPDATE",
    "DELETE",
    "MERGE",
    "REPLACE",
    "CREATE",
    "ALTER",
    "DROP",
    "TRUNCATE",
    "RENAME",
    "GRANT",
    "REVOKE",
    "ATTACH",
    "DETACH",
    "PRAGMA",
    "VACUUM",
    "COPY",
}

_TRAILING = "; \t\n\r"


class SQLValidationError(Exception):
    """Raised when SQL query validation fails."""

    pass


def strip_comments(query: str) -> str:
    """Remove -- and /* */ comments."""
    without_line = re.sub(r"--.*$", "", query, flags=re.MULTILINE)
    return re.sub(r"/\*[\s\S]*?\*/", "", without_line)


def normalize_custom_query(query: str) -> str:
    """Trim whitespace and trailing statement terminators."""
    return query.strip().rstrip(_TRAILING)


def validate_sql_query(query: str) -> Tuple[bool, Optional[str], Optional[QueryKind]]:
    """Validate a SQL query to ensure it is a single read-only statement.

    Args:
        query: The SQL query to validate

    Returns:
        Tuple of (is_valid, error_message, kind)
        - is_valid: True if query is valid
        - error_message: Error description if invalid, None if valid
        - kind: SELECT or WITH if valid, None if invalid
    """
    if not query or not query.strip():
        return False, "Query cannot be empty", None

    normalized_query = normalize_custom_query(strip_comments(query))
    normalized_query = re.sub(r"\s+", " ", normalized_query).strip().upper()

    if not normalized_query:
        return False, "Query cannot be empty after removing comments", None

    if ";" in normalized_query:
        return False, "multiple statements not allowed", None

    first_word = normalized_query.split()[0].lstrip("(")
    try:
        kind = QueryKind(first_word)
    except ValueError:
        return (
            False,
            f"{first_word} statements are not allowed. Only SELECT and WITH queries are permitted.",
            None,
        )

    if kind == QueryKind.WITH:
        # Data-modifying CTEs are rejected
        for restricted in RESTRICTED_OPERATIONS:
            if re.search(rf"\b{restricted}\b", normalized_query):
                logger.debug(f"Rejected WITH query containing {restricted}")
                return (
                    False,
                    f"CTE (WITH clause) containing {restricted} operations is not allowed.",
                    None,
                )

    return True, None, kind


def validate_query_safe(query: str) -> str:
    """Validate a SQL query and raise an exception if invalid.

    Args:
        query: The SQL query to validate

    Returns:
        The query without comments or trailing terminators

    Raises:
        SQLValidationError: If the query is invalid
    """
    is_valid, error_message, _ = validate_sql_query(query)
    if not is_valid:
        raise SQLValidationError(error_message)
    return normalize_custom_query(strip_comments(query))
