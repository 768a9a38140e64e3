"""
WCA Query Backend - SQL Validation Layer
========================================

Decides whether a user-submitted SQL string may run against the WCA mirror,
and how to page it.

STAGES:
1. StatementClassifier  - allow-list on the first keyword
2. PaginationPlanner    - LIMIT/OFFSET injection + COUNT(*) wrapper
3. check_columns        - rejects result sets with duplicate column names

WHAT THIS IS NOT:
- NOT a SQL parser (keyword sniffing with regex only)
- NOT a read-only guarantee: statements smuggled after a ';', inside
  comments, or behind a SELECT that only appears in a string literal are not
  detected. The store account should be read-only as well.
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)


ALLOWED_STATEMENTS_MESSAGE = (
    "Only SELECT (with optional WITH) and DESC/DESCRIBE statements allowed"
)
DUPLICATE_COLUMNS_MESSAGE = (
    "Query cannot have two identical column names. Please use AS to alias them."
)
DEFAULT_MAX_USER_LIMIT = 100


class QueryValidationError(ValueError):
    """A statement was refused before or after execution (HTTP 400)."""
    pass


class StatementKind(str, Enum):
    SELECT = "SELECT"
    DESCRIBE = "DESCRIBE"
    WITH_SELECT = "WITH_SELECT"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class ClassifiedStatement:
    """
    Result of classification.

    Attributes:
        kind: Statement family, REJECTED if not allow-listed
        normalized_text: Trimmed text with one trailing ';' removed.
                         Original case is preserved.
    """
    kind: StatementKind
    normalized_text: str

    @property
    def is_rejected(self) -> bool:
        return self.kind is StatementKind.REJECTED


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Statements to issue for one request.

    Attributes:
        data_statement: SQL that returns the rows
        count_statement: SQL returning a single 'count' column, or None when
                         the total is the number of returned rows
        effective_page: Page reported back to the caller
        effective_page_size: Page size reported back, or None when it is
                             only known after execution (row count)
    """
    data_statement: str
    count_statement: Optional[str]
    effective_page: int
    effective_page_size: Optional[int]

    @property
    def paginated(self) -> bool:
        return self.count_statement is not None


# =============================================================================
# CLASSIFIER
# =============================================================================

class StatementClassifier:
    """
    Allow-list gate on the first whitespace-delimited token.

    SELECT and DESC/DESCRIBE pass directly. WITH passes only if a SELECT
    keyword follows somewhere in the text; the check is one lenient regex
    over the whole statement, so a SELECT inside a literal also satisfies it.
    """

    DESCRIBE_KEYWORDS = ("DESC", "DESCRIBE")
    WITH_SELECT_PATTERN = re.compile(r'^\s*WITH[\s\S]+SELECT', re.IGNORECASE)

    def classify(self, raw_text: Any) -> ClassifiedStatement:
        if not isinstance(raw_text, str) or not raw_text.strip():
            return ClassifiedStatement(StatementKind.REJECTED, "")

        trimmed = raw_text.strip()
        keyword_view = trimmed.upper()
        first_word = keyword_view.split()[0]

        if first_word in self.DESCRIBE_KEYWORDS:
            kind = StatementKind.DESCRIBE
        elif first_word == "SELECT":
            kind = StatementKind.SELECT
        elif first_word == "WITH" and self.WITH_SELECT_PATTERN.match(keyword_view):
            kind = StatementKind.WITH_SELECT
        else:
            logger.debug(f"Rejected statement starting with {first_word[:32]!r}")
            return ClassifiedStatement(StatementKind.REJECTED, trimmed)

        return ClassifiedStatement(kind, _strip_trailing_semicolon(trimmed))


def _strip_trailing_semicolon(sql: str) -> str:
    """Remove a single trailing ';' (and the whitespace it leaves behind)."""
    if sql.endswith(";"):
        return sql[:-1].rstrip()
    return sql


# =============================================================================
# PAGINATION
# =============================================================================

class PaginationPlanner:
    """
    Turns a classified statement into an ExecutionPlan.

    Rules:
    - DESCRIBE: run verbatim, page 1, total = rows returned
    - SELECT/WITH with a user LIMIT: LIMIT <= max_user_limit is authoritative,
      run verbatim, page 1, total = rows returned
    - SELECT/WITH without LIMIT: append LIMIT/OFFSET for the requested page and
      count the full result through a derived table

    The page size on the injected path is not capped here; only the
    explicit LIMIT is.
    """

    LIMIT_PATTERN = re.compile(r'\bLIMIT\s+(\d+)', re.IGNORECASE)

    def __init__(self, max_user_limit: int = DEFAULT_MAX_USER_LIMIT):
        self.max_user_limit = max_user_limit

    def plan(self, stmt: ClassifiedStatement, page: int, page_size: int) -> ExecutionPlan:
        if stmt.is_rejected:
            raise ValueError("Cannot plan a rejected statement")

        sql = stmt.normalized_text

        if stmt.kind is StatementKind.DESCRIBE:
            return ExecutionPlan(
                data_statement=sql,
                count_statement=None,
                effective_page=1,
                effective_page_size=None,
            )

        limit_match = self.LIMIT_PATTERN.search(sql)
        if limit_match:
            user_limit = int(limit_match.group(1))
            if user_limit > self.max_user_limit:
                raise QueryValidationError(f"LIMIT cannot exceed {self.max_user_limit}")
            return ExecutionPlan(
                data_statement=sql,
                count_statement=None,
                effective_page=1,
                effective_page_size=None,
            )

        offset = (page - 1) * page_size
        return ExecutionPlan(
            data_statement=f"{sql} LIMIT {page_size} OFFSET {offset}",
            count_statement=f"SELECT COUNT(*) AS count FROM ({sql}) AS sub",
            effective_page=page,
            effective_page_size=page_size,
        )


# =============================================================================
# RESULT SHAPE GUARD
# =============================================================================

def check_columns(field_names: Sequence[str]) -> None:
    """
    Reject result sets whose column names collide.

    Rows are serialised as column -> value mappings, so a duplicate name would
    silently drop a value.

    Raises:
        QueryValidationError: If any column name appears twice.
    """
    names = list(field_names)
    if len(set(names)) < len(names):
        raise QueryValidationError(DUPLICATE_COLUMNS_MESSAGE)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_classifier = StatementClassifier()


def classify(raw_text: Any) -> ClassifiedStatement:
    """Classify raw SQL text with the shared classifier."""
    return _classifier.classify(raw_text)


def plan(
    stmt: ClassifiedStatement,
    page: int,
    page_size: int,
    max_user_limit: int = DEFAULT_MAX_USER_LIMIT,
) -> ExecutionPlan:
    """Build the execution plan for a classified statement."""
    return PaginationPlanner(max_user_limit).plan(stmt, page, page_size)
