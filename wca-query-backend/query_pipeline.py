"""
QueryPipeline - Request Orchestration

Runs one user query through:
- Classification (allow-list)
- Planning (LIMIT/OFFSET injection, COUNT wrapper)
- Execution against the store
- Result shape check (duplicate column names)
- Total computation

Contains NO HTTP logic. Failures are raised as QueryValidationError,
QueryExecutionError or StoreUnavailableError and mapped to responses by the
API layer. Nothing is retried.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from auth import WcaUser
from database import WcaDatabase
from sql_validator import (
    ALLOWED_STATEMENTS_MESSAGE,
    PaginationPlanner,
    QueryValidationError,
    StatementClassifier,
    check_columns,
)

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class QueryResult:
    """Result envelope for one request."""
    rows: List[Dict[str, Any]]
    page: int
    page_size: int
    total: int

    def to_response(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "page": self.page,
            "pageSize": self.page_size,
            "total": self.total,
        }


# =============================================================================
# QUERY PIPELINE
# =============================================================================

class QueryPipeline:
    """
    FLOW:
    1. Classify  -> rejected statements stop here
    2. Plan      -> LIMIT over the cap stops here
    3. Execute data statement
    4. Check column names
    5. Count (paginated path only)

    Stateless between requests; the user is only logged.
    """

    def __init__(self, database: WcaDatabase, max_user_limit: int = 100):
        self.database = database
        self.classifier = StatementClassifier()
        self.planner = PaginationPlanner(max_user_limit)

    def run(self, raw_text: Any, page: int, page_size: int, user: WcaUser) -> QueryResult:
        stmt = self.classifier.classify(raw_text)
        if stmt.is_rejected:
            raise QueryValidationError(ALLOWED_STATEMENTS_MESSAGE)

        plan = self.planner.plan(stmt, page, page_size)

        mode = "paginated" if plan.paginated else "unpaginated"
        logger.info(
            f"Executing {mode} {stmt.kind.value} query: {plan.data_statement}, "
            f"requested by user {user.id} ({user.name})"
        )

        result = self.database.run_statement(plan.data_statement)
        check_columns(result.columns)

        if plan.count_statement is not None:
            total = self.database.count_rows(plan.count_statement)
        else:
            total = result.row_count

        return QueryResult(
            rows=result.rows,
            page=plan.effective_page,
            page_size=plan.effective_page_size if plan.effective_page_size is not None else result.row_count,
            total=total,
        )
