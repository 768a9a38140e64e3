"""
Tests for QueryPipeline orchestration with a recording stand-in store.
"""

import unittest

from auth import WcaUser
from database import QueryExecutionError, StatementResult
from query_pipeline import QueryPipeline
from sql_validator import ALLOWED_STATEMENTS_MESSAGE, DUPLICATE_COLUMNS_MESSAGE, QueryValidationError

USER = WcaUser(id=6342, name="Feliks Zemdegs")


class RecordingDatabase:
    """Returns canned results and records every statement it is asked to run."""

    def __init__(self, result=None, total=0, error=None):
        self.result = result or StatementResult()
        self.total = total
        self.error = error
        self.statements = []
        self.count_statements = []

    def run_statement(self, sql):
        self.statements.append(sql)
        if self.error:
            raise self.error
        return self.result

    def count_rows(self, sql):
        self.count_statements.append(sql)
        return self.total


def rows(n):
    return StatementResult(columns=["id"], rows=[{"id": i} for i in range(n)])


class TestQueryPipeline(unittest.TestCase):

    # --- Paginated path ---

    def test_paginated_select(self):
        db = RecordingDatabase(result=rows(10), total=137)
        result = QueryPipeline(db).run("SELECT id FROM Persons;", 2, 10, USER)

        self.assertEqual(db.statements, ["SELECT id FROM Persons LIMIT 10 OFFSET 10"])
        self.assertEqual(db.count_statements, ["SELECT COUNT(*) AS count FROM (SELECT id FROM Persons) AS sub"])
        self.assertEqual(result.to_response(), {
            "rows": rows(10).rows,
            "page": 2,
            "pageSize": 10,
            "total": 137,
        })

    # --- Unpaginated paths ---

    def test_explicit_limit_reports_row_count(self):
        db = RecordingDatabase(result=rows(3))
        result = QueryPipeline(db).run("SELECT id FROM Persons LIMIT 3", 5, 10, USER)

        self.assertEqual(db.statements, ["SELECT id FROM Persons LIMIT 3"])
        self.assertEqual(db.count_statements, [])
        self.assertEqual((result.page, result.page_size, result.total), (1, 3, 3))

    def test_describe_reports_row_count(self):
        db = RecordingDatabase(result=rows(7))
        result = QueryPipeline(db).run("DESC Persons", 3, 50, USER)

        self.assertEqual(db.statements, ["DESC Persons"])
        self.assertEqual(db.count_statements, [])
        self.assertEqual((result.page, result.page_size, result.total), (1, 7, 7))

    def test_empty_result_with_limit(self):
        db = RecordingDatabase(result=rows(0))
        result = QueryPipeline(db).run("SELECT id FROM Persons WHERE 1 = 0 LIMIT 5", 1, 50, USER)
        self.assertEqual((result.page, result.page_size, result.total), (1, 0, 0))

    # --- Failures ---

    def test_rejected_statement_never_reaches_store(self):
        db = RecordingDatabase()
        with self.assertRaises(QueryValidationError) as ctx:
            QueryPipeline(db).run("DROP TABLE Persons", 1, 50, USER)
        self.assertEqual(str(ctx.exception), ALLOWED_STATEMENTS_MESSAGE)
        self.assertEqual(db.statements, [])

    def test_limit_over_cap_never_reaches_store(self):
        db = RecordingDatabase()
        with self.assertRaises(QueryValidationError):
            QueryPipeline(db).run("SELECT * FROM Results LIMIT 101", 1, 50, USER)
        self.assertEqual(db.statements, [])

    def test_custom_cap(self):
        db = RecordingDatabase(result=rows(1))
        with self.assertRaises(QueryValidationError):
            QueryPipeline(db, max_user_limit=10).run("SELECT * FROM Results LIMIT 11", 1, 50, USER)

    def test_duplicate_columns_skip_count(self):
        db = RecordingDatabase(result=StatementResult(columns=["a", "a"], rows=[{"a": 2}]), total=1)
        with self.assertRaises(QueryValidationError) as ctx:
            QueryPipeline(db).run("SELECT 1 AS a, 2 AS a", 1, 50, USER)
        self.assertEqual(str(ctx.exception), DUPLICATE_COLUMNS_MESSAGE)
        self.assertEqual(db.count_statements, [])

    def test_duplicate_columns_checked_on_describe(self):
        db = RecordingDatabase(result=StatementResult(columns=["Field", "Field"], rows=[]))
        with self.assertRaises(QueryValidationError):
            QueryPipeline(db).run("DESCRIBE Persons", 1, 50, USER)

    def test_store_error_propagates(self):
        db = RecordingDatabase(error=QueryExecutionError("Unknown column 'nme' in 'field list'"))
        with self.assertRaises(QueryExecutionError) as ctx:
            QueryPipeline(db).run("SELECT nme FROM Persons", 1, 50, USER)
        self.assertEqual(str(ctx.exception), "Unknown column 'nme' in 'field list'")
        self.assertEqual(db.count_statements, [])

    # --- Logging ---

    def test_statement_logged_with_identity(self):
        db = RecordingDatabase(result=rows(1), total=1)
        with self.assertLogs("query_pipeline", level="INFO") as logs:
            QueryPipeline(db).run("SELECT id FROM Persons", 1, 50, USER)
        self.assertTrue(any("requested by user 6342 (Feliks Zemdegs)" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
