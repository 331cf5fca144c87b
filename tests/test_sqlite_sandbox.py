"""
Unit tests for the SQLite sandbox engine
"""

import os
import sqlite3
import tempfile
import unittest
from unittest.mock import patch

from sqljudge.sqlite_sandbox import SandboxState, SandboxStateError, SqliteSandbox

SEED_SQL = """
CREATE TABLE parents (id INTEGER PRIMARY KEY, label TEXT NOT NULL);
CREATE TABLE t (id INT, name TEXT, parent_id INTEGER REFERENCES parents(id), score REAL);
INSERT INTO parents VALUES (1, 'root');
INSERT INTO t VALUES (1, 'a', 1, 1.5);
"""


class SandboxTestCase(unittest.TestCase):

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.scratch_dir = tmp.name

    def make_sandbox(self, seed_sql=SEED_SQL, question_id="q1"):
        sandbox = SqliteSandbox(question_id=question_id, seed_sql=seed_sql, scratch_dir=self.scratch_dir)
        self.addCleanup(sandbox.destroy)
        return sandbox


class TestSandboxLifecycle(SandboxTestCase):
    """State machine and file ownership"""

    def test_init_creates_backing_file(self):
        sandbox = self.make_sandbox()
        self.assertIs(sandbox.state, SandboxState.UNINITIALIZED)

        sandbox.init()

        self.assertTrue(sandbox.active)
        self.assertTrue(os.path.exists(sandbox.db_path))
        self.assertTrue(os.path.basename(sandbox.db_path).startswith("question_q1_"))

    def test_each_sandbox_gets_its_own_file(self):
        first = self.make_sandbox()
        second = self.make_sandbox()
        first.init()
        second.init()
        self.assertNotEqual(first.db_path, second.db_path)

    def test_double_init_raises(self):
        sandbox = self.make_sandbox()
        sandbox.init()
        with self.assertRaises(SandboxStateError):
            sandbox.init()

    def test_no_reinit_after_destroy(self):
        sandbox = self.make_sandbox()
        sandbox.init()
        sandbox.destroy()
        with self.assertRaises(SandboxStateError):
            sandbox.init()

    def test_use_after_destroy_raises(self):
        sandbox = self.make_sandbox()
        sandbox.init()
        sandbox.destroy()

        with self.assertRaises(SandboxStateError):
            sandbox.execute(["SELECT 1"])
        with self.assertRaises(SandboxStateError):
            sandbox.get_table_info()

    def test_execute_before_init_raises(self):
        with self.assertRaises(SandboxStateError):
            self.make_sandbox().execute(["SELECT 1"])

    def test_destroy_removes_file_and_side_files(self):
        sandbox = self.make_sandbox()
        sandbox.init()
        sandbox.execute(["INSERT INTO t VALUES (2, 'b', 1, 2.5)"])
        self.assertNotEqual(os.listdir(self.scratch_dir), [])

        sandbox.destroy()

        self.assertIs(sandbox.state, SandboxState.DESTROYED)
        self.assertEqual(os.listdir(self.scratch_dir), [])

    def test_destroy_is_idempotent(self):
        sandbox = self.make_sandbox()
        sandbox.destroy()
        self.assertIs(sandbox.state, SandboxState.UNINITIALIZED)

        sandbox.init()
        sandbox.destroy()
        sandbox.destroy()
        self.assertIs(sandbox.state, SandboxState.DESTROYED)

    def test_failed_seed_destroys_sandbox(self):
        sandbox = self.make_sandbox(seed_sql="CREATE TABLE broken (")

        with self.assertRaises(sqlite3.Error):
            sandbox.init()

        self.assertIs(sandbox.state, SandboxState.DESTROYED)
        self.assertEqual(os.listdir(self.scratch_dir), [])

    def test_context_manager(self):
        with self.make_sandbox() as sandbox:
            self.assertTrue(sandbox.active)
            db_path = sandbox.db_path
        self.assertFalse(sandbox.active)
        self.assertFalse(os.path.exists(db_path))


class TestSandboxExecution(SandboxTestCase):
    """Statement execution semantics"""

    def setUp(self):
        super().setUp()
        self.sandbox = self.make_sandbox()
        self.sandbox.init()

    def select_names(self):
        result = self.sandbox.execute(["SELECT name FROM t ORDER BY id"])
        return [row["name"] for row in result.output]

    def test_query_returns_rows_as_dicts(self):
        result = self.sandbox.execute(["SELECT id, name FROM t"])
        self.assertTrue(result.success)
        self.assertEqual(result.output, [{"id": 1, "name": "a"}])
        self.assertEqual(result.outputs, [[{"id": 1, "name": "a"}]])

    def test_output_is_last_query_and_outputs_keeps_all(self):
        result = self.sandbox.execute([
            "SELECT COUNT(*) AS n FROM t",
            "INSERT INTO t VALUES (2, 'b', 1, 2.5)",
            "WITH x AS (SELECT name FROM t) SELECT name FROM x ORDER BY name",
        ])
        self.assertTrue(result.success)
        self.assertEqual(result.output, [{"name": "a"}, {"name": "b"}])
        self.assertEqual(result.outputs, [[{"n": 1}], [{"name": "a"}, {"name": "b"}]])

    def test_mutations_only_give_empty_output(self):
        result = self.sandbox.execute(["UPDATE t SET name = 'z'"])
        self.assertTrue(result.success)
        self.assertEqual(result.output, [])
        self.assertEqual(result.outputs, [])
        self.assertEqual(result.to_dict(), {"success": True, "output": [], "outputs": []})

    def test_failure_reports_database_error(self):
        result = self.sandbox.execute(["SELECT * FROM nonexistent"])
        self.assertFalse(result.success)
        self.assertIn("no such table", result.error)
        self.assertEqual(result.to_dict(), {"success": False, "error": result.error})

    def test_earlier_statements_stay_committed_on_failure(self):
        result = self.sandbox.execute([
            "INSERT INTO t VALUES (2, 'b', 1, 2.5)",
            "SELECT * FROM nonexistent",
        ])
        self.assertFalse(result.success)
        self.assertEqual(self.select_names(), ["a", "b"])

    def test_atomic_execution_rolls_back_on_failure(self):
        result = self.sandbox.execute([
            "INSERT INTO t VALUES (2, 'b', 1, 2.5)",
            "SELECT * FROM nonexistent",
        ], atomic=True)
        self.assertFalse(result.success)
        self.assertEqual(self.select_names(), ["a"])

    def test_atomic_execution_commits_on_success(self):
        result = self.sandbox.execute([
            "INSERT INTO t VALUES (2, 'b', 1, 2.5)",
            "SELECT COUNT(*) AS n FROM t",
        ], atomic=True)
        self.assertTrue(result.success)
        self.assertEqual(result.output, [{"n": 2}])
        self.assertEqual(self.select_names(), ["a", "b"])

    def test_foreign_keys_are_enforced(self):
        result = self.sandbox.execute(["INSERT INTO t VALUES (3, 'c', 99, 0)"])
        self.assertFalse(result.success)
        self.assertIn("FOREIGN KEY", result.error)

    def test_table_info(self):
        tables = self.sandbox.get_table_info()

        self.assertEqual([table["name"] for table in tables], ["parents", "t"])
        t_info = tables[1]
        self.assertEqual(
            [(c["name"], c["type"]) for c in t_info["columns"]],
            [("id", "INTEGER"), ("name", "TEXT"), ("parent_id", "INTEGER"), ("score", "REAL")]
        )
        self.assertEqual(t_info["rows"], [{"id": 1, "name": "a", "parent_id": 1, "score": 1.5}])


class TestResultSetClassification(SandboxTestCase):
    """Row sets come from statements whose cursor returns rows"""

    def setUp(self):
        super().setUp()
        self.sandbox = self.make_sandbox()
        self.sandbox.init()

    def test_values_statement_returns_rows(self):
        result = self.sandbox.execute(["VALUES (1, 'a')"])
        self.assertTrue(result.success)
        self.assertEqual(len(result.output), 1)
        self.assertEqual(list(result.output[0].values()), [1, "a"])
        self.assertEqual(result.outputs, [result.output])

    def test_explain_returns_rows(self):
        result = self.sandbox.execute(["EXPLAIN QUERY PLAN SELECT * FROM t"])
        self.assertTrue(result.success)
        self.assertNotEqual(result.output, [])
        self.assertEqual(len(result.outputs), 1)

    def test_cte_mutation_does_not_replace_output(self):
        result = self.sandbox.execute([
            "SELECT 1 AS a",
            "WITH x AS (SELECT 5, 'e', 1, 0.5) INSERT INTO t SELECT * FROM x",
        ])
        self.assertTrue(result.success)
        self.assertEqual(result.output, [{"a": 1}])
        self.assertEqual(result.outputs, [[{"a": 1}]])
        self.assertEqual(self.sandbox.execute(["SELECT COUNT(*) AS n FROM t"]).output, [{"n": 2}])

    def test_empty_query_result_is_still_a_row_set(self):
        result = self.sandbox.execute(["SELECT 1 AS a", "SELECT * FROM t WHERE id = 99"])
        self.assertEqual(result.output, [])
        self.assertEqual(result.outputs, [[{"a": 1}], []])

    def test_compound_query_returns_rows(self):
        result = self.sandbox.execute(["SELECT id FROM t UNION ALL SELECT 2"])
        self.assertEqual(result.output, [{"id": 1}, {"id": 2}])


class TestAtomicUnexpectedErrors(SandboxTestCase):

    def test_non_database_error_rolls_back_and_propagates(self):
        sandbox = self.make_sandbox()
        sandbox.init()
        run_statement = sandbox._run_statement

        def fail_second(statement):
            if statement.startswith("SELECT"):
                raise RuntimeError("boom")
            return run_statement(statement)

        with patch.object(sandbox, "_run_statement", side_effect=fail_second):
            with self.assertRaises(RuntimeError):
                sandbox.execute(["INSERT INTO t VALUES (2, 'b', 1, 2.5)", "SELECT 1"], atomic=True)

        self.assertFalse(sandbox.conn.connection.driver_connection.in_transaction)
        result = sandbox.execute(["SELECT COUNT(*) AS n FROM t"])
        self.assertEqual(result.output, [{"n": 1}])


if __name__ == '__main__':
    unittest.main()
