"""
SQLite Sandbox Engine
=====================
One isolated, disposable SQLite database per grading session. A sandbox owns
its backing file exclusively: it creates the file on init, seeds it, runs
submissions against it and deletes it (with its WAL/SHM side files) on destroy.
"""

import os
import re
import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Engine-controlled settings applied to every sandbox connection
SAFE_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
)

SIDE_FILE_SUFFIXES = ("-wal", "-shm", "-journal")


class SandboxState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    ACTIVE = "ACTIVE"
    DESTROYED = "DESTROYED"


class SandboxStateError(RuntimeError):
    """Raised when a sandbox is used outside of its active lifetime"""
    pass


@dataclass
class ExecutionResult:
    success: bool
    output: Optional[List[Dict[str, Any]]] = None
    outputs: List[List[Dict[str, Any]]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "output": self.output, "outputs": self.outputs}
        return {"success": False, "error": self.error}


class SqliteSandbox:
    """
    Isolated SQLite instance for executing user SQL against a seeded schema
    """

    def __init__(self, question_id: str, seed_sql: Optional[str] = None,
                 scratch_dir: str = "tmp", group_id: Optional[str] = None):
        """
        Args:
            question_id: Question the sandbox belongs to (embedded in the file name)
            seed_sql: Script run once at init to create baseline schema/data
            scratch_dir: Directory holding the backing file
            group_id: Seed group, kept for logging only
        """
        self.question_id = str(question_id)
        self.group_id = group_id
        self.seed_sql = seed_sql
        self.scratch_dir = scratch_dir

        self.db_path: Optional[str] = None
        self.engine: Optional[Engine] = None
        self.conn: Optional[Connection] = None
        self.state = SandboxState.UNINITIALIZED

    @property
    def active(self) -> bool:
        return self.state is SandboxState.ACTIVE

    def _build_db_path(self) -> str:
        safe_question_id = re.sub(r'\W', '_', self.question_id)[:64] or "question"
        file_name = f"question_{safe_question_id}_{uuid.uuid4().hex}.db"
        return os.path.join(self.scratch_dir, file_name)

    def _escape_identifier(self, identifier: str) -> str:
        return f'"{identifier.replace(chr(34), chr(34) + chr(34))}"'

    def _require_active(self):
        if not self.active:
            raise SandboxStateError(
                f"Sandbox for question {self.question_id} is not active (state: {self.state.value})"
            )

    def init(self):
        """Create the backing file, apply safe settings and run the seed script"""
        if self.state is not SandboxState.UNINITIALIZED:
            raise SandboxStateError(
                f"Sandbox for question {self.question_id} already initialized (state: {self.state.value})"
            )

        os.makedirs(self.scratch_dir, exist_ok=True)
        self.db_path = self._build_db_path()

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            isolation_level="AUTOCOMMIT",
        )
        event.listen(self.engine, "connect", _apply_safe_pragmas)

        try:
            self.conn = self.engine.connect()
        except Exception:
            self.engine.dispose()
            self.engine = None
            raise

        # Marked active first so that a failing seed is torn down by destroy()
        self.state = SandboxState.ACTIVE

        if self.seed_sql and self.seed_sql.strip():
            try:
                self.conn.connection.driver_connection.executescript(self.seed_sql)
            except Exception as e:
                logger.error(f"Failed to seed sandbox for question {self.question_id}: {e}")
                self.destroy()
                raise

        logger.info(f"Created sandbox {os.path.basename(self.db_path)}")

    def execute(self, statements: List[str], atomic: bool = False) -> ExecutionResult:
        """
        Execute validated statements sequentially.

        Without ``atomic`` every statement commits on its own: when statement k
        fails, the effects of statements 1..k-1 stay in the database. With
        ``atomic`` the whole sequence is rolled back on the first failure.

        Args:
            statements: Ordered statement texts
            atomic: Run the sequence inside a single transaction

        Returns:
            ExecutionResult with the last query's rows and every query's rows
        """
        self._require_active()

        outputs: List[List[Dict[str, Any]]] = []
        last_output: Optional[List[Dict[str, Any]]] = None

        try:
            if atomic:
                self.conn.exec_driver_sql("BEGIN")

            for statement in statements:
                rows = self._run_statement(statement)
                if rows is not None:
                    outputs.append(rows)
                    last_output = rows

            if atomic:
                self.conn.exec_driver_sql("COMMIT")

        except DBAPIError as e:
            if atomic:
                self._rollback()
            return ExecutionResult(success=False, error=str(e.orig))
        except Exception:
            if atomic:
                self._rollback()
            raise

        return ExecutionResult(
            success=True,
            output=last_output if last_output is not None else [],
            outputs=outputs,
        )

    def _run_statement(self, statement: str) -> Optional[List[Dict[str, Any]]]:
        # Rows when the cursor produced a result set (queries, VALUES, EXPLAIN), else None
        result = self.conn.exec_driver_sql(statement)
        try:
            if not result.returns_rows:
                return None
            columns = list(result.keys())
            return [dict(zip(columns, row)) for row in result]
        finally:
            result.close()

    def _fetch_rows(self, statement: str) -> List[Dict[str, Any]]:
        return self._run_statement(statement) or []

    def _rollback(self):
        driver_connection = self.conn.connection.driver_connection
        if driver_connection.in_transaction:
            self.conn.exec_driver_sql("ROLLBACK")

    def get_table_info(self) -> List[Dict[str, Any]]:
        """
        Describe every table in the sandbox.

        Returns:
            List of ``{"name", "columns": [{"name", "type"}], "rows"}`` dicts,
            one per table, ordered by table name
        """
        self._require_active()

        inspector = inspect(self.conn)
        tables = []

        for table_name in sorted(inspector.get_table_names()):
            columns = [
                {"name": column["name"], "type": str(column["type"])}
                for column in inspector.get_columns(table_name)
            ]
            rows = self._fetch_rows(f"SELECT * FROM {self._escape_identifier(table_name)}")
            tables.append({"name": table_name, "columns": columns, "rows": rows})

        return tables

    def destroy(self):
        """Close the database and delete its files; a no-op unless active"""
        if self.state is not SandboxState.ACTIVE:
            return

        db_path = self.db_path
        try:
            if self.conn is not None:
                self.conn.close()
            if self.engine is not None:
                self.engine.dispose()
        finally:
            self.conn = None
            self.engine = None
            self.db_path = None
            self.state = SandboxState.DESTROYED

        for path in (db_path, *(db_path + suffix for suffix in SIDE_FILE_SUFFIXES)):
            try:
                os.remove(path)
            except FileNotFoundError:
                continue

        logger.info(f"Destroyed sandbox {os.path.basename(db_path)}")

    def __enter__(self):
        if self.state is SandboxState.UNINITIALIZED:
            self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()


def _apply_safe_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    try:
        for pragma in SAFE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()
