"""
Grading Service
===============
Implements the judge operations (execute, submit, reset, seed, schema) on top
of the validator, the session registry and the result comparator.
"""

import asyncio
import base64
import logging
import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .query_validator import SqlValidator, SqlValidationError
from .result_comparator import compare_results, parse_expected
from .sandbox_manager import SandboxRegistry
from .sqlite_sandbox import SqliteSandbox

logger = logging.getLogger(__name__)


def sanitize_json_data(data: Any, seen: set = None) -> Any:
    """JSON sanitization for API responses with UTF-8 safety"""
    if seen is None:
        seen = set()

    # Cycle detection for nested structures
    data_id = id(data)
    if data_id in seen:
        return None

    if data is None or isinstance(data, (bool, int)):
        return data

    if isinstance(data, str):
        try:
            data.encode('utf-8')
            return data
        except UnicodeEncodeError:
            return data.encode('utf-8', errors='replace').decode('utf-8')

    if isinstance(data, float):
        if math.isnan(data):
            return None
        if math.isinf(data):
            return "Infinity" if data > 0 else "-Infinity"
        return data

    seen.add(data_id)
    try:
        # SQLite BLOBs: text when decodable, base64 otherwise
        if isinstance(data, (bytes, bytearray, memoryview)):
            raw = bytes(data)
            try:
                return raw.decode('utf-8')
            except UnicodeDecodeError:
                return f"base64:{base64.b64encode(raw).decode('ascii')}"

        if isinstance(data, dict):
            return {str(k): sanitize_json_data(v, seen) for k, v in data.items()}

        if isinstance(data, (list, tuple, set)):
            return [sanitize_json_data(item, seen) for item in data]

        if isinstance(data, Decimal):
            return float(data) if data.is_finite() else str(data)

        if hasattr(data, 'isoformat'):
            return data.isoformat()

        return str(data)
    finally:
        seen.discard(data_id)


class GradingService:
    """Runs submissions in per-session sandboxes and grades their output"""

    def __init__(self, registry: SandboxRegistry, max_sql_length: int = 10000,
                 max_statements: int = 20, atomic_execution: bool = False):
        self.registry = registry
        self.validator = SqlValidator(max_length=max_sql_length, max_statements=max_statements)
        self.atomic_execution = atomic_execution

    async def execute(self, question_id, code: str, group_id: Optional[str] = None) -> Dict[str, Any]:
        """Dry run: execute against the session sandbox and keep it alive"""
        statements = self.validator.validate(code)
        key = self.registry.key(question_id, group_id)

        async with self.registry.session(key) as sandbox:
            result = await asyncio.to_thread(sandbox.execute, statements, self.atomic_execution)

        if not result.success:
            logger.info(f"Execution failed for session {key}: {result.error}")

        return sanitize_json_data(result.to_dict())

    async def submit(self, question_id, code: str, expected_output: Any,
                     group_id: Optional[str] = None) -> Dict[str, Any]:
        """Execute, grade against the expected output, then destroy the sandbox"""
        statements = self.validator.validate(code)
        expected = parse_expected(expected_output)
        key = self.registry.key(question_id, group_id)

        async with self.registry.session(key, discard=True) as sandbox:
            result = await asyncio.to_thread(sandbox.execute, statements, self.atomic_execution)

        if not result.success:
            logger.info(f"Submission failed to execute for session {key}: {result.error}")
            return sanitize_json_data({
                "passed": False,
                "reason": result.error,
                "error": result.error,
                "actualOutput": None,
                "actualOutputs": [],
            })

        comparison = compare_results(expected, result.output)
        logger.info(f"Submission for session {key}: {'passed' if comparison.passed else comparison.reason}")

        response = {
            "passed": comparison.passed,
            "actualOutput": result.output,
            "actualOutputs": result.outputs,
        }
        if comparison.reason:
            response["reason"] = comparison.reason
        return sanitize_json_data(response)

    async def reset(self, question_id, group_id: Optional[str] = None) -> Dict[str, Any]:
        key = self.registry.key(question_id, group_id)
        existed = await self.registry.destroy_sandbox(key)
        return {"success": True, "reset": existed}

    def seed(self, seed_sql: str, group_id: Optional[str] = None) -> Dict[str, Any]:
        """Register a seed script for a group and return the group id"""
        if not isinstance(seed_sql, str) or not seed_sql.strip():
            raise SqlValidationError("Seed SQL is required")

        group_id = self.registry.create_seed(seed_sql, group_id)
        return {"success": True, "groupId": group_id}

    async def schema(self, question_id=None, group_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Describe tables, columns and rows. With a question id this is the live
        session sandbox (created when missing); without one a throwaway sandbox
        seeded from the group or baseline seed is described and destroyed.
        """
        if question_id is None or question_id == "":
            tables = await asyncio.to_thread(self._describe_seed, group_id)
        else:
            key = self.registry.key(question_id, group_id)
            async with self.registry.session(key) as sandbox:
                tables = await asyncio.to_thread(sandbox.get_table_info)

        return sanitize_json_data({"success": True, "tables": tables})

    def _describe_seed(self, group_id: Optional[str]) -> List[Dict[str, Any]]:
        key = self.registry.key("schema_preview", group_id)
        sandbox = SqliteSandbox(
            question_id=key.question_id,
            seed_sql=self.registry.resolve_seed(key),
            scratch_dir=self.registry.scratch_dir,
            group_id=key.group_id,
        )
        with sandbox:
            return sandbox.get_table_info()
