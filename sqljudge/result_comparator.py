"""
Result Comparison
=================
Grades a submission by comparing its normalized output with the normalized
expected output.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .result_normalizer import normalize_result

logger = logging.getLogger(__name__)

NUMERIC_TOLERANCE = 1e-6

ROW_COUNT_MISMATCH = "Row count mismatch"
ROW_DATA_MISMATCH = "Row data mismatch"


class ExpectedOutputError(ValueError):
    """Raised when the expected output cannot be interpreted as rows"""
    pass


@dataclass
class CompareResult:
    passed: bool
    reason: Optional[str] = None
    expected: List[Dict[str, Any]] = field(default_factory=list)
    actual: List[Dict[str, Any]] = field(default_factory=list)


def compare_results(expected_output: Any, actual_output: Any) -> CompareResult:
    """
    Compare expected output with actual output.

    Args:
        expected_output: JSON text or list of row dicts supplied by the caller
        actual_output: Raw rows produced by the sandbox

    Returns:
        CompareResult; ``reason`` is only set when the comparison fails

    Raises:
        ExpectedOutputError: if ``expected_output`` is not a valid row list
    """
    normalized_expected = normalize_expected(expected_output)
    normalized_actual = normalize_result(actual_output)

    if len(normalized_actual) != len(normalized_expected):
        return CompareResult(
            passed=False,
            reason=ROW_COUNT_MISMATCH,
            expected=normalized_expected,
            actual=normalized_actual,
        )

    for expected_row, actual_row in zip(normalized_expected, normalized_actual):
        if not _rows_equal(expected_row, actual_row):
            return CompareResult(
                passed=False,
                reason=ROW_DATA_MISMATCH,
                expected=normalized_expected,
                actual=normalized_actual,
            )

    return CompareResult(passed=True)


def parse_expected(expected: Any) -> List[Dict[str, Any]]:
    """Parse caller-supplied expected output into a list of row dicts"""
    if expected is None or expected == "" or expected == []:
        return []

    if isinstance(expected, (str, bytes)):
        try:
            expected = json.loads(expected)
        except ValueError:
            raise ExpectedOutputError("Expected output must be valid JSON")

    if not isinstance(expected, list):
        raise ExpectedOutputError("Expected output must be an array")

    for row in expected:
        if not isinstance(row, dict):
            raise ExpectedOutputError("Expected output rows must be objects")

    return expected


def normalize_expected(expected: Any) -> List[Dict[str, Any]]:
    """Normalize expected output to match engine-normalized format"""
    return normalize_result(parse_expected(expected))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is b

    if _is_number(a) and _is_number(b):
        return a == b or abs(a - b) < NUMERIC_TOLERANCE

    if isinstance(a, bool) or isinstance(b, bool):
        # True must not match 1
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    return a == b


def _rows_equal(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    if a.keys() != b.keys():
        return False
    return all(values_equal(a[key], b[key]) for key in a)
