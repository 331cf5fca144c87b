"""
Result Normalization
====================
Turns raw query rows into a canonical form so that two result sets that differ
only in column naming, column order, row order or float noise compare equal.
"""

import re
from functools import cmp_to_key
from typing import Any, Dict, List

FLOAT_PRECISION = 6

_WHITESPACE_RE = re.compile(r'\s+')
_NON_WORD_RE = re.compile(r'[^\w]')


def normalize_result(rows: Any) -> List[Dict[str, Any]]:
    """
    Normalize query output into a deterministic format.

    Args:
        rows: List of row dicts as returned by a sandbox

    Returns:
        New list of rows with canonical column names in alphabetical order,
        canonical values, and a deterministic row order
    """
    if not isinstance(rows, list) or not rows:
        return []

    normalized_rows = [_normalize_row(row) for row in rows]
    normalized_rows.sort(key=cmp_to_key(_compare_rows))
    return normalized_rows


def normalize_column_name(name: Any) -> str:
    name = _WHITESPACE_RE.sub('_', str(name).strip().lower())
    return _NON_WORD_RE.sub('', name)


def normalize_value(value: Any) -> Any:
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, float):
        if value.is_integer():
            return value
        return round(value, FLOAT_PRECISION)

    if isinstance(value, str):
        return value.strip()

    return value


def _normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    renamed = {}
    for key, value in row.items():
        renamed[normalize_column_name(key)] = normalize_value(value)
    return {key: renamed[key] for key in sorted(renamed)}


def _kind(value: Any) -> int:
    # Rank used only when two values of unrelated types meet
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return 0
    if isinstance(value, str):
        return 1
    if isinstance(value, (bytes, bytearray)):
        return 2
    return 3


def _compare_values(a: Any, b: Any) -> int:
    kind_a, kind_b = _kind(a), _kind(b)
    if kind_a != kind_b:
        return -1 if kind_a < kind_b else 1

    try:
        if a < b:
            return -1
        if b < a:
            return 1
        return 0
    except TypeError:
        text_a, text_b = str(a), str(b)
        if text_a == text_b:
            return 0
        return -1 if text_a < text_b else 1


def _compare_rows(a: Dict[str, Any], b: Dict[str, Any]) -> int:
    for key in sorted(set(a) | set(b)):
        a_val = a.get(key)
        b_val = b.get(key)

        if a_val is None and b_val is None:
            continue
        if a_val is None:
            return -1
        if b_val is None:
            return 1

        order = _compare_values(a_val, b_val)
        if order:
            return order

    return 0
