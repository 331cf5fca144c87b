import os
import sys
import tempfile
import argparse
import logging
from typing import Any, Dict, List

from .config import Config
from .sqlite_sandbox import SqliteSandbox

logger = logging.getLogger(__name__)


def load_seed_file(path: str) -> str:
    """Read a seed script from disk"""
    with open(path, 'r', encoding='utf-8') as f:
        seed_sql = f.read()
    logger.info(f"Loaded seed script from {path} ({len(seed_sql)} characters)")
    return seed_sql


def check_seed(seed_sql: str, scratch_dir: str = None) -> List[Dict[str, Any]]:
    """
    Run a seed script in a throwaway sandbox and describe the result.
    Raises whatever the seed script raises.
    """
    if scratch_dir is None:
        with tempfile.TemporaryDirectory(prefix="sqljudge-seed-") as tmp_dir:
            return check_seed(seed_sql, tmp_dir)

    with SqliteSandbox(question_id="seed_check", seed_sql=seed_sql, scratch_dir=scratch_dir) as sandbox:
        return sandbox.get_table_info()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check that a seed script loads into a sandbox.")
    parser.add_argument(
        "path",
        nargs="?",
        default=Config.BASE_SEED_PATH,
        help="Seed script to check (defaults to the configured baseline seed)."
    )
    args = parser.parse_args(argv)

    if not os.path.exists(args.path):
        print(f"Error: Seed file not found at {args.path}")
        return 1

    try:
        tables = check_seed(load_seed_file(args.path))
    except Exception as e:
        print(f"Seed script failed: {e}")
        return 1

    for table in tables:
        columns = ", ".join(f"{c['name']} {c['type']}" for c in table["columns"])
        print(f"{table['name']} ({columns}): {len(table['rows'])} rows")
    print(f"Seed script OK: {len(tables)} tables")
    return 0


if __name__ == "__main__":
    sys.exit(main())
