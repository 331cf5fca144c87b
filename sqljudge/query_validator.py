"""
Secure SQL Submission Validation
================================
Gates what untrusted SQL may reach a sandbox:
- Size and statement count limits
- Comment stripping with a literal-aware lexer
- Statement splitting that never breaks inside quoted text
- Leading-keyword allowlist per statement
- Denylist of engine escapes (attachment, pragmas, virtual tables, ...)
"""

import re
import logging
from typing import List, Optional, Tuple

from sqlparse import tokens
from sqlparse.lexer import tokenize

from .config import Config

logger = logging.getLogger(__name__)

NOT_ALLOWED_MESSAGE = "This SQL command is not allowed in the execution environment"


class SqlValidationError(ValueError):
    """Raised when a submission is rejected before execution"""
    pass


class SqlValidator:
    """Validator for untrusted multi-statement SQL submissions"""

    # Statements may only start with one of these keywords
    ALLOWED_STATEMENTS = frozenset({
        'SELECT', 'WITH', 'VALUES',
        'INSERT', 'REPLACE', 'UPDATE', 'DELETE',
        'CREATE', 'DROP', 'ALTER',
        'EXPLAIN',
    })

    # Matched against comment-stripped, lower-cased text
    BLOCKED_PATTERNS = [
        # File / database attachment
        re.compile(r'\battach\b'),
        re.compile(r'\bdetach\b'),

        # Engine configuration
        re.compile(r'\bpragma\b'),

        # Virtual tables can load modules
        re.compile(r'\bcreate\s+virtual\s+table\b'),

        # Recursive CTEs (unbounded work)
        re.compile(r'\bwith\s+recursive\b'),

        # File output and extension loading
        re.compile(r'\binto\s+outfile\b'),
        re.compile(r'\bcopy\b'),
        re.compile(r'\bvacuum\s+into\b'),
        re.compile(r'\bload_extension\s*\('),
        re.compile(r'\b(?:readfile|writefile)\s*\('),
    ]

    def __init__(self, max_length: int = 10000, max_statements: int = 20):
        self.max_length = max_length
        self.max_statements = max_statements

    def validate(self, sql) -> List[str]:
        """
        Validate a submission and split it into statements.

        Args:
            sql: Raw SQL text from the caller

        Returns:
            Ordered list of statement texts (comments removed, original case)

        Raises:
            SqlValidationError: if the submission must not run
        """
        if not sql or not isinstance(sql, str):
            raise SqlValidationError("Invalid SQL input")

        if len(sql) > self.max_length:
            raise SqlValidationError("SQL input is too large")

        statements = self.split_statements(sql)
        if not statements:
            raise SqlValidationError("Empty SQL statement")

        if len(statements) > self.max_statements:
            raise SqlValidationError("Too many SQL statements")

        normalized = "; ".join(statements).lower()
        for pattern in self.BLOCKED_PATTERNS:
            if pattern.search(normalized):
                logger.warning(f"Blocked SQL construct matched: {pattern.pattern}")
                raise SqlValidationError(NOT_ALLOWED_MESSAGE)

        for statement in statements:
            keyword = self._leading_keyword(statement)
            if keyword not in self.ALLOWED_STATEMENTS:
                logger.warning(f"Blocked statement type: {keyword}")
                raise SqlValidationError(NOT_ALLOWED_MESSAGE)

        return statements

    def split_statements(self, sql: str) -> List[str]:
        """Strip comments, collapse whitespace and split on top-level semicolons"""
        statements = []
        current: List[str] = []

        for ttype, value in self._clean_tokens(sql):
            if ttype in tokens.Punctuation and value == ';':
                statement = ''.join(current).strip()
                if statement:
                    statements.append(statement)
                current = []
            else:
                current.append(value)

        statement = ''.join(current).strip()
        if statement:
            statements.append(statement)

        return statements

    def _clean_tokens(self, sql: str) -> List[Tuple[object, str]]:
        """Lex the text, replacing comments and whitespace runs with one space"""
        cleaned = []
        last_was_space = False

        for ttype, value in tokenize(sql):
            if ttype in tokens.Comment or ttype in tokens.Whitespace:
                # Comments separate tokens just like whitespace does
                if not last_was_space:
                    cleaned.append((tokens.Whitespace, ' '))
                    last_was_space = True
                continue

            cleaned.append((ttype, value))
            last_was_space = False

        return cleaned

    def _leading_keyword(self, statement: str) -> Optional[str]:
        for ttype, value in tokenize(statement):
            if ttype in tokens.Whitespace or ttype in tokens.Comment:
                continue
            if ttype in tokens.Punctuation and value == '(':
                continue
            return value.upper()
        return None


# Global validator instance
sql_validator = SqlValidator(
    max_length=Config.MAX_SQL_LENGTH,
    max_statements=Config.MAX_STATEMENTS,
)


def validate_sql(sql, max_length: Optional[int] = None,
                 max_statements: Optional[int] = None) -> List[str]:
    """Validate a submission with the configured (or overridden) limits"""
    if max_length is None and max_statements is None:
        return sql_validator.validate(sql)

    validator = SqlValidator(
        max_length=max_length if max_length is not None else sql_validator.max_length,
        max_statements=max_statements if max_statements is not None else sql_validator.max_statements,
    )
    return validator.validate(sql)
