"""
Implements functions rewriting MySQL/MariaDB statements so that the server
itself aborts them once the current deadline passes. This is done to bound
ORM queries whose connection offers no asynchronous cancellation.
"""

from __future__ import annotations

import re

# Optimizer hints must immediately follow the statement keyword, and a query
# block only reads the first hint comment
query_start_re = re.compile(
    r"""
        ^
        \s*
        (?P<keyword>SELECT)\b
        \s*
        (/\*\+(?P<hints>.*?)\*/)?
        \s*
    """,
    re.VERBOSE | re.IGNORECASE | re.DOTALL,
)

max_execution_time_re = re.compile(r"\bMAX_EXECUTION_TIME\s*\(", re.IGNORECASE)

dml_re = re.compile(r"^\s*(SELECT|INSERT|UPDATE|DELETE|REPLACE|WITH)\b", re.IGNORECASE)


def add_max_execution_time(sql: str, timeout_ms: int) -> str:
    """
    Add the MAX_EXECUTION_TIME optimizer hint to a SELECT, merging it into
    any existing hint comment. An existing MAX_EXECUTION_TIME is kept as-is,
    and statements other than SELECT are returned untouched since MySQL
    ignores the hint on them.
    """
    match = query_start_re.match(sql)
    if not match:
        return sql

    hints = match.group("hints")
    if hints is not None and max_execution_time_re.search(hints):
        return sql

    # MAX_EXECUTION_TIME(0) means no limit at all
    hint = f"MAX_EXECUTION_TIME({max(1, int(timeout_ms))})"
    if hints is not None and hints.strip():
        hint = f"{hints.strip()} {hint}"

    tokens = [match.group("keyword"), f"/*+ {hint} */", sql[match.end() :]]
    return " ".join(tokens)


def add_max_statement_time(sql: str, timeout_ms: int) -> str:
    """
    MariaDB's equivalent of MAX_EXECUTION_TIME, in seconds, which also covers
    data modifying statements. Anything else, such as transaction control, is
    returned untouched.
    """
    if not dml_re.match(sql):
        return sql

    seconds = max(1, int(timeout_ms)) / 1000
    return f"SET STATEMENT max_statement_time={seconds:.3f} FOR {sql.lstrip()}"
