"""
Error Message Utilities

Classifies database errors and turns them into messages that are safe to
return to a channel: constraint names are explained, SQL text never leaks.
"""

import re
from typing import Optional

UNIQUE_VIOLATION = "23505"
NOT_NULL_VIOLATION = "23502"
FOREIGN_KEY_VIOLATION = "23503"

# Human-readable constraint explanations
CONSTRAINT_MESSAGES = {
    "beneficiary_pkey": "A beneficiary with this id already exists.",
    "contact_pkey": "A contact with this id already exists.",
    "employment_pkey": "An employment with this id already exists.",
}

_SQL_FRAGMENT_RE = re.compile(
    r"\b(SELECT|INSERT\s+INTO|UPDATE|DELETE\s+FROM)\b.*",
    re.IGNORECASE | re.DOTALL,
)


def get_sqlstate(error: BaseException) -> Optional[str]:
    """SQLSTATE of an asyncpg error (or anything exposing ``sqlstate``)"""
    return getattr(error, "sqlstate", None)


def is_unique_violation(error: BaseException) -> bool:
    """True when the database rejected a row because its key already exists"""
    if get_sqlstate(error) == UNIQUE_VIOLATION:
        return True
    return "duplicate key" in str(error).lower()


def enhance_error_message(error: BaseException) -> str:
    """
    Enhance database error messages with human-readable explanations.

    Handles:
    - Unique violations (explains which record already exists)
    - Not-null violations (names the missing column)
    - Foreign key violations (explains the relationship)

    Returns the enhanced error message string.
    """
    error_str = str(error)

    unique_match = re.search(r'duplicate key value violates unique constraint "(\w+)"', error_str)
    if unique_match:
        constraint_name = unique_match.group(1)
        explanation = CONSTRAINT_MESSAGES.get(constraint_name)
        if explanation:
            return f"Duplicate entry ({constraint_name}): {explanation}"
        return f"Duplicate entry: A record with this value already exists ({constraint_name})."

    null_match = re.search(r'null value in column "(\w+)".* violates not-null constraint', error_str)
    if null_match:
        column_name = null_match.group(1)
        return f"Required field missing: '{column_name}' cannot be null."

    fk_match = re.search(r'violates foreign key constraint "(\w+)"', error_str)
    if fk_match:
        constraint_name = fk_match.group(1)
        return (
            f"Foreign key violation ({constraint_name}): "
            f"The referenced record does not exist."
        )

    return error_str


def public_error_message(error: BaseException) -> str:
    """
    Message safe to put in a response.

    Known constraint errors get their enhanced text; anything else is cut at
    the first SQL statement it quotes.
    """
    message = enhance_error_message(error)
    message = _SQL_FRAGMENT_RE.sub("", message).strip()
    if not message:
        return error.__class__.__name__
    return message
