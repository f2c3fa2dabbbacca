"""
Query Builder

Builds INSERT / UPDATE / SELECT statements for JSON-shaped records.
All values are passed as asyncpg positional parameters ($1, $2, ...); values are never interpolated.
Only identifiers reach the SQL text: the table name (already resolved by
TableValidator) and double-quoted column names.

Value encoding:
- None -> NULL
- bool -> 'true' / 'false'
- anything else -> str(value)

Values are always bound as text. When the column type is known the placeholder
carries a cast ($1::text::int4) so PostgreSQL converts the value itself.
"""

import logging
import re
from typing import Any, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

# Types that take a text parameter without a cast
_TEXT_TYPES = {"text", "varchar", "bpchar", "char", "name"}

_TYPE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

SqlWithParams = tuple[str, list]


def quote_ident(name: str) -> str:
    """Quote a column identifier, doubling embedded quotes"""
    return '"' + name.replace('"', '""') + '"'


def encode_value(value: Any) -> Optional[str]:
    """Encode a JSON scalar as a text parameter"""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def is_scalar(value: Any) -> bool:
    return not isinstance(value, (dict, list, tuple, set))


def filter_record(
    record: Mapping[str, Any],
    columns: Mapping[str, Any],
) -> dict[str, Any]:
    """
    Keep only the fields that name a column of the table.

    Args:
        record: JSON object
        columns: lower-cased column name -> ColumnInfo (anything with .name)

    Returns:
        {physical column name: value} in payload order. Unknown fields and
        nested objects/arrays are dropped silently.
    """
    filtered: dict[str, Any] = {}
    for key, value in record.items():
        if not is_scalar(value):
            continue
        column = columns.get(key.lower())
        if column is None:
            continue
        filtered[column.name] = value
    return filtered


class QueryBuilder:
    """Builds parameterized SQL for a validated table name."""

    def placeholder(self, index: int, column: str, column_types: Optional[Mapping[str, Optional[str]]]) -> str:
        type_name = (column_types or {}).get(column)
        if not type_name or type_name in _TEXT_TYPES or not _TYPE_NAME_RE.match(type_name):
            return f"${index}"
        return f"${index}::text::{type_name}"

    def _key_conditions(self, keys: Mapping[str, Any], params: list) -> list[str]:
        """Key columns compare as text so ids of any type match their string form"""
        conditions = []
        for column, value in keys.items():
            params.append(encode_value(value))
            conditions.append(f"{quote_ident(column)}::text = ${len(params)}")
        return conditions

    def insert(
        self,
        table: str,
        record: Mapping[str, Any],
        column_types: Optional[Mapping[str, Optional[str]]] = None,
        if_absent: bool = False,
    ) -> SqlWithParams:
        """
        Build an INSERT for every field of ``record``.

        Returns (sql, params).
        """
        if not record:
            raise ValueError("Cannot build INSERT for an empty record")

        columns = []
        placeholders = []
        params: list = []
        for column, value in record.items():
            params.append(encode_value(value))
            columns.append(quote_ident(column))
            placeholders.append(self.placeholder(len(params), column, column_types))

        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(placeholders)})"
        if if_absent:
            sql += " ON CONFLICT DO NOTHING"
        return sql, params

    def insert_if_absent(
        self,
        table: str,
        record: Mapping[str, Any],
        column_types: Optional[Mapping[str, Optional[str]]] = None,
    ) -> SqlWithParams:
        """INSERT that leaves an existing row untouched"""
        return self.insert(table, record, column_types, if_absent=True)

    def update(
        self,
        table: str,
        keys: Mapping[str, Any],
        record: Mapping[str, Any],
        column_types: Optional[Mapping[str, Optional[str]]] = None,
        touch_columns: Iterable[str] = (),
    ) -> Optional[SqlWithParams]:
        """
        Build an UPDATE of the supplied fields, keyed by ``keys``.

        Key columns are never part of the SET list. ``touch_columns`` are set
        to CURRENT_TIMESTAMP.

        Returns (sql, params), or None when there is nothing to set.
        """
        if not keys:
            raise ValueError("UPDATE requires at least one key column")

        key_names = {column.lower() for column in keys}
        sets = []
        params: list = []
        for column, value in record.items():
            if column.lower() in key_names:
                continue
            params.append(encode_value(value))
            sets.append(f"{quote_ident(column)} = {self.placeholder(len(params), column, column_types)}")

        if not sets:
            return None

        for column in touch_columns:
            sets.append(f"{quote_ident(column)} = CURRENT_TIMESTAMP")

        conditions = self._key_conditions(keys, params)
        sql = f"UPDATE {table} SET {', '.join(sets)} WHERE {' AND '.join(conditions)}"
        return sql, params

    def select(
        self,
        table: str,
        criteria: Optional[Mapping[str, Any]] = None,
        column_types: Optional[Mapping[str, Optional[str]]] = None,
    ) -> SqlWithParams:
        """
        Build a SELECT with AND-joined equality predicates.
        Empty criteria selects every row. Always ordered by id.
        """
        params: list = []
        conditions = []
        for column, value in (criteria or {}).items():
            if value is None:
                conditions.append(f"{quote_ident(column)} IS NULL")
                continue
            params.append(encode_value(value))
            conditions.append(
                f"{quote_ident(column)} = {self.placeholder(len(params), column, column_types)}"
            )

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        sql = f"SELECT * FROM {table} {where_clause} ORDER BY id"
        return " ".join(sql.split()), params

    def select_by_id(self, table: str, record_id: Any, id_column: str = "id") -> SqlWithParams:
        params: list = []
        conditions = self._key_conditions({id_column: record_id}, params)
        return f"SELECT * FROM {table} WHERE {' AND '.join(conditions)}", params

    def count_by_keys(self, table: str, keys: Mapping[str, Any]) -> SqlWithParams:
        """SELECT COUNT(*) ... WHERE "id"::text = $1 [AND ...]"""
        params: list = []
        conditions = self._key_conditions(keys, params)
        return f"SELECT COUNT(*) FROM {table} WHERE {' AND '.join(conditions)}", params
