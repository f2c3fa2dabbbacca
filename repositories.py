"""
Repository layer for database operations
Generic CRUD over any validated warehouse table, records as JSON-shaped dicts
"""

import logging
from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from database import ColumnInfo, DatabaseConnection, rows_affected
from query import QueryBuilder, TableValidator, filter_record
from query.builder import is_scalar
from utils.error_messages import is_unique_violation

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class GatewayError(Exception):
    """Base class for errors the dispatcher maps to a response code"""


class DuplicateIdError(GatewayError):
    def __init__(self, message: str = "id is duplicate"):
        super().__init__(message)


class MissingAttributesError(GatewayError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Missing required attribute: {detail}")


class BulkInsertError(GatewayError):
    """A database failure aborted a bulk insert; nothing from the batch was kept"""


class RecordNotFoundError(GatewayError):
    pass


class InvalidTableError(GatewayError, ValueError):
    def __init__(self, table_name: Optional[str]):
        self.table_name = table_name
        super().__init__(f"Invalid table name: {table_name}")


# ============================================================================
# Column cache
# ============================================================================

class ColumnCache:
    """
    Physical table -> {lower-cased column name: ColumnInfo}.

    Filled lazily from the live schema on first use of a table. Call
    invalidate() after a schema change; nothing expires on its own.
    """

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self._columns: Dict[str, Dict[str, ColumnInfo]] = {}

    async def get(self, table: str) -> Dict[str, ColumnInfo]:
        columns = self._columns.get(table)
        if columns is None:
            described = await self.db.describe_table(table)
            columns = {column.name.lower(): column for column in described}
            self._columns[table] = columns
            logger.debug(f"Cached {len(columns)} columns for {table}")
        return columns

    async def column_types(self, table: str) -> Dict[str, Optional[str]]:
        return {column.name: column.type_name for column in (await self.get(table)).values()}

    async def physical_name(self, table: str, column: str) -> str:
        """Physical spelling of ``column``, or the name itself when unknown"""
        info = (await self.get(table)).get(column.lower())
        return info.name if info else column

    def invalidate(self, table: Optional[str] = None):
        if table is None:
            self._columns.clear()
        else:
            self._columns.pop(table, None)


# ============================================================================
# Record repository
# ============================================================================

def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_json_value(value: Any) -> Any:
    """Timestamps and dates become text; everything else stays JSON-native where possible"""
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def row_to_dict(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert a database row to an ordered column -> value dict"""
    return {key: _to_json_value(value) for key, value in row.items()}


class RecordRepository:
    """
    CRUD over any table the TableValidator accepts.

    Table arguments may be aliases ("Area") or registered physical names.

    Error contract:
    - single insert/update/lookup: database errors are logged and become
      False / None
    - bulk insert and the multi-step helpers (upsert, insert_if_absent,
      update_by_keys): errors propagate so the caller's transaction rolls back
    """

    def __init__(
        self,
        db: DatabaseConnection,
        validator: TableValidator,
        columns: Optional[ColumnCache] = None,
        builder: Optional[QueryBuilder] = None,
    ):
        self.db = db
        self.validator = validator
        self.columns = columns or ColumnCache(db)
        self.builder = builder or QueryBuilder()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def resolve_table(self, table_name: Optional[str]) -> Optional[str]:
        """Physical table for a valid name, None otherwise"""
        return self.validator.resolve_valid(table_name)

    def require_table(self, table_name: Optional[str]) -> str:
        table = self.resolve_table(table_name)
        if table is None:
            raise InvalidTableError(table_name)
        return table

    async def _to_physical(self, table: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Rename known fields to their physical column spelling; unknown fields pass through"""
        columns = await self.columns.get(table)
        physical: Dict[str, Any] = {}
        for key, value in record.items():
            info = columns.get(key.lower())
            physical[info.name if info else key] = value
        return physical

    async def _key_map(self, table: str, keys: Mapping[str, Any]) -> Dict[str, Any]:
        return {await self.columns.physical_name(table, column): value for column, value in keys.items()}

    async def exists_by_keys(self, table: str, keys: Mapping[str, Any]) -> bool:
        """COUNT(*) existence check; errors propagate"""
        sql, params = self.builder.count_by_keys(table, await self._key_map(table, keys))
        count = await self.db.fetchval(sql, *params)
        return bool(count)

    async def record_exists(self, table_name: str, record_id: Any) -> bool:
        """True if a row with this id exists. Invalid tables and database errors count as absent."""
        table = self.resolve_table(table_name)
        if table is None:
            return False
        try:
            return await self.exists_by_keys(table, {"id": record_id})
        except Exception as e:
            logger.error(f"Existence check failed for {table} id={record_id}: {e}")
            return False

    async def _check_insertable(self, table: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Duplicate and completeness checks shared by insert and bulk_insert.

        Every column of the table must be present, non-null and non-blank.
        Returns the record keyed by physical column names.
        """
        by_lower = {key.lower(): value for key, value in record.items()}
        record_id = by_lower.get("id")
        if record_id is not None and await self.exists_by_keys(table, {"id": record_id}):
            raise DuplicateIdError()

        for column in (await self.columns.get(table)).values():
            if column.name.lower() not in by_lower or _is_missing(by_lower[column.name.lower()]):
                raise MissingAttributesError(f"attribute is missed: {column.name}")

        return await self._to_physical(table, record)

    # ------------------------------------------------------------------
    # insert
    # ------------------------------------------------------------------

    async def insert(self, table_name: str, record: Mapping[str, Any]) -> bool:
        """
        Insert one complete record.

        Raises:
            DuplicateIdError: id already present (pre-check or unique violation)
            MissingAttributesError: a column is absent, null or blank

        Returns:
            True on success, False for an invalid table or a database error
        """
        table = self.resolve_table(table_name)
        if table is None:
            logger.error(f"Invalid table name: {table_name}")
            return False

        sql, params = None, None
        try:
            data = await self._check_insertable(table, record)
            sql, params = self.builder.insert(table, data, await self.columns.column_types(table))
            status = await self.db.execute(sql, *params)
            logger.info(f"✅ Inserted record into {table}")
            return rows_affected(status) > 0
        except (DuplicateIdError, MissingAttributesError):
            raise
        except Exception as e:
            if is_unique_violation(e):
                raise DuplicateIdError() from e
            logger.error(f"Insert into {table} failed: {e} | SQL: {sql} | params: {params}")
            return False

    async def bulk_insert(self, table_name: str, records: Sequence[Mapping[str, Any]]) -> bool:
        """
        Insert every record or none of them.

        Each record passes the same checks as insert(). The first failure
        propagates and rolls back the whole batch.

        Raises:
            DuplicateIdError, MissingAttributesError, BulkInsertError
        """
        table = self.resolve_table(table_name)
        if table is None:
            logger.error(f"Invalid table name: {table_name}")
            return False

        inserted = 0
        async with self.db.transaction():
            for record in records:
                sql, params = None, None
                try:
                    data = await self._check_insertable(table, record)
                    sql, params = self.builder.insert(table, data, await self.columns.column_types(table))
                    await self.db.execute(sql, *params)
                    inserted += 1
                except (DuplicateIdError, MissingAttributesError):
                    raise
                except Exception as e:
                    if is_unique_violation(e):
                        raise DuplicateIdError() from e
                    logger.error(f"Bulk insert into {table} failed: {e} | SQL: {sql} | params: {params}")
                    raise BulkInsertError(f"Bulk insert failed for a record: {e}") from e

        logger.info(f"✅ Bulk inserted {inserted} records into {table}")
        return inserted == len(records)

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------

    async def update(self, table_name: str, record_id: Any, record: Mapping[str, Any]) -> bool:
        """
        Partial update of an existing row: only supplied fields change.

        Returns False for an invalid table, an unknown id, nothing to set,
        or a database error.
        """
        table = self.resolve_table(table_name)
        if table is None:
            logger.error(f"Invalid table name: {table_name}")
            return False

        sql, params = None, None
        try:
            if not await self.exists_by_keys(table, {"id": record_id}):
                logger.warning(f"Record {record_id} not found in {table}")
                return False

            data = await self._to_physical(table, record)
            keys = await self._key_map(table, {"id": record_id})
            built = self.builder.update(table, keys, data, await self.columns.column_types(table))
            if built is None:
                logger.warning(f"No fields to update for {table} id={record_id}")
                return False

            sql, params = built
            status = await self.db.execute(sql, *params)
            return rows_affected(status) > 0
        except Exception as e:
            logger.error(f"Update of {table} id={record_id} failed: {e} | SQL: {sql} | params: {params}")
            return False

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    async def lookup_by_id(self, table_name: str, record_id: Any) -> Optional[Dict[str, Any]]:
        table = self.resolve_table(table_name)
        if table is None:
            logger.error(f"Invalid table name: {table_name}")
            return None

        try:
            id_column = await self.columns.physical_name(table, "id")
            sql, params = self.builder.select_by_id(table, record_id, id_column)
            row = await self.db.fetchrow(sql, *params)
        except Exception as e:
            logger.error(f"Lookup of {table} id={record_id} failed: {e}")
            return None

        if row is None:
            logger.info(f"Record {record_id} not found in {table}")
            return None
        return row_to_dict(row)

    async def lookup_by_criteria(
        self, table_name: str, criteria: Optional[Mapping[str, Any]]
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Rows matching every criterion (AND-joined equality).

        Returns None when nothing matches, the table is invalid, or the query
        fails. An empty result is never returned as an empty list.
        """
        table = self.resolve_table(table_name)
        if table is None:
            logger.error(f"Invalid table name: {table_name}")
            return None

        sql, params = None, None
        try:
            scalar_criteria = {k: v for k, v in (criteria or {}).items() if is_scalar(v)}
            data = await self._to_physical(table, scalar_criteria)
            sql, params = self.builder.select(table, data, await self.columns.column_types(table))
            rows = await self.db.fetch(sql, *params)
        except Exception as e:
            logger.error(f"Lookup on {table} failed: {e} | SQL: {sql} | params: {params}")
            return None

        if not rows:
            return None
        return [row_to_dict(row) for row in rows]

    async def lookup_all(self, table_name: str) -> Optional[List[Dict[str, Any]]]:
        return await self.lookup_by_criteria(table_name, None)

    # ------------------------------------------------------------------
    # multi-step helpers (errors propagate)
    # ------------------------------------------------------------------

    async def upsert(
        self,
        table_name: str,
        record: Mapping[str, Any],
        key_columns: Iterable[str] = ("id",),
        filter_columns: bool = True,
    ) -> str:
        """
        Insert or update by key, choosing with an existence check.

        With ``filter_columns`` only fields naming a real column are written
        and nested values are dropped.

        Returns "inserted", "updated" or "unchanged".
        """
        table = self.require_table(table_name)
        columns = await self.columns.get(table)
        data = filter_record(record, columns) if filter_columns else await self._to_physical(table, record)

        by_lower = {key.lower(): key for key in data}
        keys = {}
        for key_column in key_columns:
            physical = by_lower.get(key_column.lower())
            if physical is None or data[physical] is None:
                raise ValueError(f"Missing key {key_column} for {table}")
            keys[physical] = data[physical]

        column_types = await self.columns.column_types(table)
        if await self.exists_by_keys(table, keys):
            built = self.builder.update(table, keys, data, column_types)
            if built is None:
                return "unchanged"
            sql, params = built
            await self.db.execute(sql, *params)
            return "updated"

        sql, params = self.builder.insert(table, data, column_types)
        await self.db.execute(sql, *params)
        return "inserted"

    async def insert_if_absent(
        self,
        table_name: str,
        record: Mapping[str, Any],
        keys: Mapping[str, Any],
    ) -> bool:
        """
        Column-filtered insert that skips rows already present.

        The key lookup gives the fast path; ON CONFLICT DO NOTHING covers a
        concurrent insert of the same key.

        Returns True when a row was written.
        """
        table = self.require_table(table_name)
        if await self.exists_by_keys(table, keys):
            logger.debug(f"Skipping existing record {dict(keys)} in {table}")
            return False

        data = filter_record(record, await self.columns.get(table))
        if not data:
            return False

        sql, params = self.builder.insert_if_absent(table, data, await self.columns.column_types(table))
        status = await self.db.execute(sql, *params)
        written = rows_affected(status) > 0
        if not written:
            logger.info(f"Duplicate key for table {table}: {dict(keys)}")
        return written

    async def update_by_keys(
        self,
        table_name: str,
        keys: Mapping[str, Any],
        record: Mapping[str, Any],
        touch_columns: Iterable[str] = (),
    ) -> int:
        """
        Column-filtered partial update keyed by ``keys``.

        Returns the number of rows changed (0 when there is nothing to set).
        """
        table = self.require_table(table_name)
        data = filter_record(record, await self.columns.get(table))
        touch = [await self.columns.physical_name(table, column) for column in touch_columns]
        built = self.builder.update(
            table, await self._key_map(table, keys), data, await self.columns.column_types(table), touch
        )
        if built is None:
            return 0
        sql, params = built
        status = await self.db.execute(sql, *params)
        return rows_affected(status)
