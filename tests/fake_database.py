"""
In-memory stand-in for DatabaseConnection

Understands exactly the statement shapes QueryBuilder and NominationService
emit, so repository and service tests run without a PostgreSQL server:

    SELECT COUNT(*) FROM t WHERE "k"::text = $1 [AND ...]
    SELECT * FROM t [WHERE ...] [ORDER BY id]
    INSERT INTO t ("a", "b") VALUES ($1, $2::text::int4) [ON CONFLICT DO NOTHING]
    UPDATE t SET "a" = $1, "u" = CURRENT_TIMESTAMP WHERE ...
    SELECT 1

WHERE terms: "c"::text = $n, "c" = $n[::text::type], "c" IS NULL,
LOWER("c") = LOWER($n::text), LOWER("c") <> LOWER($n::text).

Parameters are checked the way asyncpg checks them: one positional argument
per placeholder, each a scalar.

transaction() snapshots every table and restores the snapshot when the block
raises. Each table has a unique key (default: id).
"""

import copy
import re
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from database import ColumnInfo


class FakeDatabaseError(Exception):
    """Raised where PostgreSQL would raise"""

    def __init__(self, message: str, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


_INSERT_RE = re.compile(
    r'^INSERT INTO (\S+) \((.*?)\) VALUES \((.*)\)( ON CONFLICT DO NOTHING)?$', re.DOTALL
)
_UPDATE_RE = re.compile(r'^UPDATE (\S+) SET (.*?) WHERE (.*)$', re.DOTALL)
_COUNT_RE = re.compile(r'^SELECT COUNT\(\*\) FROM (\S+) WHERE (.*)$', re.DOTALL)
_SELECT_RE = re.compile(r'^SELECT \* FROM (\S+?)(?: WHERE (.*?))?(?: ORDER BY id)?$', re.DOTALL)
_DESCRIBE_RE = re.compile(r'^SELECT \* FROM (\S+) WHERE 1=0$')

_IDENT = r'"((?:[^"]|"")+)"'
_PARAM = r'\$(\d+)(?:::text::(\S+))?'
_TEXT_EQ_RE = re.compile(rf'^{_IDENT}::text = \$(\d+)$')
_IS_NULL_RE = re.compile(rf'^{_IDENT} IS NULL$')
_LOWER_RE = re.compile(rf'^LOWER\({_IDENT}\) (=|<>) LOWER\(\$(\d+)(?:::text)?\)$')
_EQ_RE = re.compile(rf'^{_IDENT} = {_PARAM}$')
_SET_RE = re.compile(rf'^{_IDENT} = (?:{_PARAM}|(CURRENT_TIMESTAMP))$')
_PLACEHOLDER_RE = re.compile(r'\$(\d+)')

_INT_TYPES = {"int2", "int4", "int8"}
_FLOAT_TYPES = {"float4", "float8", "numeric"}


def _unquote(name: str) -> str:
    return name.replace('""', '"')


def _as_text(value: Any) -> Optional[str]:
    """What value::text gives back"""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return str(value)


def _convert(value: Optional[str], type_name: Optional[str]) -> Any:
    """Coerce a text parameter the way a cast to ``type_name`` would"""
    if value is None:
        return None
    try:
        if type_name in _INT_TYPES:
            return int(value)
        if type_name in _FLOAT_TYPES:
            return float(value)
        if type_name == "bool":
            lowered = str(value).strip().lower()
            if lowered not in ("true", "false", "t", "f", "1", "0"):
                raise ValueError(value)
            return lowered in ("true", "t", "1")
        if type_name in ("timestamp", "timestamptz"):
            return datetime.fromisoformat(str(value).replace("T", " "))
        if type_name == "date":
            return date.fromisoformat(str(value))
    except ValueError as e:
        raise FakeDatabaseError(
            f'invalid input syntax for type {type_name}: "{value}"', sqlstate="22P02"
        ) from e
    return value


def _split_terms(clause: str, separator: str) -> List[str]:
    """Split on ``separator`` outside quoted identifiers"""
    terms, current, quoted, i = [], [], False, 0
    while i < len(clause):
        ch = clause[i]
        if ch == '"':
            quoted = not quoted
        if not quoted and clause.startswith(separator, i):
            terms.append("".join(current).strip())
            current = []
            i += len(separator)
            continue
        current.append(ch)
        i += 1
    terms.append("".join(current).strip())
    return [term for term in terms if term]


class FakeTable:
    def __init__(self, name: str, columns: Sequence[Tuple[str, str]], key: Sequence[str] = ("id",)):
        self.name = name
        self.columns = [ColumnInfo(column, type_name) for column, type_name in columns]
        self.key = tuple(key)
        self.rows: List[Dict[str, Any]] = []

    def column(self, name: str) -> ColumnInfo:
        for column in self.columns:
            if column.name == name:
                return column
        raise FakeDatabaseError(
            f'column "{name}" of relation "{self.name}" does not exist', sqlstate="42703"
        )


class FakeDatabase:
    """DatabaseConnection surface backed by dicts"""

    def __init__(self):
        self.tables: Dict[str, FakeTable] = {}
        self.statements: List[Tuple[str, tuple]] = []
        self.fail_on: Optional[str] = None
        self.transactions = 0
        self.rollbacks = 0
        self.disconnects = 0

    # ------------------------------------------------------------------
    # setup helpers
    # ------------------------------------------------------------------

    def create_table(
        self, name: str, columns: Sequence[Tuple[str, str]], key: Sequence[str] = ("id",)
    ) -> FakeTable:
        table = FakeTable(name, columns, key)
        self.tables[name] = table
        return table

    def add_rows(self, name: str, rows: Iterable[Dict[str, Any]]):
        table = self._table(name)
        for row in rows:
            full = {column.name: None for column in table.columns}
            full.update(row)
            table.rows.append(full)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self._table(name).rows

    async def seed(self, name: str, rows: Iterable[Dict[str, Any]]):
        self.add_rows(name, rows)

    async def table_rows(self, name: str) -> List[Dict[str, Any]]:
        """Copies of the rows, ordered by id like the live helper"""
        return [dict(row) for row in sorted(self._table(name).rows, key=lambda row: _as_text(row.get("id")) or "")]

    def _table(self, name: str) -> FakeTable:
        table = self.tables.get(name)
        if table is None:
            raise FakeDatabaseError(f'relation "{name}" does not exist', sqlstate="42P01")
        return table

    # ------------------------------------------------------------------
    # DatabaseConnection surface
    # ------------------------------------------------------------------

    async def connect(self):
        pass

    async def disconnect(self):
        self.disconnects += 1

    async def check_connection(self) -> bool:
        return True

    async def get_pool_stats(self) -> Dict[str, Any]:
        return {"status": "connected", "size": 1, "freesize": 1}

    async def describe_table(self, table_name: str) -> List[ColumnInfo]:
        return list(self._table(table_name).columns)

    @asynccontextmanager
    async def transaction(self):
        snapshot = {name: copy.deepcopy(table.rows) for name, table in self.tables.items()}
        self.transactions += 1
        try:
            yield self
        except BaseException:
            for name, rows in snapshot.items():
                if name in self.tables:
                    self.tables[name].rows = rows
            self.rollbacks += 1
            raise

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        self._record(query, args)
        match = _INSERT_RE.match(query)
        if match:
            return self._insert(match, args)
        match = _UPDATE_RE.match(query)
        if match:
            return self._update(match, args)
        raise FakeDatabaseError(f"Unsupported statement: {query}")

    async def fetch(self, query: str, *args, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        self._record(query, args)
        return self._select(query, args)

    async def fetchrow(self, query: str, *args, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        self._record(query, args)
        rows = self._select(query, args)
        return rows[0] if rows else None

    async def fetchval(self, query: str, *args, column: int = 0, timeout: Optional[float] = None) -> Any:
        self._record(query, args)
        if query.strip() == "SELECT 1":
            return 1
        match = _COUNT_RE.match(query)
        if match:
            table = self._table(match.group(1))
            return len(self._matching(table, match.group(2), args))
        rows = self._select(query, args)
        return list(rows[0].values())[column] if rows else None

    # ------------------------------------------------------------------
    # statement evaluation
    # ------------------------------------------------------------------

    def _record(self, query: str, args: tuple):
        self.statements.append((query, args))
        expected = max((int(n) for n in _PLACEHOLDER_RE.findall(query)), default=0)
        if len(args) != expected:
            raise FakeDatabaseError(
                f"the server expects {expected} arguments for this query, {len(args)} were passed"
            )
        for position, arg in enumerate(args, 1):
            if isinstance(arg, (list, tuple, dict, set)):
                raise FakeDatabaseError(
                    f"invalid input for query argument ${position}: {arg!r} (expected str, got {type(arg).__name__})"
                )
        if self.fail_on and self.fail_on in query:
            raise FakeDatabaseError(f"Injected failure for: {self.fail_on}")

    def _param(self, args: tuple, index: str) -> Any:
        return args[int(index) - 1]

    def _bound(self, table: FakeTable, column: str, args: tuple, index: str, cast: Optional[str]) -> Any:
        type_name = table.column(column).type_name
        return _convert(self._param(args, index), cast or type_name)

    def _matches(self, table: FakeTable, row: Dict[str, Any], term: str, args: tuple) -> bool:
        match = _TEXT_EQ_RE.match(term)
        if match:
            column = _unquote(match.group(1))
            table.column(column)
            return _as_text(row.get(column)) == self._param(args, match.group(2))

        match = _IS_NULL_RE.match(term)
        if match:
            column = _unquote(match.group(1))
            table.column(column)
            return row.get(column) is None

        match = _LOWER_RE.match(term)
        if match:
            column = _unquote(match.group(1))
            table.column(column)
            value, param = row.get(column), self._param(args, match.group(3))
            if value is None or param is None:
                return False
            equal = str(value).lower() == str(param).lower()
            return equal if match.group(2) == "=" else not equal

        match = _EQ_RE.match(term)
        if match:
            column = _unquote(match.group(1))
            expected = self._bound(table, column, args, match.group(2), match.group(3))
            value = row.get(column)
            return value is not None and expected is not None and value == expected

        raise FakeDatabaseError(f"Unsupported WHERE term: {term}")

    def _matching(self, table: FakeTable, where: Optional[str], args: tuple) -> List[Dict[str, Any]]:
        terms = _split_terms(where, " AND ") if where else []
        return [row for row in table.rows if all(self._matches(table, row, term, args) for term in terms)]

    def _select(self, query: str, args: tuple) -> List[Dict[str, Any]]:
        match = _DESCRIBE_RE.match(query)
        if match:
            self._table(match.group(1))
            return []
        match = _SELECT_RE.match(query)
        if not match:
            raise FakeDatabaseError(f"Unsupported query: {query}")
        table = self._table(match.group(1))
        rows = self._matching(table, match.group(2), args)
        if query.endswith("ORDER BY id"):
            rows = sorted(rows, key=lambda row: (row.get("id") is None, "" if row.get("id") is None else row.get("id")))
        return [dict(row) for row in rows]

    def _key_of(self, table: FakeTable, row: Dict[str, Any]) -> tuple:
        return tuple(_as_text(row.get(column)) for column in table.key)

    def _insert(self, match, args: tuple) -> str:
        table = self._table(match.group(1))
        columns = [_unquote(name) for name in re.findall(_IDENT, match.group(2))]
        values = _split_terms(match.group(3), ", ")
        if len(columns) != len(values):
            raise FakeDatabaseError("INSERT has more target columns than expressions")

        row = {column.name: None for column in table.columns}
        for column, expression in zip(columns, values):
            param = re.match(rf'^{_PARAM}$', expression)
            if not param:
                raise FakeDatabaseError(f"Unsupported VALUES expression: {expression}")
            row[column] = self._bound(table, column, args, param.group(1), param.group(2))

        key = self._key_of(table, row)
        if any(self._key_of(table, existing) == key for existing in table.rows):
            if match.group(4):
                return "INSERT 0 0"
            raise FakeDatabaseError(
                f'duplicate key value violates unique constraint "{table.name.rsplit(".", 1)[-1]}_pkey"',
                sqlstate="23505",
            )
        table.rows.append(row)
        return "INSERT 0 1"

    def _update(self, match, args: tuple) -> str:
        table = self._table(match.group(1))
        changes = {}
        for assignment in _split_terms(match.group(2), ", "):
            parsed = _SET_RE.match(assignment)
            if not parsed:
                raise FakeDatabaseError(f"Unsupported SET expression: {assignment}")
            column = _unquote(parsed.group(1))
            if parsed.group(4):
                table.column(column)
                changes[column] = datetime.now()
            else:
                changes[column] = self._bound(table, column, args, parsed.group(2), parsed.group(3))

        rows = self._matching(table, match.group(3), args)
        for row in rows:
            row.update(changes)
        return f"UPDATE {len(rows)}"
