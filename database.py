"""
Database connection management and utilities
Async PostgreSQL operations using asyncpg
"""

import asyncpg
import logging
from contextvars import ContextVar
from typing import Optional, List, Dict, Any, NamedTuple
from contextlib import asynccontextmanager

from config import DatabaseConfig

logger = logging.getLogger(__name__)

# Connection bound to the transaction running in the current task, if any
_transaction_conn: ContextVar[Optional[asyncpg.Connection]] = ContextVar(
    "_transaction_conn", default=None
)


class ColumnInfo(NamedTuple):
    """Physical column name and its PostgreSQL type name (e.g. int4, varchar)"""
    name: str
    type_name: Optional[str] = None


def rows_affected(status: str) -> int:
    """Extract the row count from a command status such as 'UPDATE 3' or 'INSERT 0 1'"""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class DatabaseConnection:
    """
    Manages PostgreSQL connection pool and provides database operations
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Initialize connection pool"""
        if self.pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            # asyncpg expects: True (require SSL), False (disable SSL), or 'prefer'
            if self.config.ssl_mode == 'require':
                ssl_setting = True
            elif self.config.ssl_mode == 'disable':
                ssl_setting = False
            else:
                ssl_setting = 'prefer'

            self.pool = await asyncpg.create_pool(
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                user=self.config.user,
                password=self.config.password,
                min_size=self.config.min_pool_size,
                max_size=self.config.max_pool_size,
                command_timeout=self.config.command_timeout,
                ssl=ssl_setting,
            )

            logger.info(f"✅ Connected to PostgreSQL at {self.config.host}:{self.config.port}")

        except Exception as e:
            logger.error(f"❌ Failed to connect to database: {e}")
            raise

    async def disconnect(self):
        """Close connection pool"""
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    @asynccontextmanager
    async def acquire(self):
        """
        Acquire a connection with automatic error handling.

        Inside transaction() the transaction's connection is reused, so
        every statement of a multi-step write shares one transaction.
        Otherwise a pooled connection is borrowed; when the pool is
        exhausted the wait is bounded by config.connection_timeout and a
        timeout surfaces as an error (it is not retried).

        Usage:
            async with db.acquire() as conn:
                result = await conn.fetch("SELECT * FROM ...")
        """
        bound = _transaction_conn.get()
        if bound is not None:
            yield bound
            return

        if self.pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")

        async with self.pool.acquire(timeout=self.config.connection_timeout) as connection:
            try:
                yield connection
            except Exception as e:
                logger.error(f"Error during database operation: {e}", exc_info=True)
                raise

    async def execute(
        self,
        query: str,
        *args,
        timeout: Optional[float] = None
    ) -> str:
        """
        Execute a query without returning results

        Returns:
            Status string (e.g., "INSERT 0 1")
        """
        async with self.acquire() as conn:
            return await conn.execute(query, *args, timeout=timeout)

    async def fetch(
        self,
        query: str,
        *args,
        timeout: Optional[float] = None
    ) -> List[asyncpg.Record]:
        """Fetch multiple rows"""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args, timeout=timeout)

    async def fetchrow(
        self,
        query: str,
        *args,
        timeout: Optional[float] = None
    ) -> Optional[asyncpg.Record]:
        """Fetch a single row"""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args, timeout=timeout)

    async def fetchval(
        self,
        query: str,
        *args,
        column: int = 0,
        timeout: Optional[float] = None
    ) -> Any:
        """Fetch a single value"""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column, timeout=timeout)

    async def describe_table(self, table_name: str) -> List[ColumnInfo]:
        """
        Return the columns of a table in physical order.

        Prepares ``SELECT * FROM <table> WHERE 1=0`` and reads the result
        description, so no rows are scanned. The table name must already be
        validated by the caller.
        """
        async with self.acquire() as conn:
            stmt = await conn.prepare(f"SELECT * FROM {table_name} WHERE 1=0")
            columns = []
            for attr in stmt.get_attributes():
                type_name = attr.type.name
                # Enums and domains outside pg_catalog need their schema to be castable
                if attr.type.schema and attr.type.schema != "pg_catalog":
                    type_name = f"{attr.type.schema}.{type_name}"
                columns.append(ColumnInfo(attr.name, type_name))
            return columns

    @asynccontextmanager
    async def transaction(self):
        """
        Execute operations within a transaction

        Usage:
            async with db.transaction():
                await db.execute("INSERT INTO ...")
                await db.execute("UPDATE ...")

        Any exception raised inside the block rolls back every statement.
        Nested calls reuse the outer connection and open a savepoint.
        """
        bound = _transaction_conn.get()
        if bound is not None:
            async with bound.transaction():
                yield bound
            return

        async with self.acquire() as conn:
            async with conn.transaction():
                token = _transaction_conn.set(conn)
                try:
                    yield conn
                finally:
                    _transaction_conn.reset(token)

    async def check_connection(self) -> bool:
        """
        Check if database connection is healthy

        Returns:
            True if connection is healthy
        """
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except Exception as e:
            logger.error(f"Connection check failed: {e}")
            return False

    async def get_pool_stats(self) -> Dict[str, Any]:
        """
        Get connection pool statistics for monitoring.

        Returns:
            Dictionary with pool stats (size, free connections, etc.)
        """
        if self.pool is None:
            return {
                'status': 'disconnected',
                'size': 0,
                'freesize': 0
            }

        return {
            'status': 'connected',
            'size': self.pool.get_size(),
            'freesize': self.pool.get_idle_size(),
            'min_size': self.config.min_pool_size,
            'max_size': self.config.max_pool_size
        }


# Singleton instance
_db_instance: Optional[DatabaseConnection] = None


def get_database(config: Optional[DatabaseConfig] = None) -> DatabaseConnection:
    """
    Get or create database connection instance

    Args:
        config: Database configuration (uses environment if not provided)
    """
    global _db_instance

    if _db_instance is None:
        if config is None:
            config = DatabaseConfig.from_environment()
        _db_instance = DatabaseConnection(config)

    return _db_instance


async def init_database(config: Optional[DatabaseConfig] = None):
    """Initialize database connection"""
    db = get_database(config)
    await db.connect()
    return db


async def close_database():
    """Close database connection"""
    global _db_instance

    if _db_instance is not None:
        await _db_instance.disconnect()
        _db_instance = None
