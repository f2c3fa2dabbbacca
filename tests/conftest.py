"""
Pytest configuration and shared fixtures for UHI gateway tests

APPROACH: run the production object graph against each database backend
- `db` is parametrized: FakeDatabase (in memory) and LiveDatabase (a real
  PostgreSQL test database loaded from tests/schema.sql)
- The PostgreSQL run is skipped when no server is reachable; point it at one
  with TEST_DB_HOST / TEST_DB_PORT / TEST_DB_USER / TEST_DB_PASSWORD
- Each test gets fresh tables (no shared state)
- Dispatcher and HTTP tests override `db` with the in-memory backend
"""

import asyncio
import os
import pytest
from dataclasses import replace
from pathlib import Path
import sys
import asyncpg

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import DatabaseConfig, GatewayConfig
from container import ServiceContainer
from models import GatewayHeader, GatewayRequest
from server import GatewayServer
from utils.audit import AuditLogger
from tests.fake_database import FakeDatabase
from tests.live_database import LiveDatabase


SCHEMA = "GDEV1T_UHI_DATA"
AREA_TABLE = f"{SCHEMA}.bms_Area_lkp"
BENEFICIARY_TABLE = f"{SCHEMA}.beneficiary"
CONTACT_TABLE = f"{SCHEMA}.contact"
EMPLOYMENT_TABLE = f"{SCHEMA}.employment"
WAREHOUSE_TABLES = (AREA_TABLE, BENEFICIARY_TABLE, CONTACT_TABLE, EMPLOYMENT_TABLE)

SCHEMA_FILE = Path(__file__).parent / "schema.sql"
CONNECT_TIMEOUT = 5


def build_database() -> FakeDatabase:
    """Warehouse tables used across the suite"""
    db = FakeDatabase()
    db.create_table(AREA_TABLE, [
        ("id", "text"),
        ("name", "varchar"),
        ("nameAr", "varchar"),
        ("isActive", "bool"),
        ("sortOrder", "int4"),
        ("createdAt", "timestamp"),
    ])
    db.create_table(BENEFICIARY_TABLE, [
        ("id", "text"),
        ("familyId", "varchar"),
        ("familyRelation", "varchar"),
        ("activationStatus", "varchar"),
        ("firstName", "varchar"),
        ("lastName", "varchar"),
        ("fullName", "varchar"),
        ("dob", "date"),
        ("gender", "varchar"),
        ("mobile", "varchar"),
        ("nationality", "varchar"),
        ("nationalId", "varchar"),
        ("email", "varchar"),
        ("LandlineNumber(Work)", "varchar"),
        ("updatedAt", "timestamp"),
    ])
    db.create_table(CONTACT_TABLE, [
        ("id", "text"),
        ("beneficiaryId", "text"),
        ("phone", "varchar"),
        ("contactType", "varchar"),
    ], key=("id", "beneficiaryId"))
    db.create_table(EMPLOYMENT_TABLE, [
        ("id", "text"),
        ("beneficiaryId", "text"),
        ("netIncome", "numeric"),
        ("jobDescription", "varchar"),
        ("job", "varchar"),
        ("employerGovernerate", "varchar"),
        ("companySocialInsuranceId", "varchar"),
    ], key=("id", "beneficiaryId"))
    return db


def _test_db_config() -> DatabaseConfig:
    """for_testing() with host and credentials overridable from the environment"""
    config = DatabaseConfig.for_testing()
    config = replace(
        config,
        host=os.getenv("TEST_DB_HOST", config.host),
        port=int(os.getenv("TEST_DB_PORT", str(config.port))),
        user=os.getenv("TEST_DB_USER", config.user),
        password=os.getenv("TEST_DB_PASSWORD", config.password),
    )
    config.validate_safety("test")
    return config


async def _connect(config: DatabaseConfig, database: str) -> asyncpg.Connection:
    return await asyncpg.connect(
        host=config.host,
        port=config.port,
        user=config.user,
        password=config.password,
        database=database,
        ssl="prefer",
        timeout=CONNECT_TIMEOUT,
    )


async def _create_test_database(config: DatabaseConfig):
    """Create a fresh test database"""
    sys_conn = await _connect(config, "postgres")
    try:
        await sys_conn.execute(f"DROP DATABASE IF EXISTS {config.database}")
        await sys_conn.execute(f"CREATE DATABASE {config.database}")
    finally:
        await sys_conn.close()


async def _setup_schema(config: DatabaseConfig):
    """Load the warehouse tables into the test database"""
    conn = await _connect(config, config.database)
    try:
        await conn.execute(SCHEMA_FILE.read_text(encoding="utf-8"))
    finally:
        await conn.close()


async def _drop_test_database(config: DatabaseConfig):
    """Drop the test database"""
    sys_conn = await _connect(config, "postgres")
    try:
        await sys_conn.execute(
            """
            SELECT pg_terminate_backend(pid)
            FROM pg_stat_activity
            WHERE datname = $1 AND pid <> pg_backend_pid()
            """,
            config.database,
        )
        await sys_conn.execute(f"DROP DATABASE IF EXISTS {config.database}")
    finally:
        await sys_conn.close()


def _run(coro):
    """Run setup/teardown on a private loop, leaving the test loop alone"""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def make_header(**overrides) -> GatewayHeader:
    """A header every default allow-list accepts"""
    values = {
        "correlationId": "1",
        "originatingChannel": "16",
        "channelRequestId": "1",
        "originatingUserType": "1",
        "originatingUserIdentifier": "2970430001808",
        "serviceSlug": "BMS-LOOKUP-01",
        "serviceEntityId": "1",
    }
    values.update(overrides)
    return GatewayHeader(**values)


def make_request(indicator, payload=None, id=None, **header_overrides) -> GatewayRequest:
    return GatewayRequest(
        header=make_header(**header_overrides),
        indicator=indicator,
        id=id,
        jsonPayload=payload,
    )


def beneficiary(beneficiary_id, family_id="F1", relation="Son", **extra) -> dict:
    """A beneficiary row/member with every required HOF field"""
    data = {
        "id": beneficiary_id,
        "familyId": family_id,
        "familyRelation": relation,
        "activationStatus": "active",
        "firstName": "Ahmed",
        "lastName": "Hassan",
        "fullName": "Ahmed Hassan",
        "dob": "1990-05-01",
        "gender": "M",
        "mobile": "01000000000",
        "nationality": "EG",
        "nationalId": f"NID-{beneficiary_id}",
        "email": f"{beneficiary_id}@example.com",
    }
    data.update(extra)
    return data


@pytest.fixture(scope="session")
def postgres_database():
    """
    Create the PostgreSQL test database once per session.

    Skips every PostgreSQL-backed test when no server is reachable.
    """
    config = _test_db_config()
    try:
        _run(_create_test_database(config))
    except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        pytest.skip(f"PostgreSQL test database unavailable: {e}")
    _run(_setup_schema(config))

    yield config

    _run(_drop_test_database(config))


@pytest.fixture(scope="function")
def memory_db():
    """
    FakeDatabase fixture, fresh tables per test.
    """
    return build_database()


@pytest.fixture(scope="function")
async def live_db(postgres_database):
    """
    LiveDatabase on the test database, tables emptied before each test.
    """
    db = LiveDatabase(postgres_database)
    await db.connect()
    await db.truncate(WAREHOUSE_TABLES)

    yield db

    await db.disconnect()


@pytest.fixture(scope="function", params=["memory", "postgres"])
def db(request):
    """
    The database every repository and service test runs against.
    """
    if request.param == "postgres":
        return request.getfixturevalue("live_db")
    return request.getfixturevalue("memory_db")


@pytest.fixture(scope="function")
def gateway_config():
    return GatewayConfig()


@pytest.fixture(scope="function")
def services(db, gateway_config):
    """
    Provides a ServiceContainer wired to the test database.
    """
    return ServiceContainer(db, gateway_config)


@pytest.fixture(scope="function")
def records(services):
    return services.records


@pytest.fixture(scope="function")
def gateway(services, gateway_config):
    """GatewayServer with an audit logger that writes to the log only"""
    return GatewayServer(services, gateway_config, AuditLogger())
