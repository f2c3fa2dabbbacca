"""
Gateway configuration for the UHI lookup gateway
Supports local development, testing, and production deployment
Environment-aware configuration based on APP_ENV
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Literal, List
from urllib.parse import quote_plus
from pathlib import Path
from dotenv import load_dotenv

# Environment modes
EnvironmentMode = Literal["development", "test", "production"]

DEFAULT_SCHEMA = "GDEV1T_UHI_DATA"


def load_app_environment(mode: Optional[str] = None) -> str:
    """
    Load environment variables from the appropriate .env file.

    Priority:
    1. Explicit 'mode' argument
    2. APP_ENV environment variable
    3. Default to 'development'

    Loads .env.{mode} if it exists, falling back to .env
    """
    if not mode:
        mode = os.getenv('APP_ENV', 'development')

    base_path = Path(__file__).parent
    env_file = base_path / f'.env.{mode}'

    if env_file.exists():
        # override=False lets variables set by the host win over .env values
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(base_path / '.env', override=False)

    return mode


def _env_list(name: str, default: List[str]) -> List[str]:
    """Read a comma-separated list from the environment"""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default)
    return [item.strip() for item in raw.split(',') if item.strip()]


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration"""

    host: str
    port: int
    database: str
    user: str
    password: str

    # Connection pool settings
    min_pool_size: int = 2
    max_pool_size: int = 10
    command_timeout: int = 300  # seconds, per statement
    connection_timeout: float = 20.0  # seconds to wait for a pooled connection

    ssl_mode: str = "prefer"

    @property
    def connection_string(self) -> str:
        """Get PostgreSQL connection string"""
        return (
            f"postgresql://{self.user}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.database}"
            f"?sslmode={self.ssl_mode}"
        )

    @classmethod
    def from_environment(cls, mode: Optional[EnvironmentMode] = None) -> 'DatabaseConfig':
        """
        Load configuration from environment variables

        Environment variables:
        - APP_ENV: Environment mode (development, test, production)
        - DB_HOST: Database host (default: localhost)
        - DB_PORT: Database port (default: 5432)
        - DB_NAME: Database name (default: uhi_warehouse)
        - DB_USER / DB_PASSWORD: Credentials
        - DB_SSL_MODE: SSL mode (default: prefer in development, require otherwise)
        - DB_MIN_POOL_SIZE / DB_MAX_POOL_SIZE: Pool bounds
        - DB_COMMAND_TIMEOUT: Statement timeout in seconds
        - DB_CONNECTION_TIMEOUT: Seconds to wait for a free pooled connection

        Args:
            mode: Override environment mode (default: reads from APP_ENV)
        """
        mode = load_app_environment(mode)

        config = cls(
            host=os.getenv('DB_HOST', 'localhost'),
            port=int(os.getenv('DB_PORT', '5432')),
            database=os.getenv('DB_NAME', 'uhi_warehouse'),
            user=os.getenv('DB_USER', 'postgres'),
            password=os.getenv('DB_PASSWORD', ''),
            ssl_mode=os.getenv('DB_SSL_MODE', 'prefer' if mode in ('development', 'test') else 'require'),
            min_pool_size=int(os.getenv('DB_MIN_POOL_SIZE', '2')),
            max_pool_size=int(os.getenv('DB_MAX_POOL_SIZE', '10')),
            command_timeout=int(os.getenv('DB_COMMAND_TIMEOUT', '300')),
            connection_timeout=float(os.getenv('DB_CONNECTION_TIMEOUT', '20')),
        )

        config.validate_safety(mode)

        return config

    def validate_safety(self, mode: str):
        """Ensure configuration is safe for the requested mode"""
        if mode == 'test':
            if 'test' not in self.database:
                raise ValueError(f"SAFETY ERROR: Test mode requested but database is '{self.database}'. Test database must contain 'test'.")
            if 'prod' in self.database:
                raise ValueError(f"SAFETY ERROR: Test mode requested but database '{self.database}' appears to be production.")
        if self.min_pool_size > self.max_pool_size:
            raise ValueError(
                f"DB_MIN_POOL_SIZE ({self.min_pool_size}) cannot exceed DB_MAX_POOL_SIZE ({self.max_pool_size})"
            )

    @classmethod
    def for_local_development(cls) -> 'DatabaseConfig':
        """Configuration for local PostgreSQL instance"""
        return cls(
            host='localhost',
            port=5432,
            database='uhi_warehouse',
            user='postgres',
            password='postgres',
            ssl_mode='prefer',
            min_pool_size=2,
            max_pool_size=5,
        )

    @classmethod
    def for_testing(cls) -> 'DatabaseConfig':
        """Configuration for test PostgreSQL database"""
        return cls(
            host='localhost',
            port=5432,
            database='uhi_warehouse_test',
            user='postgres',
            password='postgres',
            ssl_mode='prefer',
            min_pool_size=1,
            max_pool_size=5,
        )


@dataclass
class GatewayConfig:
    """
    Request-level policy for the gateway.

    The header allow-lists default to the values the channel integrations
    were issued; each can be replaced with a comma-separated env variable.
    """
    schema: str = DEFAULT_SCHEMA
    allowed_correlation_ids: List[str] = field(default_factory=lambda: ["1", "2", "3"])
    allowed_channels: List[str] = field(default_factory=lambda: ["16", "10"])
    allowed_channel_request_ids: List[str] = field(default_factory=lambda: ["1", "2", "3"])
    allowed_user_types: List[str] = field(default_factory=lambda: ["1", "2"])
    allowed_user_identifiers: List[str] = field(default_factory=lambda: ["2970430001808"])
    allowed_service_slugs: List[str] = field(
        default_factory=lambda: ["BMS-LOOKUP-01", "BMS-LOOKUP-02", "BMS-LOOKUP-03"]
    )
    allowed_entity_ids: List[str] = field(default_factory=lambda: ["1", "2"])
    max_id_length: int = 50
    max_json_payload_length: int = 9_000_000
    audit_log_file: Optional[str] = None
    audit_payload_limit: int = 1000

    @classmethod
    def from_environment(cls) -> "GatewayConfig":
        load_app_environment()
        defaults = cls()
        return cls(
            schema=os.getenv("UHI_SCHEMA", DEFAULT_SCHEMA),
            allowed_correlation_ids=_env_list("ALLOWED_CORRELATION_IDS", defaults.allowed_correlation_ids),
            allowed_channels=_env_list("ALLOWED_CHANNELS", defaults.allowed_channels),
            allowed_channel_request_ids=_env_list("ALLOWED_CHANNEL_REQUEST_IDS", defaults.allowed_channel_request_ids),
            allowed_user_types=_env_list("ALLOWED_USER_TYPES", defaults.allowed_user_types),
            allowed_user_identifiers=_env_list("ALLOWED_USER_IDENTIFIERS", defaults.allowed_user_identifiers),
            allowed_service_slugs=_env_list("ALLOWED_SERVICE_SLUGS", defaults.allowed_service_slugs),
            allowed_entity_ids=_env_list("ALLOWED_ENTITY_IDS", defaults.allowed_entity_ids),
            max_id_length=int(os.getenv("MAX_ID_LENGTH", "50")),
            max_json_payload_length=int(os.getenv("MAX_JSON_PAYLOAD_LENGTH", "9000000")),
            audit_log_file=os.getenv("AUDIT_LOG_FILE") or None,
            audit_payload_limit=int(os.getenv("AUDIT_PAYLOAD_LIMIT", "1000")),
        )


# Utility functions
def get_environment_mode() -> EnvironmentMode:
    """Get current environment mode from APP_ENV variable"""
    mode = os.getenv('APP_ENV', 'development').lower()
    if mode not in ('development', 'test', 'production'):
        mode = 'development'
    return mode  # type: ignore


def is_test_mode() -> bool:
    """Check if running in test mode"""
    return get_environment_mode() == 'test'


def is_production_mode() -> bool:
    """Check if running in production mode"""
    return get_environment_mode() == 'production'
