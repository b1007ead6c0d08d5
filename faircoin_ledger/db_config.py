# faircoin_ledger/db_config.py
"""Database configuration and credentials management"""
from dataclasses import dataclass
from urllib.parse import quote_plus, urlparse

from faircoin_ledger.config import Settings

SUPPORTED_SCHEMES = ('sqlite', 'postgresql')

@dataclass
class DatabaseCredentials:
    """PostgreSQL credentials container"""
    host: str
    port: str
    name: str
    user: str
    password: str
    ssl_mode: str = 'disable'

    def to_connection_string(self) -> str:
        """Generate database connection string with proper escaping"""
        return (
            f"postgresql://{quote_plus(self.user)}:{quote_plus(self.password)}@{self.host}:{self.port}/"
            f"{self.name}?sslmode={self.ssl_mode}"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> 'DatabaseCredentials':
        """Create credentials from the DB_* settings"""
        return cls(
            host=settings.DB_HOST,
            port=settings.DB_PORT,
            name=settings.DB_NAME,
            user=settings.DB_USER,
            password=settings.DB_PASSWORD or '',
            ssl_mode=settings.DB_SSLMODE
        )

    @staticmethod
    def validate_url(url: str) -> bool:
        """Check that a connection string targets a supported backend"""
        parsed = urlparse(url)
        scheme = parsed.scheme.split('+')[0]
        if scheme not in SUPPORTED_SCHEMES:
            return False
        if scheme == 'postgresql' and not parsed.hostname:
            return False
        return True

class DatabaseManager:
    """Builds connection strings from settings"""

    @staticmethod
    def sqlite_connection_string(path: str) -> str:
        return f"sqlite:///{path}"

    @classmethod
    def connection_string(cls, settings: Settings) -> str:
        """
        Resolve the connection string for the configured backend

        Returns:
            SQLAlchemy connection string

        Raises:
            ValueError: If the configuration is incomplete or unsupported
        """
        if settings.DATABASE_URL:
            if not DatabaseCredentials.validate_url(settings.DATABASE_URL):
                raise ValueError(f"Unsupported DATABASE_URL: {settings.DATABASE_URL}")
            return settings.DATABASE_URL

        if settings.DB_TYPE == 'sqlite':
            return cls.sqlite_connection_string(settings.DB_PATH)

        if settings.DB_TYPE == 'postgres':
            if not settings.DB_PASSWORD:
                raise ValueError("DB_PASSWORD setting is required for postgres")
            return DatabaseCredentials.from_settings(settings).to_connection_string()

        raise ValueError(f"Unsupported DB_TYPE: {settings.DB_TYPE}")
