"""Pydantic models for connection settings and profile configuration."""

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.engine import URL


# ============================================================================
# Connection Settings
# ============================================================================


class ConnectionSettings(BaseModel):
    """Parameters for one SQL Server connection.

    Required strings must be non-blank.  The password may be empty but must
    be given.

    Example:
        >>> s = ConnectionSettings(server="db01", instance="SQLEXPRESS",
        ...     database="shop", username="sa", password="x")
        >>> s.host
        'db01\\\\SQLEXPRESS'
    """

    server: str
    port: int = Field(default=1433, ge=1, le=65535)
    instance: str | None = None
    database: str
    username: str
    password: str
    driver: str = "ODBC Driver 18 for SQL Server"
    encrypt: bool = False
    trust_server_certificate: bool = True
    login_timeout: int = Field(default=30, ge=0)

    @field_validator("server", "database", "username", "driver")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("instance")
    @classmethod
    def _blank_instance_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def host(self) -> str:
        """``server\\instance`` when an instance is given, else ``server``."""
        if self.instance:
            return f"{self.server}\\{self.instance}"
        return self.server

    def display_target(self) -> str:
        """Human-readable ``server[\\instance]:port``."""
        return f"{self.host}:{self.port}"

    def to_url(self) -> URL:
        """Build the SQLAlchemy URL for the ``mssql+pyodbc`` dialect.

        A named instance is resolved by the SQL Browser service, so the port
        is only set for default instances.
        """
        query = {
            "driver": self.driver,
            "Encrypt": "yes" if self.encrypt else "no",
            "TrustServerCertificate": "yes" if self.trust_server_certificate else "no",
            "LoginTimeout": str(self.login_timeout),
        }
        return URL.create(
            "mssql+pyodbc",
            username=self.username,
            password=self.password,
            host=self.host,
            port=None if self.instance else self.port,
            database=self.database,
            query=query,
        )


# ============================================================================
# Configuration File Models
# ============================================================================


class ConnectionProfile(BaseModel):
    """Connection profile from migrator.toml.

    Every field is optional: command-line flags fill in or override values.
    """

    description: str = ""
    server: str | None = None
    port: int | None = None
    instance: str | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    driver: str | None = None
    encrypt: bool | None = None
    trust_server_certificate: bool | None = None
    login_timeout: int | None = None

    def settings_values(self) -> dict:
        """Fields that map onto ``ConnectionSettings``, skipping unset ones."""
        return self.model_dump(exclude={"description"}, exclude_none=True)


class MigratorConfig(BaseModel):
    """Complete configuration from migrator.toml."""

    profiles: dict[str, ConnectionProfile] = Field(default_factory=dict)
