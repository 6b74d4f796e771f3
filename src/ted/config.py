"""Configuration management for ted."""

import getpass
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ted.core.dialect import DbType
from ted.utils.type_utils import NULL_GLYPH

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".ted.yml"
DEFAULT_MYSQL_HOST = "localhost"
DEFAULT_MYSQL_PORT = 3306


class DatabaseConfig(BaseModel):
    """A named connection in the databases section of .ted.yml."""

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    type: Optional[DbType] = Field(default=None, description="Backend type")
    host: Optional[str] = Field(default=None, description="Server host")
    port: Optional[int] = Field(default=None, description="Server port")
    user: Optional[str] = Field(default=None, description="User name")
    dbname: Optional[str] = Field(
        default=None, description="Database name, or file path for sqlite/duckdb"
    )


class TedConfig(BaseModel):
    """Contents of a .ted.yml file."""

    model_config = ConfigDict(extra="forbid")

    databases: Dict[str, DatabaseConfig] = Field(
        default_factory=dict, description="Connection aliases by name"
    )
    column_widths: Dict[str, int] = Field(
        default_factory=dict, description="Default display width per column type"
    )
    null_glyph: str = Field(default=NULL_GLYPH, description="Text typed to enter NULL")
    refresh_interval: float = Field(
        default=0.3, gt=0, description="Seconds between background refreshes"
    )
    cursor_timeout: float = Field(
        default=0.3, gt=0, description="Seconds of inactivity before a cursor closes"
    )

    def column_width(self, column_type: str, default: int = 20) -> int:
        """Configured width for a declared type, matched case-insensitively."""
        widths = {name.lower(): width for name, width in self.column_widths.items()}
        name = column_type.lower()
        if name in widths:
            return widths[name]
        base = name.split("(")[0].strip()
        return widths.get(base, default)


class Config:
    """Locates, loads and saves the ted configuration file."""

    def __init__(self, project_dir: Optional[Path] = None, home_dir: Optional[Path] = None):
        """Initialize config manager.

        Args:
            project_dir: Directory searched first. Defaults to the current directory.
            home_dir: Directory searched second. Defaults to the user's home.
        """
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.home_dir = Path(home_dir) if home_dir else Path.home()
        self._config: Optional[TedConfig] = None

    @property
    def config_path(self) -> Path:
        """Path of the file that load() reads, or where save() writes."""
        if env_path := os.environ.get("TED_CONFIG"):
            return Path(env_path)
        for candidate in (self.project_dir / CONFIG_FILE_NAME, self.home_dir / CONFIG_FILE_NAME):
            if candidate.exists():
                return candidate
        return self.project_dir / CONFIG_FILE_NAME

    @property
    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def load(self) -> TedConfig:
        """Load configuration from disk, with environment variable overrides.

        A missing file yields the defaults.
        """
        data: Dict[str, Any] = {}
        if self.exists:
            with open(self.config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {self.config_path} must contain a mapping")
            logger.debug(f"Loaded configuration from {self.config_path}")

        self._apply_env_overrides(data)
        self._config = TedConfig(**data)
        return self._config

    def _apply_env_overrides(self, data: Dict[str, Any]) -> None:
        """Apply environment variable overrides to configuration data."""
        if env_glyph := os.environ.get("TED_NULL_GLYPH"):
            data["null_glyph"] = env_glyph

        if env_interval := os.environ.get("TED_REFRESH_INTERVAL"):
            data["refresh_interval"] = float(env_interval)

    def save(self, config: Optional[TedConfig] = None) -> None:
        """Save configuration to disk.

        Args:
            config: Configuration to save. If None, saves current config.
        """
        if config:
            self._config = config

        if not self._config:
            raise ValueError("No configuration to save")

        config_dict = self._config.model_dump(mode="json", exclude_defaults=True)
        with open(self.config_path, "w") as f:
            yaml.safe_dump(config_dict, f, sort_keys=False)


def detect_db_type(database: str) -> DbType:
    """Guess the backend from a database argument's file extension."""
    if database.endswith(".sqlite") or database.endswith(".db"):
        return DbType.SQLITE
    if database.endswith(".duckdb"):
        return DbType.DUCKDB
    return DbType.POSTGRES


class ConnectionSettings(BaseModel):
    """Everything needed to open a connection to one database."""

    model_config = ConfigDict(extra="forbid")

    db_type: DbType = Field(description="Backend type")
    database: str = Field(description="Database name, or file path for sqlite/duckdb")
    host: Optional[str] = Field(default=None, description="Server host")
    port: Optional[int] = Field(default=None, description="Server port")
    user: Optional[str] = Field(default=None, description="User name")
    password: Optional[str] = Field(default=None, description="Password")

    @classmethod
    def resolve(
        cls,
        database: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        db_type: Optional[DbType] = None,
        config: Optional[TedConfig] = None,
    ) -> "ConnectionSettings":
        """Build settings from command line values, config aliases and defaults.

        Explicit arguments win over a matching alias in the config's databases
        section, which wins over built-in defaults.

        Raises:
            FileNotFoundError: If a sqlite database file does not exist
        """
        alias = config.databases.get(database) if config else None
        if alias:
            logger.debug(f"Using database alias '{database}' from configuration")
            host = host or alias.host
            port = port or alias.port
            username = username or alias.user
            if db_type is None and alias.type:
                db_type = DbType(alias.type)
            database = alias.dbname or database

        if db_type is None:
            db_type = detect_db_type(database)

        if db_type == DbType.SQLITE and not Path(database).exists():
            raise FileNotFoundError(f"sqlite file does not exist: {database}")

        if db_type in (DbType.POSTGRES, DbType.MYSQL) and not username:
            username = getpass.getuser()

        if db_type == DbType.MYSQL:
            host = host or DEFAULT_MYSQL_HOST
            port = port or DEFAULT_MYSQL_PORT

        return cls(
            db_type=db_type,
            database=database,
            host=host,
            port=port,
            user=username,
            password=password,
        )

    @property
    def is_file(self) -> bool:
        return self.db_type in (DbType.SQLITE, DbType.DUCKDB)

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for the backend driver's connect()."""
        if self.db_type == DbType.POSTGRES:
            kwargs: Dict[str, Any] = {"dbname": self.database}
            for key in ("host", "port", "user", "password"):
                value = getattr(self, key)
                if value is not None:
                    kwargs[key] = value
            return kwargs

        if self.db_type == DbType.MYSQL:
            kwargs = {
                "host": self.host or DEFAULT_MYSQL_HOST,
                "port": self.port or DEFAULT_MYSQL_PORT,
                "user": self.user,
                "database": self.database,
            }
            if self.password is not None:
                kwargs["password"] = self.password
            return kwargs

        return {"database": self.database}

    def display_name(self) -> str:
        """Connection description without the password."""
        if self.is_file:
            return self.database
        location = self.host or "localhost"
        if self.port:
            location = f"{location}:{self.port}"
        return f"{self.user}@{location}/{self.database}"
