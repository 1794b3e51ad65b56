"""
Configuration management for the table export pipeline.

Usage:
    from pg2gbf.config.settings import Config
    config = Config()
    source = PostgresSource(config.postgres)

Environment Variables:
    POSTGRES_HOST: Database host
    POSTGRES_PORT: Database port (default 5432)
    POSTGRES_DBNAME: Database name
    POSTGRES_USER: Database user
    POSTGRES_PASSWORD: Database password
    TABLE_NAME: Source table (default 'table')
    ID_COLUMN: Identifier column used for pagination (default 'id')
    GEOM_COLUMN: Geometry column (default 'geom')
    CHUNK_SIZE: Rows per chunk (default 1000000)
    OUTPUT_PATH: Merged GeoJSON path (default 'layer.geojson')
    EXPORT_STRATEGY: 'ogr', 'sql' or 'geopandas' (default 'ogr')
    CHUNK_FORMAT: 'geojson' or 'geobuf' (default 'geojson')
    TARGET_SRID: SRID of the exported geometries (default 4326)
    GEOBUF_PRECISION: Decimal digits kept by the Geobuf encoder (default 6)
    KEEP_MERGED: Keep the merged GeoJSON next to the Geobuf output (default true)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from ..domain.enums import ChunkFormat, ExportStrategy
from ..domain.models import TableDescriptor

logger = logging.getLogger(__name__)


@dataclass
class PostgresCredentials:
    """Connection parameters for the source database."""
    host: str
    dbname: str
    user: str
    password: str = ""
    port: int = 5432

    def __post_init__(self):
        """Validate connection parameters."""
        if not self.host:
            raise ValueError("Host cannot be empty")
        if not self.dbname:
            raise ValueError("Database name cannot be empty")
        if not self.user:
            raise ValueError("User cannot be empty")
        if not 0 < self.port < 65536:
            raise ValueError(f"Port out of range: {self.port}")

    def connect_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for psycopg.connect()."""
        kwargs = {
            'host': self.host,
            'port': self.port,
            'dbname': self.dbname,
            'user': self.user,
        }
        if self.password:
            kwargs['password'] = self.password
        return kwargs

    def ogr_datasource(self) -> str:
        """PostgreSQL datasource string understood by ogr2ogr; the password goes in PGPASSWORD."""
        return f"PG:host={self.host} port={self.port} dbname={self.dbname} user={self.user}"

    def __repr__(self) -> str:
        return f"PostgresCredentials(host={self.host}, port={self.port}, dbname={self.dbname}, user={self.user})"


@dataclass
class ExportConfig:
    """Table export settings."""
    table_name: str = "table"
    id_column: str = "id"
    geom_column: str = "geom"
    chunk_size: int = 1_000_000
    output_path: str = "layer.geojson"
    strategy: ExportStrategy = ExportStrategy.OGR
    chunk_format: ChunkFormat = ChunkFormat.GEOJSON
    target_srid: int = 4326
    geobuf_precision: int = 6
    keep_merged: bool = True

    def __post_init__(self):
        """Validate export configuration."""
        if self.chunk_size < 1:
            raise ValueError("Chunk size must be positive")
        if self.geobuf_precision < 0:
            raise ValueError("Geobuf precision must be non-negative")
        if self.chunk_format is ChunkFormat.GEOBUF and self.strategy is not ExportStrategy.SQL:
            raise ValueError("Geobuf chunks require the 'sql' export strategy")

    @property
    def table(self) -> TableDescriptor:
        return TableDescriptor(
            name=self.table_name,
            id_column=self.id_column,
            geom_column=self.geom_column
        )


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


def _env_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Centralized configuration for the export pipeline.

    Environment variables loaded (in order of preference):
    1. Explicit environment file passed to constructor
    2. .env.{ENVIRONMENT} (where ENVIRONMENT=development|production|staging)
    3. .env file in the working directory
    4. System environment variables

    Example:
        config = Config(env_file=Path("/secure/production.env"))
        config.export.chunk_size
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 env_file: Optional[Path] = None,
                 require_database: bool = True):
        """
        Initialize configuration.

        Args:
            environment: Target environment (development|staging|production)
            env_file: Explicit path to environment file
            require_database: Whether missing database credentials are an error
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.project_root = Path.cwd()

        self._load_environment_variables(env_file)

        self.postgres: Optional[PostgresCredentials] = None
        if require_database:
            self._load_postgres_config()
        self._load_export_config()

    def _load_environment_variables(self, env_file: Path | None) -> None:
        """Load environment variables from appropriate source."""
        loaded_files = []

        if env_file:
            if env_file.exists():
                load_dotenv(env_file)
                loaded_files.append(str(env_file))
                logger.info(f"Loaded configuration from {env_file}")
            else:
                raise ConfigurationError(f"Specified env file not found: {env_file}")
        else:
            env_specific_file = self.project_root / f".env.{self.environment}"
            if env_specific_file.exists():
                load_dotenv(env_specific_file)
                loaded_files.append(str(env_specific_file))
                logger.info(f"Loaded environment-specific config: {env_specific_file}")

            generic_env_file = self.project_root / ".env"
            if generic_env_file.exists():
                load_dotenv(generic_env_file)
                loaded_files.append(str(generic_env_file))
                logger.info(f"Loaded generic config: {generic_env_file}")

        if not loaded_files:
            logger.debug("No .env files found, using system environment variables only")

        self._loaded_env_files = loaded_files
        logger.debug(f"Environment: {self.environment}")

    def _load_postgres_config(self) -> None:
        """Load and validate database connection parameters."""
        host = os.getenv("POSTGRES_HOST")
        dbname = os.getenv("POSTGRES_DBNAME")
        user = os.getenv("POSTGRES_USER")
        password = os.getenv("POSTGRES_PASSWORD", "")

        if not all([host, dbname, user]):
            missing = []
            if not host:
                missing.append("POSTGRES_HOST")
            if not dbname:
                missing.append("POSTGRES_DBNAME")
            if not user:
                missing.append("POSTGRES_USER")

            raise ConfigurationError(
                f"Missing required database settings: {', '.join(missing)}.\n"
                f"Please set these variables in your environment or .env file:\n"
                f"  POSTGRES_HOST=localhost\n"
                f"  POSTGRES_PORT=5432\n"
                f"  POSTGRES_DBNAME=gis\n"
                f"  POSTGRES_USER=your_user\n"
                f"  POSTGRES_PASSWORD=your_password"
            )

        try:
            self.postgres = PostgresCredentials(
                host=host,
                port=int(os.getenv("POSTGRES_PORT", "5432")),
                dbname=dbname,
                user=user,
                password=password
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid database configuration: {e}")

    def _load_export_config(self) -> None:
        """Load export settings with the documented defaults."""
        try:
            self.export = ExportConfig(
                table_name=os.getenv("TABLE_NAME", "table"),
                id_column=os.getenv("ID_COLUMN", "id"),
                geom_column=os.getenv("GEOM_COLUMN", "geom"),
                chunk_size=int(os.getenv("CHUNK_SIZE", "1000000")),
                output_path=os.getenv("OUTPUT_PATH", "layer.geojson"),
                strategy=ExportStrategy(os.getenv("EXPORT_STRATEGY", "ogr").lower()),
                chunk_format=ChunkFormat(os.getenv("CHUNK_FORMAT", "geojson").lower()),
                target_srid=int(os.getenv("TARGET_SRID", "4326")),
                geobuf_precision=int(os.getenv("GEOBUF_PRECISION", "6")),
                keep_merged=_env_bool("KEEP_MERGED", "true")
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid export configuration: {e}")

    def get_security_summary(self) -> dict[str, Any]:
        """
        Get configuration summary for audit purposes.

        Returns:
            Dictionary with configuration info (no secrets)
        """
        summary = {
            'environment': self.environment,
            'loaded_env_files': self._loaded_env_files,
            'table': self.export.table_name,
            'chunk_size': self.export.chunk_size,
            'strategy': self.export.strategy.value,
            'chunk_format': self.export.chunk_format.value,
        }
        if self.postgres:
            summary.update({
                'postgres_host': self.postgres.host,
                'postgres_port': self.postgres.port,
                'postgres_dbname': self.postgres.dbname,
                'postgres_user': self.postgres.user,
            })
        return summary

    def __repr__(self) -> str:
        """Safe string representation without credentials."""
        host = self.postgres.host if self.postgres else None
        return (
            f"Config(environment={self.environment}, "
            f"host={host}, "
            f"table={self.export.table_name})"
        )
