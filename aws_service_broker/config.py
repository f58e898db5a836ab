"""Configuration management for the AWS Service Broker."""

import json
import os
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from aws_service_broker.exceptions import ConfigurationError


@dataclass(frozen=True)
class BrokerOptions:
    """Process-wide broker options, fixed once the broker is constructed."""
    table_name: str = "awssb"
    s3_bucket: str = "awsservicebroker"
    s3_region: str = "us-east-1"
    s3_key: str = "templates/latest"
    region: str = "us-east-1"
    broker_id: str = "awsservicebroker"
    prescribe_overrides: bool = True
    global_overrides: Dict[str, str] = field(default_factory=dict)
    catalog_refresh_interval: int = 300


@dataclass
class DatabaseConfig:
    """Data store configuration."""
    type: str = "dynamodb"
    sqlite_path: str = "aws_service_broker.db"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class APIConfig:
    """API configuration."""
    host: str = "0.0.0.0"
    port: int = 3199
    debug: bool = False


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes')


@dataclass
class Config:
    """Main configuration class."""
    broker: BrokerOptions = field(default_factory=BrokerOptions)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def from_env(cls, base: Optional['Config'] = None) -> 'Config':
        """Load configuration from environment variables, on top of ``base`` if given."""
        config = base or cls()

        broker = config.broker
        global_overrides = broker.global_overrides
        raw_overrides = os.getenv('GLOBAL_OVERRIDES')
        if raw_overrides:
            try:
                global_overrides = {k: str(v) for k, v in json.loads(raw_overrides).items()}
            except (ValueError, AttributeError) as e:
                raise ConfigurationError(
                    f"GLOBAL_OVERRIDES must be a JSON object: {e}",
                    config_key='GLOBAL_OVERRIDES'
                ) from e

        config.broker = BrokerOptions(
            table_name=os.getenv('TABLE_NAME', broker.table_name),
            s3_bucket=os.getenv('S3_BUCKET', broker.s3_bucket),
            s3_region=os.getenv('S3_REGION', broker.s3_region),
            s3_key=os.getenv('S3_KEY', broker.s3_key),
            region=os.getenv('REGION', broker.region),
            broker_id=os.getenv('BROKER_ID', broker.broker_id),
            prescribe_overrides=_env_bool('PRESCRIBE_OVERRIDES', broker.prescribe_overrides),
            global_overrides=global_overrides,
            catalog_refresh_interval=int(os.getenv('CATALOG_REFRESH_INTERVAL', str(broker.catalog_refresh_interval))),
        )

        # Database config
        config.database.type = os.getenv('DB_TYPE', config.database.type)
        config.database.sqlite_path = os.getenv('SQLITE_PATH', config.database.sqlite_path)

        # API config
        config.api.host = os.getenv('API_HOST', config.api.host)
        config.api.port = int(os.getenv('API_PORT', str(config.api.port)))
        config.api.debug = _env_bool('API_DEBUG', config.api.debug)

        # Logging config
        config.logging.level = os.getenv('LOG_LEVEL', config.logging.level)
        config.logging.file_path = os.getenv('LOG_FILE_PATH', config.logging.file_path)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a YAML file, then apply environment overrides."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file {path} does not exist")

        with open(path, 'r') as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}

        config = cls()
        try:
            if 'broker' in data:
                broker_data = dict(data['broker'])
                broker_data['global_overrides'] = {
                    k: str(v) for k, v in (broker_data.get('global_overrides') or {}).items()
                }
                config.broker = BrokerOptions(**broker_data)
            if 'database' in data:
                config.database = DatabaseConfig(**data['database'])
            if 'logging' in data:
                config.logging = LoggingConfig(**data['logging'])
            if 'api' in data:
                config.api = APIConfig(**data['api'])
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration file {path}: {e}") from e

        return cls.from_env(config)

    def validate(self) -> None:
        """Raise ConfigurationError if a required setting is missing."""
        if not self.broker.broker_id:
            raise ConfigurationError("Broker ID is required", config_key='broker_id')
        if not self.broker.s3_bucket:
            raise ConfigurationError("Template bucket is required", config_key='s3_bucket')
        if not self.broker.region:
            raise ConfigurationError("Default region is required", config_key='region')
        if self.database.type.lower() not in ('dynamodb', 'sqlite'):
            raise ConfigurationError(
                f"Unsupported database type: {self.database.type}",
                config_key='database.type'
            )
