"""Factory for creating the broker data store."""

import logging

from aws_service_broker.config import Config
from aws_service_broker.exceptions import ConfigurationError
from aws_service_broker.providers.aws_provider import SessionFactory
from aws_service_broker.storage.base import DataStore
from aws_service_broker.storage.dynamodb_store import DynamoDBDataStore
from aws_service_broker.storage.sqlite_store import SQLiteDataStore

logger = logging.getLogger(__name__)


class StorageFactory:
    """Factory for creating storage instances."""

    @staticmethod
    def create_data_store(config: Config, session_factory: SessionFactory) -> DataStore:
        """Create and initialize the data store selected by configuration."""
        db_type = config.database.type.lower()

        if db_type == 'dynamodb':
            logger.info(f"Creating DynamoDB storage backend on table {config.broker.table_name}")
            store: DataStore = DynamoDBDataStore.from_session_factory(
                session_factory, config.broker.region, config.broker.table_name
            )
        elif db_type == 'sqlite':
            logger.info(f"Creating SQLite storage backend at {config.database.sqlite_path}")
            store = SQLiteDataStore(config.database.sqlite_path)
        else:
            raise ConfigurationError(
                f"Unsupported database type: {config.database.type}",
                config_key='database.type'
            )

        store.initialize()
        return store
