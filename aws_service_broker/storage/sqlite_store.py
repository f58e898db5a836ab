"""SQLite implementation of broker state storage."""

import sqlite3
import json
import logging
import threading
from typing import Optional
from pathlib import Path

from aws_service_broker.storage.base import DataStore
from aws_service_broker.models.instance import ServiceInstance, ServiceBinding
from aws_service_broker.models.service_broker import Service
from aws_service_broker.exceptions import StorageError

logger = logging.getLogger(__name__)


class SQLiteDataStore(DataStore):
    """SQLite implementation of broker state storage."""

    def __init__(self, db_path: str):
        """Initialize SQLite store."""
        self.db_path = db_path
        self.connection: Optional[sqlite3.Connection] = None
        self.lock = threading.RLock()

    def initialize(self) -> None:
        """Initialize the SQLite database."""
        try:
            if self.db_path != ':memory:':
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self.connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self.connection.row_factory = sqlite3.Row

            self._create_tables()

            logger.info(f"SQLite data store initialized at {self.db_path}")

        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite store: {e}")
            raise StorageError(f"Failed to initialize SQLite store: {e}", operation='initialize', cause=e) from e

    def _create_tables(self) -> None:
        """Create database tables."""
        cursor = self.connection.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS service_definitions (
                service_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                definition TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS service_instances (
                instance_id TEXT PRIMARY KEY,
                service_id TEXT NOT NULL,
                plan_id TEXT NOT NULL,
                params TEXT NOT NULL,
                stack_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS service_bindings (
                binding_id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                role_name TEXT NOT NULL,
                scope TEXT NOT NULL,
                policy_arn TEXT NOT NULL,
                credentials TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_bindings_instance ON service_bindings (instance_id)')

        self.connection.commit()
        logger.info("Database tables created successfully")

    def _execute(self, operation: str, sql: str, args: tuple = (), fetch: bool = False):
        """Run a statement under the store lock; returns the first row when ``fetch`` is set."""
        if self.connection is None:
            raise StorageError("SQLite store is not initialized", operation=operation)
        with self.lock:
            try:
                cursor = self.connection.cursor()
                cursor.execute(sql, args)
                if fetch:
                    return cursor.fetchone()
                self.connection.commit()
                return None
            except sqlite3.IntegrityError:
                self.connection.rollback()
                raise
            except sqlite3.Error as e:
                self.connection.rollback()
                logger.error(f"SQLite {operation} failed: {e}")
                raise StorageError(f"SQLite {operation} failed: {e}", operation=operation, cause=e) from e

    def get_service_definition(self, service_id: str) -> Optional[Service]:
        row = self._execute(
            'get_service_definition',
            'SELECT definition FROM service_definitions WHERE service_id = ?',
            (service_id,),
            fetch=True
        )
        if not row:
            return None
        return Service.model_validate_json(row['definition'])

    def put_service_definition(self, service: Service) -> None:
        self._execute(
            'put_service_definition',
            'INSERT OR REPLACE INTO service_definitions (service_id, name, definition) VALUES (?, ?, ?)',
            (service.id, service.name, service.model_dump_json())
        )
        logger.debug(f"Stored service definition {service.id} ({service.name})")

    def get_service_instance(self, instance_id: str) -> Optional[ServiceInstance]:
        row = self._execute(
            'get_service_instance',
            'SELECT * FROM service_instances WHERE instance_id = ?',
            (instance_id,),
            fetch=True
        )
        if not row:
            return None
        return ServiceInstance(
            instance_id=row['instance_id'],
            service_id=row['service_id'],
            plan_id=row['plan_id'],
            params=json.loads(row['params']),
            stack_id=row['stack_id'],
            created_at=row['created_at'],
            updated_at=row['updated_at']
        )

    def _instance_args(self, instance: ServiceInstance) -> tuple:
        return (
            instance.instance_id,
            instance.service_id,
            instance.plan_id,
            json.dumps(instance.params),
            instance.stack_id,
            instance.created_at.isoformat(),
            instance.updated_at.isoformat()
        )

    def create_service_instance(self, instance: ServiceInstance) -> bool:
        try:
            self._execute(
                'create_service_instance',
                '''
                INSERT INTO service_instances (
                    instance_id, service_id, plan_id, params, stack_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ''',
                self._instance_args(instance)
            )
        except sqlite3.IntegrityError:
            logger.info(f"Service instance {instance.instance_id} already exists")
            return False

        logger.info(f"Created service instance {instance.instance_id}")
        return True

    def update_service_instance(self, instance: ServiceInstance) -> None:
        self._execute(
            'update_service_instance',
            '''
            INSERT OR REPLACE INTO service_instances (
                instance_id, service_id, plan_id, params, stack_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ''',
            self._instance_args(instance)
        )

    def delete_service_instance(self, instance_id: str) -> None:
        self._execute(
            'delete_service_instance',
            'DELETE FROM service_instances WHERE instance_id = ?',
            (instance_id,)
        )
        logger.info(f"Deleted service instance {instance_id}")

    def get_service_binding(self, binding_id: str) -> Optional[ServiceBinding]:
        row = self._execute(
            'get_service_binding',
            'SELECT * FROM service_bindings WHERE binding_id = ?',
            (binding_id,),
            fetch=True
        )
        if not row:
            return None
        return ServiceBinding(
            binding_id=row['binding_id'],
            instance_id=row['instance_id'],
            role_name=row['role_name'],
            scope=row['scope'],
            policy_arn=row['policy_arn'],
            credentials=json.loads(row['credentials']),
            created_at=row['created_at']
        )

    def create_service_binding(self, binding: ServiceBinding) -> bool:
        try:
            self._execute(
                'create_service_binding',
                '''
                INSERT INTO service_bindings (
                    binding_id, instance_id, role_name, scope, policy_arn, credentials, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    binding.binding_id,
                    binding.instance_id,
                    binding.role_name,
                    binding.scope,
                    binding.policy_arn,
                    json.dumps(binding.credentials),
                    binding.created_at.isoformat()
                )
            )
        except sqlite3.IntegrityError:
            logger.info(f"Service binding {binding.binding_id} already exists")
            return False

        logger.info(f"Created service binding {binding.binding_id}")
        return True

    def delete_service_binding(self, binding_id: str) -> None:
        self._execute(
            'delete_service_binding',
            'DELETE FROM service_bindings WHERE binding_id = ?',
            (binding_id,)
        )
        logger.info(f"Deleted service binding {binding_id}")

    def close(self) -> None:
        """Close database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None
            logger.info("SQLite connection closed")
