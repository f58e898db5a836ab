"""DynamoDB implementation of broker state storage.

All records share one table keyed by ``id`` (hash) and ``userid`` (range). The
range key holds a fixed marker per record type, so service definitions,
instances and bindings with the same ID never collide.
"""

import logging
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from aws_service_broker.storage.base import DataStore
from aws_service_broker.models.instance import ServiceInstance, ServiceBinding
from aws_service_broker.models.service_broker import Service
from aws_service_broker.exceptions import StorageError

logger = logging.getLogger(__name__)

SERVICE_DEFINITION_MARKER = "__SERVICE_DEFINITION__"
SERVICE_INSTANCE_MARKER = "__SERVICE_INSTANCE__"
SERVICE_BINDING_MARKER = "__SERVICE_BINDING__"


class DynamoDBDataStore(DataStore):
    """DynamoDB implementation of broker state storage."""

    def __init__(self, client, table_name: str):
        """Initialize with a low-level boto3 ``dynamodb`` client."""
        self.client = client
        self.table_name = table_name

    @classmethod
    def from_session_factory(cls, session_factory, region: str, table_name: str) -> 'DynamoDBDataStore':
        return cls(session_factory.client(region, 'dynamodb'), table_name)

    @staticmethod
    def _key(record_id: str, marker: str) -> Dict[str, Any]:
        return {'id': {'S': record_id}, 'userid': {'S': marker}}

    def _get(self, record_id: str, marker: str, operation: str) -> Optional[str]:
        try:
            response = self.client.get_item(TableName=self.table_name, Key=self._key(record_id, marker))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"DynamoDB {operation} failed for {record_id}: {e}")
            raise StorageError(f"DynamoDB {operation} failed: {e}", operation=operation, cause=e) from e
        item = response.get('Item')
        return item['data']['S'] if item else None

    def _put(self, record_id: str, marker: str, data: str, operation: str,
             if_absent: bool = False) -> bool:
        item = self._key(record_id, marker)
        item['data'] = {'S': data}
        kwargs: Dict[str, Any] = {'TableName': self.table_name, 'Item': item}
        if if_absent:
            kwargs['ConditionExpression'] = 'attribute_not_exists(id)'
        try:
            self.client.put_item(**kwargs)
        except ClientError as e:
            if if_absent and e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                logger.info(f"Record {record_id} ({marker}) already exists")
                return False
            logger.error(f"DynamoDB {operation} failed for {record_id}: {e}")
            raise StorageError(f"DynamoDB {operation} failed: {e}", operation=operation, cause=e) from e
        except BotoCoreError as e:
            logger.error(f"DynamoDB {operation} failed for {record_id}: {e}")
            raise StorageError(f"DynamoDB {operation} failed: {e}", operation=operation, cause=e) from e
        return True

    def _delete(self, record_id: str, marker: str, operation: str) -> None:
        try:
            self.client.delete_item(TableName=self.table_name, Key=self._key(record_id, marker))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"DynamoDB {operation} failed for {record_id}: {e}")
            raise StorageError(f"DynamoDB {operation} failed: {e}", operation=operation, cause=e) from e

    def get_service_definition(self, service_id: str) -> Optional[Service]:
        data = self._get(service_id, SERVICE_DEFINITION_MARKER, 'get_service_definition')
        return Service.model_validate_json(data) if data else None

    def put_service_definition(self, service: Service) -> None:
        self._put(service.id, SERVICE_DEFINITION_MARKER, service.model_dump_json(), 'put_service_definition')

    def get_service_instance(self, instance_id: str) -> Optional[ServiceInstance]:
        data = self._get(instance_id, SERVICE_INSTANCE_MARKER, 'get_service_instance')
        return ServiceInstance.model_validate_json(data) if data else None

    def create_service_instance(self, instance: ServiceInstance) -> bool:
        return self._put(
            instance.instance_id, SERVICE_INSTANCE_MARKER, instance.model_dump_json(),
            'create_service_instance', if_absent=True
        )

    def update_service_instance(self, instance: ServiceInstance) -> None:
        self._put(instance.instance_id, SERVICE_INSTANCE_MARKER, instance.model_dump_json(), 'update_service_instance')

    def delete_service_instance(self, instance_id: str) -> None:
        self._delete(instance_id, SERVICE_INSTANCE_MARKER, 'delete_service_instance')

    def get_service_binding(self, binding_id: str) -> Optional[ServiceBinding]:
        data = self._get(binding_id, SERVICE_BINDING_MARKER, 'get_service_binding')
        return ServiceBinding.model_validate_json(data) if data else None

    def create_service_binding(self, binding: ServiceBinding) -> bool:
        return self._put(
            binding.binding_id, SERVICE_BINDING_MARKER, binding.model_dump_json(),
            'create_service_binding', if_absent=True
        )

    def delete_service_binding(self, binding_id: str) -> None:
        self._delete(binding_id, SERVICE_BINDING_MARKER, 'delete_service_binding')
