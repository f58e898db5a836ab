"""Abstract base class for broker state storage."""

from abc import ABC, abstractmethod
from typing import Optional

from aws_service_broker.models.instance import ServiceInstance, ServiceBinding
from aws_service_broker.models.service_broker import Service


class DataStore(ABC):
    """Abstract interface for service definition, instance and binding storage.

    Lookups return None for a missing record. Any backend failure is raised as
    StorageError. ``create_*`` methods are atomic put-if-absent operations and
    return False when a record with the same ID already exists.
    """

    def initialize(self) -> None:
        """Prepare the storage backend."""

    def close(self) -> None:
        """Close storage connections."""

    @abstractmethod
    def get_service_definition(self, service_id: str) -> Optional[Service]:
        """Retrieve a service definition by ID."""
        pass

    @abstractmethod
    def put_service_definition(self, service: Service) -> None:
        """Create or replace a service definition."""
        pass

    @abstractmethod
    def get_service_instance(self, instance_id: str) -> Optional[ServiceInstance]:
        """Retrieve a service instance by ID."""
        pass

    @abstractmethod
    def create_service_instance(self, instance: ServiceInstance) -> bool:
        """Store a new service instance unless one with the same ID exists."""
        pass

    @abstractmethod
    def update_service_instance(self, instance: ServiceInstance) -> None:
        """Create or replace a service instance."""
        pass

    @abstractmethod
    def delete_service_instance(self, instance_id: str) -> None:
        """Delete a service instance; deleting a missing record is not an error."""
        pass

    @abstractmethod
    def get_service_binding(self, binding_id: str) -> Optional[ServiceBinding]:
        """Retrieve a service binding by ID."""
        pass

    @abstractmethod
    def create_service_binding(self, binding: ServiceBinding) -> bool:
        """Store a new service binding unless one with the same ID exists."""
        pass

    @abstractmethod
    def delete_service_binding(self, binding_id: str) -> None:
        """Delete a service binding; deleting a missing record is not an error."""
        pass
