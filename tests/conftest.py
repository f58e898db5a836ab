"""Pytest configuration and fixtures."""

import pytest
import tempfile
import os
from typing import Dict, List, Optional
from unittest.mock import Mock

from aws_service_broker.config import BrokerOptions, Config, DatabaseConfig
from aws_service_broker.models.instance import ServiceBinding, ServiceInstance
from aws_service_broker.models.service_broker import Service, ServicePlan
from aws_service_broker.providers.base import (
    CloudClients, IdentityProvider, ParameterLookupResult, SecretProvider,
    StackDescription, StackProvider
)
from aws_service_broker.services.broker import AwsBroker
from aws_service_broker.storage.base import DataStore
from aws_service_broker.utils.cache import Cache

ERROR_ID = "err"
TEST_FAILURE = "test failure"


class FakeDataStore(DataStore):
    """In-memory data store. Any record with ID ``err`` fails to load."""

    def __init__(self):
        self.services: Dict[str, Service] = {}
        self.instances: Dict[str, ServiceInstance] = {}
        self.bindings: Dict[str, ServiceBinding] = {}

    @staticmethod
    def _check(record_id: str):
        if record_id == ERROR_ID:
            raise RuntimeError(TEST_FAILURE)

    def get_service_definition(self, service_id):
        self._check(service_id)
        return self.services.get(service_id)

    def put_service_definition(self, service):
        self.services[service.id] = service

    def get_service_instance(self, instance_id):
        self._check(instance_id)
        return self.instances.get(instance_id)

    def create_service_instance(self, instance):
        if instance.instance_id in self.instances:
            return False
        self.instances[instance.instance_id] = instance.model_copy(deep=True)
        return True

    def update_service_instance(self, instance):
        self.instances[instance.instance_id] = instance.model_copy(deep=True)

    def delete_service_instance(self, instance_id):
        self.instances.pop(instance_id, None)

    def get_service_binding(self, binding_id):
        self._check(binding_id)
        return self.bindings.get(binding_id)

    def create_service_binding(self, binding):
        if binding.binding_id in self.bindings:
            return False
        self.bindings[binding.binding_id] = binding.model_copy(deep=True)
        return True

    def delete_service_binding(self, binding_id):
        self.bindings.pop(binding_id, None)


class FakeStackProvider(StackProvider):
    """Stack provider returning a configurable description. Stack ``err`` fails."""

    def __init__(self, status: str = "CREATE_COMPLETE", outputs: Optional[Dict[str, str]] = None,
                 status_reason: Optional[str] = None):
        self.status = status
        self.status_reason = status_reason
        self.outputs = outputs or {}
        self.fail_create = False
        self.fail_delete = False
        self.created: List[Dict] = []
        self.deleted: List[str] = []

    def create_stack(self, stack_name, template_url, parameters, tags):
        if self.fail_create:
            raise RuntimeError(TEST_FAILURE)
        self.created.append({
            'stack_name': stack_name,
            'template_url': template_url,
            'parameters': parameters,
            'tags': tags
        })
        return f"arn:aws:cloudformation:us-east-1:123456789012:stack/{stack_name}/1"

    def delete_stack(self, stack_id):
        if self.fail_delete:
            raise RuntimeError(TEST_FAILURE)
        self.deleted.append(stack_id)

    def describe_stack(self, stack_id):
        if stack_id == ERROR_ID:
            raise RuntimeError(TEST_FAILURE)
        return StackDescription(
            stack_id=stack_id,
            status=self.status,
            status_reason=self.status_reason,
            outputs=dict(self.outputs)
        )


class FakeSecretProvider(SecretProvider):
    """Secret provider backed by a dict; unknown names are reported invalid."""

    def __init__(self, params: Optional[Dict[str, str]] = None):
        self.params = params or {}
        self.calls: List[List[str]] = []

    def get_parameters(self, names):
        self.calls.append(list(names))
        return ParameterLookupResult(
            values={n: self.params[n] for n in names if n in self.params},
            invalid_parameters=[n for n in names if n not in self.params]
        )


def _attach_role_policy(role_name, policy_arn):
    if policy_arn == ERROR_ID:
        raise RuntimeError(TEST_FAILURE)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def test_config(temp_db):
    """Create test configuration."""
    config = Config()
    config.database = DatabaseConfig(
        type="sqlite",
        sqlite_path=temp_db
    )
    config.api.debug = True
    config.logging.level = "DEBUG"
    return config


@pytest.fixture
def test_service():
    """Service with one plan requiring ``req_param``."""
    return Service(
        id="test-service-id",
        name="test-service-name",
        plans=[
            ServicePlan(
                id="test-plan-id",
                name="test-plan-name",
                schemas={
                    'service_instance': {
                        'create': {
                            'parameters': {
                                '$schema': 'http://json-schema.org/draft-06/schema#',
                                'type': 'object',
                                'required': ['req_param'],
                                'properties': {
                                    'req_param': {'type': 'string', 'required': True},
                                    'override_param': {'type': 'string'},
                                    'region': {'type': 'string'},
                                },
                            }
                        }
                    }
                },
                parameter_values={'PlanParam': 'fixed'}
            )
        ]
    )


@pytest.fixture
def data_store(test_service):
    """Fake data store seeded with a service, two instances and a binding."""
    store = FakeDataStore()
    store.put_service_definition(test_service)
    store.put_service_definition(Service(id="noplan", name="noplan"))
    store.instances["exists"] = ServiceInstance(
        instance_id="exists",
        service_id="test-service-id",
        plan_id="test-plan-id",
        params={'req_param': 'existing', 'override_param': 'some_value'},
        stack_id="an-id"
    )
    store.instances["err-stack"] = ServiceInstance(
        instance_id="err-stack",
        service_id="test-service-id",
        plan_id="test-plan-id",
        stack_id=ERROR_ID
    )
    store.bindings["exists"] = ServiceBinding(binding_id="exists", instance_id="exists")
    return store


@pytest.fixture
def stack_provider():
    return FakeStackProvider()


@pytest.fixture
def secret_provider():
    return FakeSecretProvider()


@pytest.fixture
def identity_provider():
    """Mock IAM provider. Attaching the policy ``err`` fails."""
    identity = Mock(spec=IdentityProvider)
    identity.attach_role_policy.side_effect = _attach_role_policy
    identity.detach_role_policy.return_value = True
    return identity


@pytest.fixture
def cloud_clients(stack_provider, secret_provider, identity_provider):
    return CloudClients(
        stacks=lambda region: stack_provider,
        secrets=lambda region: secret_provider,
        identity=lambda region: identity_provider,
    )


@pytest.fixture
def broker_options():
    return BrokerOptions(
        table_name="testtable",
        s3_bucket="abucket",
        s3_region="us-east-1",
        s3_key="tempates/test",
        region="us-east-1",
        broker_id="awsservicebroker",
        prescribe_overrides=True,
        global_overrides={'override_param': 'some_value'}
    )


@pytest.fixture
def broker(broker_options, data_store, cloud_clients):
    """Broker wired to in-memory fakes."""
    return AwsBroker(
        options=broker_options,
        db=data_store,
        clients=cloud_clients,
        catalog_cache=Cache("catalog"),
        listing_cache=Cache("listings"),
        environ={}
    )
