"""Open Service Broker operations backed by CloudFormation stacks."""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from aws_service_broker.config import BrokerOptions
from aws_service_broker.exceptions import (
    AsyncRequiredError, BadRequestError, ConflictError, InternalServerError, OutputNotFoundError
)
from aws_service_broker.logging_config import audit_logger
from aws_service_broker.models.instance import ServiceBinding, ServiceInstance, ServiceNeedsUpdate
from aws_service_broker.models.service_broker import (
    BindResponse, Catalog, DeprovisionResponse, LastOperationResponse, OperationState,
    ProvisionResponse, Service, UnbindResponse
)
from aws_service_broker.providers.base import CloudClients, StackDescription
from aws_service_broker.services.catalog import stack_parameter_value
from aws_service_broker.services.credentials import resolve_credentials
from aws_service_broker.services.policy import PolicyRequest, detach_policy, find_policy_arn
from aws_service_broker.services.validation import (
    collect_overrides, validate_bind_parameters, validate_provision_parameters
)
from aws_service_broker.storage.base import DataStore
from aws_service_broker.utils.cache import Cache, LISTINGS_KEY

logger = logging.getLogger(__name__)

REGION_PARAMETER = "region"
STACK_NAME_PREFIX = "aws-service-broker"
STACK_ID_MISSING_DESCRIPTION = (
    "CloudFormation stackid missing, chances are stack creation failed in an unexpected way"
)

_STACK_NAME_INVALID = re.compile(r'[^A-Za-z0-9-]')


def map_stack_status(status: str) -> OperationState:
    """Map a CloudFormation stack status onto a last-operation state."""
    if status.endswith('_IN_PROGRESS'):
        return OperationState.IN_PROGRESS
    if status.endswith('_FAILED') or status.endswith('ROLLBACK_COMPLETE'):
        return OperationState.FAILED
    if status.endswith('_COMPLETE'):
        return OperationState.SUCCEEDED

    logger.warning(f"Unknown CloudFormation stack status {status}, reporting in progress")
    return OperationState.IN_PROGRESS


def stack_name(service_name: str, instance_id: str) -> str:
    """CloudFormation stack name for an instance."""
    name = _STACK_NAME_INVALID.sub('-', f"{STACK_NAME_PREFIX}-{service_name}-{instance_id}")
    return name[:128]


def template_url(bucket: str, region: str, key: str, service_name: str) -> str:
    """S3 URL of the main template for a service."""
    prefix = key.strip('/')
    path = f"{prefix}/{service_name}-main.yaml" if prefix else f"{service_name}-main.yaml"
    if region == 'us-east-1':
        return f"https://s3.amazonaws.com/{bucket}/{path}"
    return f"https://s3.{region}.amazonaws.com/{bucket}/{path}"


class AwsBroker:
    """Broker operation state machine.

    Composes the catalog caches, the data store and per-region cloud clients.
    Every failure is translated into a BrokerError carrying the protocol status.
    """

    def __init__(
        self,
        options: BrokerOptions,
        db: DataStore,
        clients: CloudClients,
        catalog_cache: Optional[Cache] = None,
        listing_cache: Optional[Cache] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        """Initialize the broker.

        Args:
            options: Broker-wide settings
            db: Data store for definitions, instances and bindings
            clients: Per-region cloud client factories
            catalog_cache: Service definitions keyed by service name
            listing_cache: Catalog listing under ``LISTINGS_KEY``
            environ: Source of parameter override variables, defaults to ``os.environ``
        """
        self.options = options
        self.db = db
        self.clients = clients
        self.catalog_cache = catalog_cache if catalog_cache is not None else Cache("catalog")
        self.listing_cache = listing_cache if listing_cache is not None else Cache("listings")
        self.environ = os.environ if environ is None else environ

    # Lookups

    def _get_service(self, service_id: str) -> Service:
        try:
            service = self.db.get_service_definition(service_id)
        except Exception as e:
            logger.error(f"Failed to get service {service_id}: {e}")
            raise InternalServerError(
                f"Failed to get the service {service_id}: {e}",
                details={'service_id': service_id}, cause=e
            ) from e

        if service is None:
            raise BadRequestError(f"The service {service_id} was not found.", details={'service_id': service_id})
        return service

    def _get_instance(self, instance_id: str) -> Optional[ServiceInstance]:
        try:
            return self.db.get_service_instance(instance_id)
        except Exception as e:
            logger.error(f"Failed to get service instance {instance_id}: {e}")
            raise InternalServerError(
                f"Failed to get the service instance {instance_id}: {e}",
                details={'instance_id': instance_id}, cause=e
            ) from e

    def _get_binding(self, binding_id: str) -> Optional[ServiceBinding]:
        try:
            return self.db.get_service_binding(binding_id)
        except Exception as e:
            logger.error(f"Failed to get service binding {binding_id}: {e}")
            raise InternalServerError(
                f"Failed to get the service binding {binding_id}: {e}",
                details={'binding_id': binding_id}, cause=e
            ) from e

    def _region(self, instance: ServiceInstance) -> str:
        return str(instance.params.get(REGION_PARAMETER) or self.options.region)

    def _describe_stack(self, region: str, stack_id: str) -> StackDescription:
        try:
            return self.clients.stacks(region).describe_stack(stack_id)
        except Exception as e:
            logger.error(f"Failed to describe stack {stack_id}: {e}")
            raise InternalServerError(
                f"Failed to describe the CloudFormation stack {stack_id}: {e}",
                details={'stack_id': stack_id}, cause=e
            ) from e

    # Catalog

    def get_catalog(self) -> Catalog:
        """Return the catalog, persisting definitions the last refresh marked as changed."""
        listing, found = self.listing_cache.get(LISTINGS_KEY)
        if not found or not listing:
            logger.info("No catalog listing available yet")
            return Catalog()

        services: List[Service] = []
        entries: List[ServiceNeedsUpdate] = []
        changed = False

        for entry in listing:
            service, cached = self.catalog_cache.get(entry.name)
            if not cached:
                logger.warning(f"Service {entry.name} is listed but has no cached definition, skipping")
                entries.append(entry)
                continue

            if entry.update:
                try:
                    self.db.put_service_definition(service)
                except Exception as e:
                    logger.error(f"Failed to store service definition {entry.name}: {e}")
                    raise InternalServerError(
                        f"Failed to store the service definition {entry.name}: {e}",
                        details={'service_name': entry.name}, cause=e
                    ) from e
                logger.info(f"Stored updated service definition {entry.name}")
                entry = ServiceNeedsUpdate(name=entry.name, update=False)
                changed = True

            entries.append(entry)
            services.append(service)

        if changed and not self.listing_cache.replace(LISTINGS_KEY, listing, entries):
            # A refresh replaced the listing meanwhile; its flags stand.
            logger.debug("Catalog listing changed during read, keeping the newer listing")

        return Catalog(services=services)

    # Instances

    def provision(
        self,
        instance_id: str,
        service_id: str,
        plan_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        accepts_incomplete: bool = False,
        user_id: Optional[str] = None
    ) -> ProvisionResponse:
        """Provision a service instance by creating its CloudFormation stack."""
        if not accepts_incomplete:
            raise AsyncRequiredError()

        logger.info(f"Provisioning instance {instance_id} of service {service_id}, plan {plan_id}")

        service = self._get_service(service_id)
        plan = service.get_plan(plan_id)
        if plan is None:
            raise BadRequestError(f"The service plan {plan_id} was not found.", details={'plan_id': plan_id})

        schema = plan.create_parameters_schema()
        overrides = collect_overrides(
            self.options.broker_id, service.name, plan.name, schema,
            global_overrides=self.options.global_overrides, environ=self.environ
        )
        params = validate_provision_parameters(
            schema, parameters or {}, overrides, self.options.prescribe_overrides
        )

        instance = ServiceInstance(
            instance_id=instance_id, service_id=service_id, plan_id=plan_id, params=params
        )

        existing = self._get_instance(instance_id)
        if existing is not None:
            return self._replay_provision(existing, instance)

        try:
            reserved = self.db.create_service_instance(instance)
        except Exception as e:
            logger.error(f"Failed to reserve service instance {instance_id}: {e}")
            raise InternalServerError(
                f"Failed to store the service instance {instance_id}: {e}",
                details={'instance_id': instance_id}, cause=e
            ) from e

        if not reserved:
            existing = self._get_instance(instance_id)
            if existing is None:
                raise InternalServerError(
                    f"Failed to store the service instance {instance_id}: record changed concurrently",
                    details={'instance_id': instance_id}
                )
            return self._replay_provision(existing, instance)

        region = self._region(instance)
        stack_parameters = dict(plan.parameter_values)
        stack_parameters.update({
            k: stack_parameter_value(v) for k, v in params.items() if k != REGION_PARAMETER
        })
        tags = {
            'ServiceBrokerId': self.options.broker_id,
            'ServiceBrokerInstanceId': instance_id,
            'ServiceName': service.name,
            'ServicePlan': plan.name,
        }

        try:
            stack_id = self.clients.stacks(region).create_stack(
                stack_name(service.name, instance_id),
                template_url(self.options.s3_bucket, self.options.s3_region, self.options.s3_key, service.name),
                stack_parameters,
                tags
            )
        except Exception as e:
            logger.error(f"Failed to create stack for instance {instance_id}: {e}")
            self._release_reservation(instance_id)
            raise InternalServerError(
                f"Failed to create the CloudFormation stack: {e}",
                details={'instance_id': instance_id}, cause=e
            ) from e

        instance.stack_id = stack_id
        instance.updated_at = datetime.now(timezone.utc)
        try:
            self.db.update_service_instance(instance)
        except Exception as e:
            logger.error(f"Failed to store stack id for instance {instance_id}: {e}")
            self._abandon_stack(region, stack_id)
            self._release_reservation(instance_id)
            raise InternalServerError(
                f"Failed to store the service instance {instance_id}: {e}",
                details={'instance_id': instance_id, 'stack_id': stack_id}, cause=e
            ) from e

        audit_logger.log_broker_operation(
            instance_id, "provision", user_id,
            {'service': service.name, 'plan': plan.name, 'stack_id': stack_id, 'region': region}
        )
        return ProvisionResponse(is_async=True)

    def _replay_provision(self, existing: ServiceInstance, requested: ServiceInstance) -> ProvisionResponse:
        if existing.matches(requested):
            logger.info(f"Instance {requested.instance_id} already provisioned with the same attributes")
            return ProvisionResponse(is_async=True)
        raise ConflictError(
            f"Service instance {requested.instance_id} already exists but with different attributes.",
            details={'instance_id': requested.instance_id}
        )

    def _release_reservation(self, instance_id: str) -> None:
        try:
            self.db.delete_service_instance(instance_id)
        except Exception as e:
            logger.error(f"Failed to release reservation for instance {instance_id}: {e}")

    def _abandon_stack(self, region: str, stack_id: str) -> None:
        try:
            self.clients.stacks(region).delete_stack(stack_id)
        except Exception as e:
            logger.error(f"Failed to delete unrecorded stack {stack_id}: {e}")

    def deprovision(
        self,
        instance_id: str,
        accepts_incomplete: bool = False,
        user_id: Optional[str] = None
    ) -> DeprovisionResponse:
        """Request deletion of an instance's stack.

        Unknown instances, and instances without a stack, succeed synchronously.
        """
        instance = self._get_instance(instance_id)
        if instance is None or not instance.stack_id:
            logger.info(f"Instance {instance_id} has no stack, nothing to deprovision")
            return DeprovisionResponse(is_async=False)

        if not accepts_incomplete:
            raise AsyncRequiredError()

        region = self._region(instance)
        try:
            self.clients.stacks(region).delete_stack(instance.stack_id)
        except Exception as e:
            logger.error(f"Failed to delete stack {instance.stack_id}: {e}")
            raise InternalServerError(
                f"Failed to delete the CloudFormation stack {instance.stack_id}: {e}",
                details={'instance_id': instance_id, 'stack_id': instance.stack_id}, cause=e
            ) from e

        audit_logger.log_broker_operation(
            instance_id, "deprovision", user_id, {'stack_id': instance.stack_id, 'region': region}
        )
        return DeprovisionResponse(is_async=True)

    def last_operation(self, instance_id: str) -> LastOperationResponse:
        """Report the state of the instance's most recent stack operation."""
        instance = self._get_instance(instance_id)
        if instance is None or not instance.stack_id:
            return LastOperationResponse(
                state=OperationState.FAILED, description=STACK_ID_MISSING_DESCRIPTION
            )

        stack = self._describe_stack(self._region(instance), instance.stack_id)
        state = map_stack_status(stack.status)
        logger.debug(f"Stack {instance.stack_id} is {stack.status}")

        if stack.status == 'DELETE_COMPLETE':
            try:
                self.db.delete_service_instance(instance_id)
            except Exception as e:
                logger.error(f"Failed to delete service instance {instance_id}: {e}")
                raise InternalServerError(
                    f"Failed to delete the service instance {instance_id}: {e}",
                    details={'instance_id': instance_id}, cause=e
                ) from e
            logger.info(f"Removed record of deleted instance {instance_id}")

        description = stack.status_reason if state == OperationState.FAILED else None
        return LastOperationResponse(state=state, description=description)

    # Bindings

    def bind(
        self,
        binding_id: str,
        instance_id: str,
        service_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> BindResponse:
        """Issue credentials for an instance, attaching a scoped policy when a role is named."""
        params = validate_bind_parameters(parameters or {})
        policy_request = PolicyRequest.from_parameters(params)

        binding = ServiceBinding(
            binding_id=binding_id,
            instance_id=instance_id,
            role_name=policy_request.role_name,
            scope=policy_request.scope
        )

        existing = self._get_binding(binding_id)
        if existing is not None:
            return self._replay_bind(existing, binding)

        service = self._get_service(service_id)

        instance = self._get_instance(instance_id)
        if instance is None:
            raise BadRequestError(
                f"The service instance {instance_id} was not found.", details={'instance_id': instance_id}
            )
        if not instance.stack_id:
            raise BadRequestError(
                f"The service instance {instance_id} has no CloudFormation stack yet.",
                details={'instance_id': instance_id}
            )

        region = self._region(instance)
        stack = self._describe_stack(region, instance.stack_id)

        try:
            credentials = resolve_credentials(stack.outputs, service.name, self.clients.secrets(region))
        except Exception as e:
            logger.error(f"Failed to resolve credentials for stack {instance.stack_id}: {e}")
            raise InternalServerError(
                f"Failed to get the credentials from CloudFormation stack {instance.stack_id}: {e}",
                details={'stack_id': instance.stack_id}, cause=e
            ) from e

        if policy_request.role_name:
            try:
                policy_arn = find_policy_arn(stack.outputs, policy_request.scope)
            except OutputNotFoundError as e:
                raise BadRequestError(
                    f"The CloudFormation stack {instance.stack_id} does not support binding "
                    f"with scope '{policy_request.scope}': {e}",
                    details={'stack_id': instance.stack_id, 'scope': policy_request.scope}, cause=e
                ) from e

            try:
                self.clients.identity(region).attach_role_policy(policy_request.role_name, policy_arn)
            except Exception as e:
                logger.error(f"Failed to attach policy {policy_arn} to role {policy_request.role_name}: {e}")
                raise InternalServerError(
                    f"Failed to attach the policy {policy_arn} to role {policy_request.role_name}: {e}",
                    details={'policy_arn': policy_arn, 'role_name': policy_request.role_name}, cause=e
                ) from e
            binding.policy_arn = policy_arn

        binding.credentials = credentials
        try:
            created = self.db.create_service_binding(binding)
        except Exception as e:
            logger.error(f"Failed to store service binding {binding_id}: {e}")
            self._rollback_policy(region, binding)
            raise InternalServerError(
                f"Failed to store the service binding {binding_id}: {e}",
                details={'binding_id': binding_id}, cause=e
            ) from e

        if not created:
            existing = self._get_binding(binding_id)
            if existing is None or not existing.matches(binding):
                # A matching stored binding owns the same attachment
                self._rollback_policy(region, binding)
            if existing is None:
                raise InternalServerError(
                    f"Failed to store the service binding {binding_id}: record changed concurrently",
                    details={'binding_id': binding_id}
                )
            return self._replay_bind(existing, binding)

        audit_logger.log_broker_operation(
            instance_id, "bind", user_id,
            {'binding_id': binding_id, 'role_name': binding.role_name, 'scope': binding.scope}
        )
        return BindResponse(credentials=credentials)

    def _replay_bind(self, existing: ServiceBinding, requested: ServiceBinding) -> BindResponse:
        if existing.matches(requested):
            logger.info(f"Binding {requested.binding_id} already exists with the same attributes")
            return BindResponse(credentials=existing.credentials, exists=True)
        raise ConflictError(
            f"Service binding {requested.binding_id} already exists but with different attributes.",
            details={'binding_id': requested.binding_id}
        )

    def _rollback_policy(self, region: str, binding: ServiceBinding) -> None:
        if not binding.policy_arn:
            return
        try:
            detach_policy(self.clients.identity(region), binding.role_name, binding.policy_arn)
        except Exception as e:
            logger.error(f"Failed to detach policy {binding.policy_arn} from role {binding.role_name}: {e}")

    def unbind(self, binding_id: str, user_id: Optional[str] = None) -> UnbindResponse:
        """Detach the binding's policy, if any, and forget the binding."""
        binding = self._get_binding(binding_id)
        if binding is None:
            logger.info(f"Binding {binding_id} not found, nothing to unbind")
            return UnbindResponse()

        if binding.policy_arn and binding.role_name:
            try:
                detach_policy(self.clients.identity(self.options.region), binding.role_name, binding.policy_arn)
            except Exception as e:
                logger.error(f"Failed to detach policy {binding.policy_arn} from role {binding.role_name}: {e}")
                raise InternalServerError(
                    f"Failed to detach the policy {binding.policy_arn} from role {binding.role_name}: {e}",
                    details={'policy_arn': binding.policy_arn, 'role_name': binding.role_name}, cause=e
                ) from e

        try:
            self.db.delete_service_binding(binding_id)
        except Exception as e:
            logger.error(f"Failed to delete service binding {binding_id}: {e}")
            raise InternalServerError(
                f"Failed to delete the service binding {binding_id}: {e}",
                details={'binding_id': binding_id}, cause=e
            ) from e

        audit_logger.log_broker_operation(
            binding.instance_id, "unbind", user_id, {'binding_id': binding_id}
        )
        return UnbindResponse()
