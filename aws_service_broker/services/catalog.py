"""Catalog construction from CloudFormation templates.

Each template carries an ``AWS::ServiceBroker::Specification`` block in its
``Metadata`` describing the service and its plans. Template parameters become
the plan's create schema, minus the ones a plan fixes in ``ParameterValues``.
"""

import logging
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional

import yaml

from aws_service_broker.exceptions import TemplateError
from aws_service_broker.models.instance import ServiceNeedsUpdate
from aws_service_broker.models.service_broker import Service, ServicePlan
from aws_service_broker.providers.base import TemplateSource
from aws_service_broker.services.validation import BIND_PARAMETERS_SCHEMA
from aws_service_broker.utils.cache import Cache, LISTINGS_KEY

logger = logging.getLogger(__name__)

SPECIFICATION_METADATA = "AWS::ServiceBroker::Specification"
JSON_SCHEMA = "http://json-schema.org/draft-06/schema#"


class CloudFormationLoader(yaml.SafeLoader):
    """SafeLoader that accepts CloudFormation short-form intrinsic tags."""


def _construct_intrinsic(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Dict[str, Any]:
    if tag_suffix in ('Ref', 'Condition'):
        name = tag_suffix
    else:
        name = f"Fn::{tag_suffix}"

    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {name: value}


CloudFormationLoader.add_multi_constructor('!', _construct_intrinsic)


def load_template(body: str, template_name: Optional[str] = None) -> Dict[str, Any]:
    """Parse a YAML or JSON CloudFormation template."""
    try:
        template = yaml.load(body, Loader=CloudFormationLoader)
    except yaml.YAMLError as e:
        raise TemplateError(f"Failed to parse template: {e}", template_name=template_name) from e

    if not isinstance(template, dict):
        raise TemplateError("Template is not a mapping", template_name=template_name)
    return template


def stack_parameter_value(value: Any) -> str:
    """Render a parameter value the way CloudFormation expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def _schema_type(parameter_type: str) -> Dict[str, Any]:
    if parameter_type == 'Number':
        return {'type': 'number'}
    if parameter_type == 'CommaDelimitedList' or parameter_type.startswith('List<'):
        return {'type': 'array', 'items': {'type': 'string'}}
    return {'type': 'string'}


def _parameter_property(definition: Mapping[str, Any]) -> Dict[str, Any]:
    prop = _schema_type(str(definition.get('Type', 'String')))
    if definition.get('Description'):
        prop['description'] = definition['Description']
    if 'Default' in definition:
        prop['default'] = definition['Default']
    if definition.get('AllowedValues'):
        prop['enum'] = list(definition['AllowedValues'])
    return prop


def build_create_schema(parameters: Mapping[str, Any], fixed: Mapping[str, Any]) -> Dict[str, Any]:
    """JSON schema for instance creation: every template parameter the plan does not fix."""
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for name, definition in parameters.items():
        if name in fixed:
            continue
        definition = definition or {}
        properties[name] = _parameter_property(definition)
        if 'Default' not in definition:
            required.append(name)

    properties['region'] = {
        'type': 'string',
        'description': 'AWS region to deploy the stack in, defaults to the broker region'
    }

    schema: Dict[str, Any] = {
        '$schema': JSON_SCHEMA,
        'type': 'object',
        'properties': properties,
    }
    if required:
        schema['required'] = required
    return schema


def service_id(broker_id: str, service_name: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{broker_id}.{service_name}"))


def plan_id(broker_id: str, service_name: str, plan_name: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{broker_id}.{service_name}.{plan_name}"))


def _compact(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def build_service_definition(body: str, broker_id: str, template_name: Optional[str] = None) -> Service:
    """Build a catalog service from a template body."""
    template = load_template(body, template_name)
    spec = (template.get('Metadata') or {}).get(SPECIFICATION_METADATA)
    if not isinstance(spec, dict):
        raise TemplateError(f"Template has no {SPECIFICATION_METADATA} metadata", template_name=template_name)

    name = spec.get('Name') or template_name
    if not name:
        raise TemplateError("Service specification has no Name", template_name=template_name)
    name = str(name)

    parameters = template.get('Parameters') or {}
    plans = []
    for plan_name, plan_spec in (spec.get('ServicePlans') or {}).items():
        plan_spec = plan_spec or {}
        fixed = {k: stack_parameter_value(v) for k, v in (plan_spec.get('ParameterValues') or {}).items()}
        plans.append(ServicePlan(
            id=plan_id(broker_id, name, str(plan_name)),
            name=str(plan_name),
            description=str(plan_spec.get('Description') or ''),
            free=not plan_spec.get('Cost'),
            bindable=True,
            metadata=_compact({
                'displayName': plan_spec.get('DisplayName'),
                'longDescription': plan_spec.get('LongDescription'),
                'cost': plan_spec.get('Cost'),
            }),
            schemas={
                'service_instance': {'create': {'parameters': build_create_schema(parameters, fixed)}},
                'service_binding': {'create': {'parameters': BIND_PARAMETERS_SCHEMA}},
            },
            parameter_values=fixed
        ))

    if not plans:
        raise TemplateError(f"Service {name} declares no ServicePlans", template_name=template_name)

    return Service(
        id=service_id(broker_id, name),
        name=name,
        description=str(template.get('Description') or spec.get('LongDescription') or ''),
        bindable=True,
        plan_updateable=False,
        plans=plans,
        tags=[str(t) for t in spec.get('Tags') or []] or None,
        metadata=_compact({
            'displayName': spec.get('DisplayName'),
            'longDescription': spec.get('LongDescription'),
            'imageUrl': spec.get('ImageUrl'),
            'documentationUrl': spec.get('DocumentationUrl'),
            'providerDisplayName': spec.get('ProviderDisplayName'),
        })
    )


class CatalogRefresher:
    """Rebuilds the catalog caches from the template source."""

    def __init__(
        self,
        template_source: TemplateSource,
        catalog_cache: Cache,
        listing_cache: Cache,
        broker_id: str
    ):
        self.template_source = template_source
        self.catalog_cache = catalog_cache
        self.listing_cache = listing_cache
        self.broker_id = broker_id
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def refresh(self) -> List[Service]:
        """Rebuild definitions and the listing.

        A service is flagged for update when its definition changed, or when a
        previous flag has not been consumed yet. Templates that are not broker
        templates are skipped.
        """
        previous, _ = self.listing_cache.get(LISTINGS_KEY)
        pending = {entry.name for entry in previous or [] if entry.update}

        services = []
        listing = []
        for template_name in self.template_source.list_templates():
            try:
                service = build_service_definition(
                    self.template_source.get_template(template_name), self.broker_id, template_name
                )
            except TemplateError as e:
                logger.warning(f"Skipping template {template_name}: {e}")
                continue

            cached, found = self.catalog_cache.get(service.name)
            update = not found or cached != service or service.name in pending
            self.catalog_cache.set(service.name, service)
            listing.append(ServiceNeedsUpdate(name=service.name, update=update))
            services.append(service)

        self.listing_cache.set(LISTINGS_KEY, listing)
        logger.info(f"Catalog refreshed with {len(services)} services")
        return services

    def start(self, interval: float) -> None:
        """Refresh every ``interval`` seconds on a background thread."""
        if self._thread is not None:
            return

        def run():
            while not self._stop.wait(interval):
                try:
                    self.refresh()
                except Exception as e:
                    logger.error(f"Catalog refresh failed: {e}", exc_info=True)

        self._stop.clear()
        self._thread = threading.Thread(target=run, name="catalog-refresh", daemon=True)
        self._thread.start()
        logger.info(f"Catalog refresh scheduled every {interval} seconds")

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
