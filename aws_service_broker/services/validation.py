"""Request parameter validation against plan input schemas."""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from aws_service_broker.exceptions import BadRequestError

logger = logging.getLogger(__name__)

BIND_PARAM_ROLE_NAME = "RoleName"
BIND_PARAM_SCOPE = "Scope"

BIND_PARAMETERS_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-06/schema#",
    "type": "object",
    "properties": {
        BIND_PARAM_ROLE_NAME: {
            "type": "string",
            "description": "IAM role to attach the scoped access policy to"
        },
        BIND_PARAM_SCOPE: {
            "type": "string",
            "description": "Access scope of the attached policy, for example ReadOnly or ReadWrite"
        },
    },
}


def available_parameters(schema: Mapping[str, Any]) -> List[str]:
    """Parameter names declared by a schema, in declaration order."""
    return list((schema.get('properties') or {}).keys())


def required_parameters(schema: Mapping[str, Any]) -> List[str]:
    """Required parameter names: the top-level ``required`` list plus properties flagged required."""
    required = [name for name in schema.get('required') or []]
    for name, prop in (schema.get('properties') or {}).items():
        if isinstance(prop, Mapping) and prop.get('required') is True and name not in required:
            required.append(name)
    return required


def parameter_defaults(schema: Mapping[str, Any]) -> Dict[str, Any]:
    """Default values declared by schema properties."""
    defaults = {}
    for name, prop in (schema.get('properties') or {}).items():
        if isinstance(prop, Mapping) and 'default' in prop:
            defaults[name] = prop['default']
    return defaults


def collect_overrides(
    broker_id: str,
    service_name: str,
    plan_name: str,
    schema: Mapping[str, Any],
    global_overrides: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """Collect broker-enforced values for the parameters a schema declares.

    Global overrides apply first, then environment variables named
    ``PARAM_OVERRIDE_<broker>_<service|all>_<plan|all>_<param>``, most specific last.
    """
    environ = os.environ if environ is None else environ
    available = available_parameters(schema)

    overrides = {
        k: v for k, v in (global_overrides or {}).items() if k in available
    }
    for param in available:
        for service in ('all', service_name):
            for plan in ('all', plan_name):
                value = environ.get(f"PARAM_OVERRIDE_{broker_id}_{service}_{plan}_{param}")
                if value:
                    overrides[param] = value
    return overrides


def validate_provision_parameters(
    schema: Mapping[str, Any],
    parameters: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
    prescribe_overrides: bool = False
) -> Dict[str, Any]:
    """Validate caller parameters against a create schema and return the merged mapping.

    The merged mapping starts from schema defaults, then overrides, then caller
    values. With ``prescribe_overrides`` an overridden key keeps the override value.
    """
    available = available_parameters(schema)
    for key in parameters:
        if key not in available:
            raise BadRequestError(f"The parameter {key} is not available.", details={'parameter': key})

    overrides = {k: v for k, v in (overrides or {}).items() if k in available}

    merged = parameter_defaults(schema)
    merged.update(overrides)
    for key, value in parameters.items():
        if prescribe_overrides and key in overrides:
            logger.debug(f"Ignoring caller value for prescribed parameter {key}")
            continue
        merged[key] = value

    for key in required_parameters(schema):
        if key not in merged:
            raise BadRequestError(f"The parameter {key} is required.", details={'parameter': key})

    return merged


def validate_bind_parameters(
    parameters: Mapping[str, Any],
    schema: Mapping[str, Any] = BIND_PARAMETERS_SCHEMA
) -> Dict[str, Any]:
    """Validate bind parameters, matching names case-insensitively.

    Returns the parameters keyed by their schema spelling.
    """
    canonical = {name.lower(): name for name in available_parameters(schema)}
    normalized = {}
    for key, value in parameters.items():
        name = canonical.get(key.lower())
        if name is None:
            raise BadRequestError(f"The parameter {key} is not supported.", details={'parameter': key})
        normalized[name] = value

    for key in required_parameters(schema):
        if key not in normalized:
            raise BadRequestError(f"The parameter {key} is required.", details={'parameter': key})

    return normalized
