"""Credential resolution: turns CloudFormation stack outputs into binding credentials.

Newer templates emit ``ssm:``-prefixed outputs that point at SSM parameters.
Older templates emit the raw parameter path in ``UserKeyId``/``UserSecretKey``
outputs. Both forms are resolved, together, in a single lookup.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Union

from aws_service_broker.exceptions import CredentialResolutionError
from aws_service_broker.providers.base import SecretProvider

logger = logging.getLogger(__name__)

SSM_PREFIX = "ssm:"
POLICY_ARN_OUTPUT = "PolicyArn"
LEGACY_CREDENTIAL_OUTPUTS = {
    "UserKeyId": "USER_KEY_ID",
    "UserSecretKey": "USER_SECRET_KEY",
}

_FIRST_CAP = re.compile(r'(.)([A-Z][a-z]+)')
_ALL_CAP = re.compile(r'([a-z0-9])([A-Z])')


@dataclass(frozen=True)
class LiteralValue:
    """An output value issued as-is."""
    value: str


@dataclass(frozen=True)
class SecretRef:
    """An output value naming an SSM parameter that holds the real value."""
    path: str


OutputValue = Union[LiteralValue, SecretRef]


@dataclass(frozen=True)
class CredentialOutput:
    """A stack output mapped to the credential key it is issued under."""
    output_key: str
    credential_key: str
    value: OutputValue


def to_env_var(name: str) -> str:
    """Convert a CamelCase output key to an UPPER_SNAKE credential key."""
    return _ALL_CAP.sub(r'\1_\2', _FIRST_CAP.sub(r'\1_\2', name)).upper()


def is_policy_output(output_key: str) -> bool:
    return output_key.startswith(POLICY_ARN_OUTPUT)


def parse_output(output_key: str, value: str, service_name: str) -> CredentialOutput:
    """Classify a single stack output."""
    if output_key in LEGACY_CREDENTIAL_OUTPUTS:
        path = value[len(SSM_PREFIX):] if value.startswith(SSM_PREFIX) else value
        return CredentialOutput(
            output_key=output_key,
            credential_key=f"{service_name.upper()}_{LEGACY_CREDENTIAL_OUTPUTS[output_key]}",
            value=SecretRef(path)
        )

    if value.startswith(SSM_PREFIX):
        return CredentialOutput(output_key, to_env_var(output_key), SecretRef(value[len(SSM_PREFIX):]))

    return CredentialOutput(output_key, to_env_var(output_key), LiteralValue(value))


def parse_outputs(outputs: Dict[str, str], service_name: str) -> List[CredentialOutput]:
    """Classify every credential-bearing output; scope policy outputs are skipped."""
    return [
        parse_output(key, value, service_name)
        for key, value in outputs.items()
        if not is_policy_output(key)
    ]


def resolve_credentials(
    outputs: Dict[str, str],
    service_name: str,
    secrets: SecretProvider
) -> Dict[str, str]:
    """Build the credential mapping for a stack.

    Raises CredentialResolutionError naming every SSM path that could not be
    resolved; no partial mapping is returned.
    """
    parsed = parse_outputs(outputs, service_name)

    paths: List[str] = []
    for output in parsed:
        if isinstance(output.value, SecretRef) and output.value.path not in paths:
            paths.append(output.value.path)

    resolved: Dict[str, str] = {}
    if paths:
        logger.debug(f"Resolving {len(paths)} SSM parameters")
        result = secrets.get_parameters(paths)
        missing = [p for p in paths if p in result.invalid_parameters or p not in result.values]
        if missing:
            raise CredentialResolutionError(missing)
        resolved = result.values

    credentials = {}
    for output in parsed:
        if isinstance(output.value, SecretRef):
            credentials[output.credential_key] = resolved[output.value.path]
        else:
            credentials[output.credential_key] = output.value.value
    return credentials
