"""Scope-based IAM policy attachment for service bindings."""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from aws_service_broker.exceptions import OutputNotFoundError
from aws_service_broker.providers.base import IdentityProvider
from aws_service_broker.services.credentials import POLICY_ARN_OUTPUT
from aws_service_broker.services.validation import BIND_PARAM_ROLE_NAME, BIND_PARAM_SCOPE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyRequest:
    """Role and scope requested by a bind call."""
    role_name: str = ""
    scope: str = ""

    @classmethod
    def from_parameters(cls, parameters: Dict[str, Any]) -> 'PolicyRequest':
        """Build from validated bind parameters (keys already in schema spelling)."""
        return cls(
            role_name=str(parameters.get(BIND_PARAM_ROLE_NAME) or ""),
            scope=str(parameters.get(BIND_PARAM_SCOPE) or "")
        )


def find_policy_arn(outputs: Dict[str, str], scope: str = "") -> str:
    """Return the policy ARN a stack publishes for ``scope``."""
    output_key = f"{POLICY_ARN_OUTPUT}{scope}"
    policy_arn = outputs.get(output_key)
    if not policy_arn:
        raise OutputNotFoundError(output_key)
    return policy_arn


def detach_policy(identity: IdentityProvider, role_name: str, policy_arn: str) -> None:
    if not identity.detach_role_policy(role_name, policy_arn):
        logger.info(f"Policy {policy_arn} already detached from role {role_name}")
