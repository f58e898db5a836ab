"""Abstract base classes for the cloud capabilities the broker depends on."""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass, field


@dataclass
class StackDescription:
    """Current state of a CloudFormation stack."""
    stack_id: str
    status: str
    status_reason: Optional[str] = None
    outputs: Dict[str, str] = field(default_factory=dict)


@dataclass
class ParameterLookupResult:
    """Result of a batched secret-store lookup."""
    values: Dict[str, str] = field(default_factory=dict)
    invalid_parameters: List[str] = field(default_factory=list)


class StackProvider(ABC):
    """Stack lifecycle operations."""

    @abstractmethod
    def create_stack(
        self,
        stack_name: str,
        template_url: str,
        parameters: Dict[str, str],
        tags: Dict[str, str]
    ) -> str:
        """Request stack creation and return the new stack ID."""
        pass

    @abstractmethod
    def delete_stack(self, stack_id: str) -> None:
        """Request stack deletion."""
        pass

    @abstractmethod
    def describe_stack(self, stack_id: str) -> StackDescription:
        """Describe a stack by ID or name."""
        pass


class SecretProvider(ABC):
    """Secret-store lookups."""

    @abstractmethod
    def get_parameters(self, names: List[str]) -> ParameterLookupResult:
        """Fetch decrypted parameter values; unknown names are reported, not raised."""
        pass


class IdentityProvider(ABC):
    """IAM policy attachment."""

    @abstractmethod
    def attach_role_policy(self, role_name: str, policy_arn: str) -> None:
        """Attach a managed policy to a role."""
        pass

    @abstractmethod
    def detach_role_policy(self, role_name: str, policy_arn: str) -> bool:
        """Detach a managed policy from a role. Returns False if it was not attached."""
        pass


class TemplateSource(ABC):
    """Repository of CloudFormation templates backing the catalog."""

    @abstractmethod
    def list_templates(self) -> List[str]:
        """Return the names of the available templates."""
        pass

    @abstractmethod
    def get_template(self, name: str) -> str:
        """Return the body of a template."""
        pass


@dataclass
class CloudClients:
    """Per-region factories for each cloud capability, injected into the broker."""
    stacks: Callable[[str], StackProvider]
    secrets: Callable[[str], SecretProvider]
    identity: Callable[[str], IdentityProvider]
