"""Persistent broker records: service instances, bindings and catalog listings."""

from pydantic import BaseModel, Field
from typing import Dict, Any
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceInstance(BaseModel):
    """Service instance metadata."""
    instance_id: str = Field(..., description="Unique instance identifier")
    service_id: str = Field(..., description="Service identifier")
    plan_id: str = Field(..., description="Service plan identifier")
    params: Dict[str, Any] = Field(default_factory=dict, description="Resolved provisioning parameters")
    stack_id: str = Field(default="", description="CloudFormation stack ID, empty until creation is accepted")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last update timestamp")

    def matches(self, other: 'ServiceInstance') -> bool:
        """Whether ``other`` describes the same provisioning request."""
        return (
            self.instance_id == other.instance_id
            and self.service_id == other.service_id
            and self.plan_id == other.plan_id
            and self.params == other.params
        )


class ServiceBinding(BaseModel):
    """Service binding metadata."""
    binding_id: str = Field(..., description="Unique binding identifier")
    instance_id: str = Field(..., description="Instance the binding belongs to")
    role_name: str = Field(default="", description="IAM role the scope policy is attached to")
    scope: str = Field(default="", description="Requested access scope")
    policy_arn: str = Field(default="", description="Attached policy ARN, empty if none")
    credentials: Dict[str, Any] = Field(default_factory=dict, description="Issued credentials")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")

    def matches(self, other: 'ServiceBinding') -> bool:
        """Whether ``other`` describes the same binding request."""
        return (
            self.binding_id == other.binding_id
            and self.instance_id == other.instance_id
            and self.role_name == other.role_name
            and self.scope == other.scope
        )


class ServiceNeedsUpdate(BaseModel):
    """Listing cache entry: a catalog service and whether its definition must be recomputed."""
    name: str
    update: bool = False
