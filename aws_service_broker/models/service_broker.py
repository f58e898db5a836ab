"""Open Service Broker API data models."""

from pydantic import BaseModel, Field, field_validator
from typing import Dict, Any, Optional, List
from enum import Enum


class OperationState(str, Enum):
    """Last operation states defined by the protocol."""
    IN_PROGRESS = "in progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ServicePlan(BaseModel):
    """Service plan definition."""
    id: str = Field(..., description="Unique identifier for the service plan")
    name: str = Field(..., description="Human-readable name for the service plan")
    description: str = Field(default="", description="Description of the service plan")
    free: bool = Field(default=True, description="Whether the plan is free")
    bindable: bool = Field(default=True, description="Whether the plan supports binding")
    metadata: Optional[Dict[str, Any]] = None
    schemas: Optional[Dict[str, Any]] = None
    parameter_values: Dict[str, str] = Field(
        default_factory=dict,
        description="Template parameters fixed by the plan and hidden from callers"
    )

    def create_parameters_schema(self) -> Dict[str, Any]:
        """Input schema for service instance creation."""
        schemas = self.schemas or {}
        create = (schemas.get('service_instance') or {}).get('create') or {}
        return create.get('parameters') or {}


class Service(BaseModel):
    """Service definition for catalog."""
    id: str = Field(..., description="Unique identifier for the service")
    name: str = Field(..., description="Human-readable name for the service")
    description: str = Field(default="", description="Description of the service")
    bindable: bool = Field(default=True, description="Whether the service supports binding")
    plan_updateable: bool = Field(default=False, description="Whether the service supports plan updates")
    plans: List[ServicePlan] = Field(default_factory=list, description="List of service plans")
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    requires: Optional[List[str]] = None

    def get_plan(self, plan_id: str) -> Optional[ServicePlan]:
        """Find a plan of this service by ID."""
        for plan in self.plans:
            if plan.id == plan_id:
                return plan
        return None


class Catalog(BaseModel):
    """Service catalog response."""
    services: List[Service] = Field(default_factory=list, description="List of available services")

    def to_osb_dict(self) -> Dict[str, Any]:
        """Render the catalog without broker-internal plan fields."""
        return self.model_dump(
            mode='json',
            exclude_none=True,
            exclude={'services': {'__all__': {'plans': {'__all__': {'parameter_values'}}}}}
        )


class ProvisionRequest(BaseModel):
    """Service instance provisioning request."""
    service_id: str = Field(..., description="ID of the service being provisioned")
    plan_id: str = Field(..., description="ID of the plan being provisioned")
    context: Optional[Dict[str, Any]] = None
    organization_guid: Optional[str] = None
    space_guid: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('parameters', mode='before')
    @classmethod
    def validate_parameters(cls, v):
        """Treat a null parameter object as empty."""
        return {} if v is None else v


class ProvisionResponse(BaseModel):
    """Service instance provisioning response."""
    dashboard_url: Optional[str] = None
    operation: Optional[str] = None
    is_async: bool = Field(default=False, exclude=True)


class DeprovisionResponse(BaseModel):
    """Service instance deprovisioning response."""
    operation: Optional[str] = None
    is_async: bool = Field(default=False, exclude=True)


class LastOperationResponse(BaseModel):
    """Last operation status response."""
    state: OperationState = Field(..., description="State of the operation")
    description: Optional[str] = None


class BindRequest(BaseModel):
    """Service binding request."""
    service_id: str = Field(..., description="ID of the service being bound")
    plan_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    bind_resource: Optional[Dict[str, Any]] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('parameters', mode='before')
    @classmethod
    def validate_parameters(cls, v):
        """Treat a null parameter object as empty."""
        return {} if v is None else v


class BindResponse(BaseModel):
    """Service binding response."""
    credentials: Dict[str, Any] = Field(default_factory=dict)
    exists: bool = Field(default=False, exclude=True)


class UnbindResponse(BaseModel):
    """Service unbinding response."""
