"""
Tenant Data Models

Defines the tenant, plan and domain binding records stored in the platform database.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")

RESERVED_SUBDOMAINS = frozenset(
    {"www", "admin", "api", "app", "mail", "platform", "static", "support", "status"}
)


class TenantStatus(str, Enum):
    """Tenant lifecycle status."""

    PENDING = "pending"  # Registered, waiting for the provisioning task
    PROVISIONING = "provisioning"  # Saga in progress
    ACTIVE = "active"  # Fully operational
    SUSPENDED = "suspended"  # Temporarily disabled by an administrator
    FAILED = "failed"  # Provisioning failed and automatic cleanup was abandoned


class ProvisioningStep(str, Enum):
    """Provisioning checkpoints, in execution order."""

    CREATING_STORE = "creating_store"
    MIGRATING = "migrating"
    SYNCING_MODULES = "syncing_modules"
    SEEDING_ROLES = "seeding_roles"
    COMPLETED = "completed"


# Status moves a tenant may make through set_status. Hard deletion is outside this table.
ALLOWED_STATUS_TRANSITIONS: dict[TenantStatus, frozenset[TenantStatus]] = {
    TenantStatus.PENDING: frozenset({TenantStatus.PROVISIONING, TenantStatus.FAILED}),
    TenantStatus.PROVISIONING: frozenset(
        {TenantStatus.PROVISIONING, TenantStatus.ACTIVE, TenantStatus.FAILED}
    ),
    TenantStatus.ACTIVE: frozenset({TenantStatus.SUSPENDED}),
    TenantStatus.SUSPENDED: frozenset({TenantStatus.ACTIVE}),
    TenantStatus.FAILED: frozenset({TenantStatus.PENDING}),
}


def is_transition_allowed(current: TenantStatus, new: TenantStatus) -> bool:
    """Check whether a tenant may move from one status to another."""
    return new in ALLOWED_STATUS_TRANSITIONS.get(current, frozenset())


def normalize_subdomain(v: str) -> str:
    """Validate and lowercase a tenant subdomain."""
    v = v.strip().lower()
    if not 3 <= len(v) <= 50:
        raise ValueError("Subdomain must be between 3 and 50 characters")
    if not SUBDOMAIN_PATTERN.match(v):
        raise ValueError(
            "Subdomain must contain only lowercase letters, digits and hyphens, "
            "and must start and end with a letter or digit"
        )
    if v in RESERVED_SUBDOMAINS:
        raise ValueError(f"Subdomain '{v}' is reserved")
    return v


class Plan(BaseModel):
    """Subscription plan: an ordered list of enabled module codes."""

    code: str = Field(..., description="Unique plan code")
    name: str = Field(..., description="Plan display name")
    module_codes: list[str] = Field(default_factory=list, description="Enabled modules, in order")


class DomainBinding(BaseModel):
    """Host name routed to a tenant workspace."""

    tenant_id: str
    domain: str
    is_primary: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Tenant(BaseModel):
    """
    Tenant model representing a customer workspace.

    Stored in the platform database (not the tenant's own store).
    """

    tenant_id: str = Field(default_factory=lambda: uuid4().hex, description="Unique tenant identifier")
    name: str = Field(..., description="Tenant display name")
    contact_email: str = Field(..., description="Primary contact for the tenant")
    subdomain: str = Field(..., description="Globally unique platform subdomain")

    # Subscription
    plan_code: Optional[str] = Field(default=None, description="Plan reference (None = default modules)")

    # Status
    status: TenantStatus = Field(default=TenantStatus.PENDING)
    status_reason: Optional[str] = Field(default=None, description="Reason for current status")

    # Provisioning
    provisioning_step: Optional[ProvisioningStep] = Field(default=None)
    provisioning_error: Optional[str] = Field(default=None, description="Operator-only failure detail")
    provisioning_attempts: int = Field(default=0)
    store_name: str = Field(default="", description="Isolated store assigned by the provisioner")

    # Metadata
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    activated_at: Optional[datetime] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None)

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: str) -> str:
        """Ensure subdomain is URL-safe."""
        return normalize_subdomain(v)

    @property
    def is_ready(self) -> bool:
        """Whether the workspace can be used."""
        return self.status == TenantStatus.ACTIVE

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "tenant_id": "5f1c3a9e0d6b4c2aa1e7f0b9c8d7e6f5",
                "name": "Acme",
                "contact_email": "admin@acme.com",
                "subdomain": "acme",
                "plan_code": "growth",
                "status": "provisioning",
                "provisioning_step": "migrating",
                "store_name": "tenant_acme",
            }
        }
