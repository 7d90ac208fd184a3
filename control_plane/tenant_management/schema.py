"""
Tenant Management API Schemas

Request and response models for tenant registration, polling and administration.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import ProvisioningStep, TenantStatus, normalize_subdomain


class TenantCreateRequest(BaseModel):
    """Request model for registering a new tenant."""

    name: str = Field(..., min_length=2, max_length=100, description="Tenant display name")
    subdomain: str = Field(..., min_length=3, max_length=50, description="Unique subdomain identifier")
    contact_email: EmailStr = Field(..., description="Primary contact email")
    plan_code: Optional[str] = Field(default=None, description="Subscription plan code")

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, v: str) -> str:
        return normalize_subdomain(v)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Acme",
                "subdomain": "acme",
                "contact_email": "admin@acme.com",
                "plan_code": "growth",
            }
        }


class TenantResponse(BaseModel):
    """Response model for tenant data."""

    tenant_id: str
    name: str
    contact_email: str
    subdomain: str
    plan_code: Optional[str]

    status: TenantStatus
    status_reason: Optional[str]
    provisioning_step: Optional[ProvisioningStep]
    store_name: str

    created_at: datetime
    updated_at: datetime
    activated_at: Optional[datetime]


class TenantListResponse(BaseModel):
    """Response model for listing tenants."""

    tenants: list[TenantResponse]
    total: int
    page: int
    page_size: int


class TenantRegistrationResponse(BaseModel):
    """Response returned once a registration has been queued for provisioning."""

    tenant_id: str
    status: TenantStatus
    message: str
    status_url: str


class ProvisioningStatusResponse(BaseModel):
    """Polling payload for the provisioning waiting room."""

    id: str
    status: TenantStatus
    provisioning_step: Optional[ProvisioningStep]
    domain: str
    is_ready: bool
    has_failed: bool
    login_url: Optional[str] = None
    error: Optional[str] = None
    support_email: Optional[str] = None


class TenantStatusChangeRequest(BaseModel):
    """Administrative suspend/activate request."""

    reason: Optional[str] = Field(default=None, max_length=500)
