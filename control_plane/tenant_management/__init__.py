"""
Tenant Management Module

Tenant registry, plans and domain bindings, plus the onboarding API.
"""

from .db_service import PlanDBService, TenantAlreadyExists, TenantDBService, TenantNotFound
from .models import DomainBinding, Plan, ProvisioningStep, Tenant, TenantStatus
from .schema import (
    ProvisioningStatusResponse,
    TenantCreateRequest,
    TenantRegistrationResponse,
    TenantResponse,
)

__all__ = [
    "Tenant",
    "TenantStatus",
    "ProvisioningStep",
    "Plan",
    "DomainBinding",
    "TenantDBService",
    "PlanDBService",
    "TenantNotFound",
    "TenantAlreadyExists",
    "TenantCreateRequest",
    "TenantRegistrationResponse",
    "TenantResponse",
    "ProvisioningStatusResponse",
]
