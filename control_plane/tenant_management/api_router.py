"""
Tenant Management API Router

REST API endpoints for tenant registration, provisioning status polling,
retries and administration.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from structlog import get_logger

from ..config import get_config
from ..provisioning.notifier import FAILURE_MESSAGE
from ..provisioning.queue import ProvisioningQueue
from ..provisioning.store import TenantStoreProvisioner
from .db_service import InvalidStatusTransition, TenantAlreadyExists, TenantDBService
from .models import DomainBinding, Tenant, TenantStatus, normalize_subdomain
from .schema import (
    ProvisioningStatusResponse,
    TenantCreateRequest,
    TenantListResponse,
    TenantRegistrationResponse,
    TenantResponse,
    TenantStatusChangeRequest,
)

config = get_config()
logger = get_logger()

router = APIRouter(prefix="/platform/tenants", tags=["Tenant Management"])


def get_tenant_db_service(request: Request) -> TenantDBService:
    """Dependency to get tenant database service."""
    return TenantDBService(request.app.state.platform_db)


def get_store_provisioner(request: Request) -> TenantStoreProvisioner:
    """Dependency to get the tenant store provisioner."""
    return request.app.state.store_provisioner


def get_provisioning_queue(request: Request) -> ProvisioningQueue:
    """Dependency to get the provisioning worker queue."""
    return request.app.state.provisioning_queue


def status_url(tenant_id: str) -> str:
    return f"{router.prefix}/{tenant_id}/provisioning-status"


async def _load_tenant(tenant_service: TenantDBService, tenant_id: str) -> Tenant:
    tenant = await tenant_service.get(tenant_id)
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant '{tenant_id}' not found",
        )
    return tenant


@router.post(
    "/",
    response_model=TenantRegistrationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Register new tenant",
    description="Create a pending tenant and queue its workspace for provisioning",
)
async def create_tenant(
    request: TenantCreateRequest,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
    queue: ProvisioningQueue = Depends(get_provisioning_queue),
) -> TenantRegistrationResponse:
    """
    Register a tenant.

    This endpoint:
    1. Creates the tenant record in pending status
    2. Binds the tenant's platform domain
    3. Queues provisioning and returns immediately
    """
    logger.info("creating_tenant", subdomain=request.subdomain, name=request.name)

    tenant = Tenant(
        name=request.name,
        contact_email=request.contact_email,
        subdomain=request.subdomain,
        plan_code=request.plan_code,
    )

    try:
        await tenant_service.create(tenant)
    except TenantAlreadyExists as e:
        logger.warning("tenant_creation_rejected", subdomain=request.subdomain, error=str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    try:
        await tenant_service.create_domain(
            DomainBinding(tenant_id=tenant.tenant_id, domain=config.get_tenant_domain(tenant.subdomain))
        )
    except TenantAlreadyExists as e:
        await tenant_service.delete(tenant.tenant_id, hard=True)
        logger.warning("tenant_domain_rejected", subdomain=request.subdomain, error=str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    await queue.enqueue(tenant.tenant_id)

    return TenantRegistrationResponse(
        tenant_id=tenant.tenant_id,
        status=tenant.status,
        message="Your workspace is being set up",
        status_url=status_url(tenant.tenant_id),
    )


@router.get(
    "/",
    response_model=TenantListResponse,
    summary="List tenants",
    description="List all tenants with optional filtering and pagination",
)
async def list_tenants(
    status_filter: Optional[TenantStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> TenantListResponse:
    """List tenants with pagination and filtering."""
    skip = (page - 1) * page_size

    tenants = await tenant_service.list_tenants(status=status_filter, skip=skip, limit=page_size)
    total = await tenant_service.count_tenants(status=status_filter)

    return TenantListResponse(
        tenants=[TenantResponse(**t.model_dump()) for t in tenants],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/check/subdomain/{subdomain}",
    response_model=dict,
    summary="Check subdomain availability",
    description="Check if a subdomain is available for registration",
)
async def check_subdomain_availability(
    subdomain: str,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> dict:
    """Check if subdomain is valid and not taken."""
    try:
        subdomain = normalize_subdomain(subdomain)
    except ValueError as e:
        return {"subdomain": subdomain, "available": False, "message": str(e)}

    available = await tenant_service.subdomain_available(subdomain)

    return {
        "subdomain": subdomain,
        "available": available,
        "message": "Subdomain is available" if available else "Subdomain is already taken",
    }


@router.get(
    "/subdomain/{subdomain}",
    response_model=TenantResponse,
    summary="Get tenant by subdomain",
    description="Retrieve tenant information by subdomain",
)
async def get_tenant_by_subdomain(
    subdomain: str,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> TenantResponse:
    """Get tenant by subdomain."""
    tenant = await tenant_service.get_by_subdomain(subdomain.lower())

    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant with subdomain '{subdomain}' not found",
        )

    return TenantResponse(**tenant.model_dump())


@router.get(
    "/{tenant_id}",
    response_model=TenantResponse,
    summary="Get tenant by ID",
    description="Retrieve tenant information by tenant ID",
)
async def get_tenant(
    tenant_id: str,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> TenantResponse:
    """Get tenant details by ID."""
    tenant = await _load_tenant(tenant_service, tenant_id)
    return TenantResponse(**tenant.model_dump())


@router.get(
    "/{tenant_id}/provisioning-status",
    response_model=ProvisioningStatusResponse,
    summary="Poll provisioning status",
    description="Progress of workspace setup, polled by the onboarding waiting room",
)
async def get_provisioning_status(
    tenant_id: str,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> ProvisioningStatusResponse:
    """Report provisioning progress without exposing internal failure detail."""
    tenant = await _load_tenant(tenant_service, tenant_id)

    bindings = await tenant_service.list_domains(tenant_id)
    primary = next((b for b in bindings if b.is_primary), bindings[0] if bindings else None)
    domain = primary.domain if primary else config.get_tenant_domain(tenant.subdomain)

    has_failed = tenant.status == TenantStatus.FAILED

    return ProvisioningStatusResponse(
        id=tenant.tenant_id,
        status=tenant.status,
        provisioning_step=tenant.provisioning_step,
        domain=domain,
        is_ready=tenant.is_ready,
        has_failed=has_failed,
        login_url=config.get_login_url(tenant.subdomain) if tenant.is_ready else None,
        error=FAILURE_MESSAGE if has_failed else None,
        support_email=config.support_email if has_failed else None,
    )


@router.post(
    "/{tenant_id}/provisioning/retry",
    response_model=TenantRegistrationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry provisioning",
    description="Clean up a failed or stuck provisioning run and queue it again",
)
async def retry_provisioning(
    tenant_id: str,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
    provisioner: TenantStoreProvisioner = Depends(get_store_provisioner),
    queue: ProvisioningQueue = Depends(get_provisioning_queue),
) -> TenantRegistrationResponse:
    """Retry provisioning for a failed or pending tenant."""
    tenant = await _load_tenant(tenant_service, tenant_id)

    if tenant.status not in (TenantStatus.FAILED, TenantStatus.PENDING):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Provisioning cannot be retried while tenant is {tenant.status.value}",
        )

    orphaned_store = tenant.store_name or await provisioner.owned_store_name(tenant)
    if orphaned_store:
        await provisioner.drop_store(orphaned_store)

    try:
        tenant = await tenant_service.reset_for_retry(tenant_id)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    # Rollback may have removed the binding while keeping the tenant
    if not await tenant_service.list_domains(tenant_id):
        await tenant_service.create_domain(
            DomainBinding(tenant_id=tenant_id, domain=config.get_tenant_domain(tenant.subdomain))
        )

    queued = await queue.enqueue(tenant_id)
    logger.info(
        "provisioning_retry_queued", tenant_id=tenant_id, dropped_store=orphaned_store, already_queued=not queued
    )

    return TenantRegistrationResponse(
        tenant_id=tenant_id,
        status=TenantStatus.PENDING,
        message="Workspace setup restarted",
        status_url=status_url(tenant_id),
    )


@router.post(
    "/{tenant_id}/suspend",
    response_model=TenantResponse,
    summary="Suspend tenant",
    description="Temporarily disable an active tenant",
)
async def suspend_tenant(
    tenant_id: str,
    request: Optional[TenantStatusChangeRequest] = None,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> TenantResponse:
    """Suspend an active tenant."""
    await _load_tenant(tenant_service, tenant_id)

    try:
        tenant = await tenant_service.suspend(tenant_id, request.reason if request else None)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info("tenant_suspended", tenant_id=tenant_id)
    return TenantResponse(**tenant.model_dump())


@router.post(
    "/{tenant_id}/activate",
    response_model=TenantResponse,
    summary="Reactivate tenant",
    description="Lift a tenant suspension",
)
async def activate_tenant(
    tenant_id: str,
    request: Optional[TenantStatusChangeRequest] = None,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> TenantResponse:
    """Reactivate a suspended tenant."""
    await _load_tenant(tenant_service, tenant_id)

    try:
        tenant = await tenant_service.reactivate(tenant_id, request.reason if request else None)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info("tenant_reactivated", tenant_id=tenant_id)
    return TenantResponse(**tenant.model_dump())


@router.delete(
    "/{tenant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete tenant",
    description="Hide a tenant from the platform (soft delete)",
)
async def delete_tenant(
    tenant_id: str,
    tenant_service: TenantDBService = Depends(get_tenant_db_service),
) -> None:
    """Soft delete a tenant."""
    success = await tenant_service.delete(tenant_id)

    if not success:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant '{tenant_id}' not found",
        )

    logger.info("tenant_deactivated", tenant_id=tenant_id)
