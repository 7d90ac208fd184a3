"""
Main FastAPI Application

Tenant control plane API gateway with:
- Tenant registration and provisioning status endpoints
- In-process provisioning workers
- CORS configuration
- Health checks
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from structlog import get_logger

from ..config import get_config
from ..provisioning.audit import ProvisioningAuditService
from ..provisioning.notifier import build_reporter
from ..provisioning.queue import ProvisioningQueue
from ..provisioning.rollback import RollbackManager
from ..provisioning.saga import ProvisioningSaga
from ..provisioning.store import TenantStoreProvisioner
from ..tenant_management.api_router import router as tenant_router
from ..tenant_management.db_service import PlanDBService, TenantDBService
from ..tenant_management.models import TenantStatus

config = get_config()
logger = get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("starting_control_plane", environment=config.environment.value)

    # Initialize MongoDB connection
    app.state.mongo_client = AsyncIOMotorClient(config.platform_mongo_db_url)
    app.state.platform_db = app.state.mongo_client[config.platform_mongo_db_name]

    # Ensure platform database indexes
    tenant_service = TenantDBService(app.state.platform_db)
    plan_service = PlanDBService(app.state.platform_db)
    audit_service = ProvisioningAuditService(app.state.platform_db)
    await tenant_service.ensure_indexes()
    await plan_service.ensure_indexes()
    await audit_service.ensure_indexes()

    # Provisioning pipeline
    app.state.store_provisioner = TenantStoreProvisioner(app.state.mongo_client, config)
    reporter = build_reporter(config)
    rollback = RollbackManager(
        tenant_service, app.state.store_provisioner, reporter, audit_service, config
    )
    saga = ProvisioningSaga(
        tenant_service,
        plan_service,
        app.state.store_provisioner,
        reporter=reporter,
        rollback=rollback,
        platform_config=config,
    )
    app.state.provisioning_queue = ProvisioningQueue(saga, config)
    app.state.provisioning_queue.start()

    # Requeue tenants whose provisioning was interrupted; the saga resumes from the checkpoint
    for pending_status in (TenantStatus.PENDING, TenantStatus.PROVISIONING):
        for tenant in await tenant_service.list_tenants(status=pending_status, limit=0):
            await app.state.provisioning_queue.enqueue(tenant.tenant_id)

    logger.info("platform_initialized")

    yield

    # Shutdown
    logger.info("shutting_down_platform")
    await app.state.provisioning_queue.stop()
    if hasattr(reporter.broadcaster, "close"):
        await reporter.broadcaster.close()
    app.state.mongo_client.close()
    logger.info("platform_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Tenant Control Plane",
    description="Multi-tenant SaaS control plane: tenant registration and workspace provisioning",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not config.is_production else None,
    redoc_url="/redoc" if not config.is_production else None,
    openapi_url="/openapi.json" if not config.is_production else None,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoints
@app.get("/health", tags=["Platform"], summary="Health check")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "environment": config.environment.value,
        "version": VERSION,
    }


@app.get("/ping", tags=["Platform"], summary="Ping endpoint")
async def ping():
    """Simple ping endpoint."""
    return {"message": "pong"}


# Platform status endpoint
@app.get("/platform/status", tags=["Platform"], summary="Platform status")
async def platform_status(request: Request):
    """Get platform status and tenant counts."""
    tenant_service = TenantDBService(request.app.state.platform_db)

    counts = {
        tenant_status.value: await tenant_service.count_tenants(status=tenant_status)
        for tenant_status in TenantStatus
    }

    return {
        "status": "operational",
        "environment": config.environment.value,
        "total_tenants": sum(counts.values()),
        "tenants_by_status": counts,
        "provisioning_workers_running": request.app.state.provisioning_queue.running,
        "features": {
            "realtime_broadcasts": config.enable_realtime_broadcasts,
            "audit_logging": config.enable_audit_logging,
            "preserve_failed_tenants": config.preserve_failed_tenants,
        },
    }


# Exception handlers
@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """Custom 404 handler."""
    detail = getattr(exc, "detail", None) or "Resource not found"
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": detail, "path": str(request.url.path)},
    )


@app.exception_handler(500)
async def server_error_handler(request: Request, exc):
    """Custom 500 handler."""
    logger.error("internal_server_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(tenant_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "control_plane.api_gateway.main:app",
        host="0.0.0.0",
        port=8000,
        reload=config.is_local,
        log_level=config.log_level.lower(),
    )
