"""
Tenant Database Service

Handles tenant, plan and domain binding records in the platform database.
Every write touches a single document, so each tenant row is updated atomically.
"""

from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.errors import DuplicateKeyError
from structlog import get_logger

from ..config import get_config
from .models import (
    DomainBinding,
    Plan,
    ProvisioningStep,
    Tenant,
    TenantStatus,
    is_transition_allowed,
)

config = get_config()
logger = get_logger()

# Soft-deleted tenants are invisible to normal lookups
NOT_DELETED = {"deleted_at": None}


class TenantNotFound(LookupError):
    """Raised when a tenant record does not exist."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant '{tenant_id}' not found")
        self.tenant_id = tenant_id


class TenantAlreadyExists(ValueError):
    """Raised when the subdomain or contact email is already registered."""


class InvalidStatusTransition(ValueError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, tenant_id: str, current: TenantStatus, new: TenantStatus):
        super().__init__(f"Tenant '{tenant_id}' cannot move from {current.value} to {new.value}")
        self.tenant_id = tenant_id
        self.current = current
        self.new = new


def _tenant_document(tenant: Tenant) -> dict[str, Any]:
    """Serialize a tenant for storage with enums stored as plain strings."""
    tenant_dict = tenant.model_dump()
    tenant_dict["status"] = tenant.status.value
    tenant_dict["provisioning_step"] = (
        tenant.provisioning_step.value if tenant.provisioning_step else None
    )
    return tenant_dict


class TenantDBService:
    """
    Database service for the tenant registry.

    Operates on the platform database, not tenant-specific stores.
    """

    def __init__(self, db: Optional[AsyncIOMotorDatabase] = None):
        """
        Initialize tenant database service.

        Args:
            db: Optional database instance. If not provided, creates new connection.
        """
        if db is None:
            client = AsyncIOMotorClient(config.platform_mongo_db_url)
            self.db = client[config.platform_mongo_db_name]
        else:
            self.db = db

        self.collection = self.db["tenants"]
        self.domains = self.db["domains"]

    async def ensure_indexes(self) -> None:
        """Create necessary indexes for tenant and domain collections."""
        await self.collection.create_indexes(
            [
                IndexModel([("tenant_id", ASCENDING)], unique=True),
                IndexModel([("subdomain", ASCENDING)], unique=True),
                IndexModel([("contact_email", ASCENDING)], unique=True),
                IndexModel([("status", ASCENDING)]),
                IndexModel([("created_at", ASCENDING)]),
            ]
        )
        await self.domains.create_indexes(
            [
                IndexModel([("domain", ASCENDING)], unique=True),
                IndexModel([("tenant_id", ASCENDING)]),
            ]
        )

    # -- registry contract -------------------------------------------------

    async def create(self, tenant: Tenant) -> str:
        """
        Create a new tenant record.

        Args:
            tenant: Tenant object to create

        Returns:
            The tenant id

        Raises:
            TenantAlreadyExists: If the subdomain or contact email is taken
        """
        tenant_dict = _tenant_document(tenant)
        tenant_dict["created_at"] = datetime.utcnow()
        tenant_dict["updated_at"] = datetime.utcnow()

        try:
            await self.collection.insert_one(tenant_dict)
        except DuplicateKeyError:
            if not await self.subdomain_available(tenant.subdomain):
                raise TenantAlreadyExists(f"Subdomain '{tenant.subdomain}' is already taken")
            if await self.collection.count_documents({"contact_email": tenant.contact_email}, limit=1):
                raise TenantAlreadyExists(f"Email '{tenant.contact_email}' is already registered")
            raise TenantAlreadyExists(f"Tenant with ID '{tenant.tenant_id}' already exists")

        logger.info("tenant_record_created", tenant_id=tenant.tenant_id, subdomain=tenant.subdomain)
        return tenant.tenant_id

    async def get(self, tenant_id: str) -> Optional[Tenant]:
        """
        Get tenant by ID.

        Args:
            tenant_id: Tenant identifier

        Returns:
            Tenant if found and not soft-deleted, None otherwise
        """
        tenant_dict = await self.collection.find_one({"tenant_id": tenant_id, **NOT_DELETED})
        if tenant_dict:
            tenant_dict.pop("_id", None)
            return Tenant(**tenant_dict)
        return None

    async def get_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        """Get tenant by subdomain."""
        tenant_dict = await self.collection.find_one({"subdomain": subdomain, **NOT_DELETED})
        if tenant_dict:
            tenant_dict.pop("_id", None)
            return Tenant(**tenant_dict)
        return None

    async def set_status(
        self,
        tenant_id: str,
        status: TenantStatus,
        status_reason: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
        increment: Optional[dict[str, int]] = None,
    ) -> Tenant:
        """
        Move a tenant to a new status.

        Args:
            tenant_id: Tenant identifier
            status: New status
            status_reason: Optional reason for status change
            extra: Additional fields written in the same update
            increment: Counters incremented in the same update

        Returns:
            The updated tenant

        Raises:
            TenantNotFound: If the tenant does not exist
            InvalidStatusTransition: If the move is not allowed from the current status
        """
        tenant = await self.get(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)
        if not is_transition_allowed(tenant.status, status):
            raise InvalidStatusTransition(tenant_id, tenant.status, status)

        update_data: dict[str, Any] = {"status": status.value, "updated_at": datetime.utcnow()}
        if status_reason:
            update_data["status_reason"] = status_reason
        if extra:
            update_data.update(extra)

        # Guard on the status we validated against so concurrent writers cannot skip a step
        update: dict[str, Any] = {"$set": update_data}
        if increment:
            update["$inc"] = increment

        result = await self.collection.find_one_and_update(
            {"tenant_id": tenant_id, "status": tenant.status.value, **NOT_DELETED},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if result is None:
            raise TenantNotFound(tenant_id)

        result.pop("_id", None)
        logger.info(
            "tenant_status_changed",
            tenant_id=tenant_id,
            previous=tenant.status.value,
            status=status.value,
        )
        return Tenant(**result)

    async def set_checkpoint(self, tenant_id: str, step: Optional[ProvisioningStep]) -> None:
        """
        Persist the provisioning checkpoint.

        Args:
            tenant_id: Tenant identifier
            step: Checkpoint to record, or None to clear it

        Raises:
            TenantNotFound: If the tenant does not exist
        """
        result = await self.collection.update_one(
            {"tenant_id": tenant_id, **NOT_DELETED},
            {
                "$set": {
                    "provisioning_step": step.value if step else None,
                    "updated_at": datetime.utcnow(),
                }
            },
        )
        if result.matched_count == 0:
            raise TenantNotFound(tenant_id)

    async def delete(self, tenant_id: str, hard: bool = False) -> bool:
        """
        Delete a tenant.

        A hard delete removes the record so the subdomain and email can be
        registered again. A soft delete stamps ``deleted_at`` and hides the record.

        Args:
            tenant_id: Tenant identifier
            hard: Remove the record entirely

        Returns:
            True if deleted, False if not found
        """
        if hard:
            result = await self.collection.delete_one({"tenant_id": tenant_id})
            deleted = result.deleted_count > 0
        else:
            result = await self.collection.update_one(
                {"tenant_id": tenant_id, **NOT_DELETED},
                {
                    "$set": {
                        "deleted_at": datetime.utcnow(),
                        "updated_at": datetime.utcnow(),
                        "status_reason": "Tenant deleted",
                    }
                },
            )
            deleted = result.modified_count > 0

        logger.info("tenant_record_deleted", tenant_id=tenant_id, hard=hard, deleted=deleted)
        return deleted

    # -- provisioning helpers ---------------------------------------------

    async def start_provisioning(self, tenant_id: str, step: ProvisioningStep) -> Tenant:
        """Mark the tenant as provisioning and record the first checkpoint in one write."""
        return await self.set_status(
            tenant_id,
            TenantStatus.PROVISIONING,
            extra={"provisioning_step": step.value, "provisioning_error": None},
            increment={"provisioning_attempts": 1},
        )

    async def set_store_name(self, tenant_id: str, store_name: str) -> None:
        """Record the isolated store assigned to the tenant."""
        result = await self.collection.update_one(
            {"tenant_id": tenant_id, **NOT_DELETED},
            {"$set": {"store_name": store_name, "updated_at": datetime.utcnow()}},
        )
        if result.matched_count == 0:
            raise TenantNotFound(tenant_id)

    async def activate(self, tenant_id: str) -> Tenant:
        """Activate the tenant and clear the provisioning checkpoint."""
        return await self.set_status(
            tenant_id,
            TenantStatus.ACTIVE,
            "Provisioning completed successfully",
            extra={"provisioning_step": None, "activated_at": datetime.utcnow()},
        )

    async def mark_failed(self, tenant_id: str, reason: Optional[str] = None) -> bool:
        """
        Mark provisioning as failed, keeping the checkpoint for manual remediation.

        Bypasses the transition table: this is the fallback when automatic
        cleanup could not complete.

        Returns:
            True if updated, False if tenant not found
        """
        result = await self.collection.update_one(
            {"tenant_id": tenant_id, **NOT_DELETED},
            {
                "$set": {
                    "status": TenantStatus.FAILED.value,
                    "status_reason": "Provisioning failed",
                    "provisioning_error": reason,
                    "updated_at": datetime.utcnow(),
                }
            },
        )
        return result.matched_count > 0

    async def reset_for_retry(self, tenant_id: str) -> Tenant:
        """Put a failed or stuck tenant back in the queue-ready state."""
        tenant = await self.get(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)

        reset = {"provisioning_step": None, "provisioning_error": None, "store_name": ""}
        if tenant.status == TenantStatus.PENDING:
            await self.collection.update_one(
                {"tenant_id": tenant_id}, {"$set": {**reset, "updated_at": datetime.utcnow()}}
            )
            return tenant.model_copy(update={"provisioning_step": None, "store_name": ""})
        return await self.set_status(tenant_id, TenantStatus.PENDING, "Provisioning retried", extra=reset)

    async def suspend(self, tenant_id: str, reason: Optional[str] = None) -> Tenant:
        """Administratively suspend an active tenant."""
        return await self.set_status(tenant_id, TenantStatus.SUSPENDED, reason or "Suspended by administrator")

    async def reactivate(self, tenant_id: str, reason: Optional[str] = None) -> Tenant:
        """Lift a suspension."""
        return await self.set_status(tenant_id, TenantStatus.ACTIVE, reason or "Reactivated by administrator")

    # -- domain bindings ---------------------------------------------------

    async def create_domain(self, binding: DomainBinding) -> DomainBinding:
        """
        Bind a host name to a tenant.

        Raises:
            TenantAlreadyExists: If the domain is bound to another tenant
        """
        try:
            await self.domains.insert_one(binding.model_dump())
        except DuplicateKeyError:
            raise TenantAlreadyExists(f"Domain '{binding.domain}' is already in use")
        return binding

    async def list_domains(self, tenant_id: str) -> list[DomainBinding]:
        """List domain bindings for a tenant."""
        bindings = []
        async for binding_dict in self.domains.find({"tenant_id": tenant_id}):
            binding_dict.pop("_id", None)
            bindings.append(DomainBinding(**binding_dict))
        return bindings

    async def delete_domains(self, tenant_id: str) -> int:
        """Remove every domain binding for a tenant. Returns the number removed."""
        result = await self.domains.delete_many({"tenant_id": tenant_id})
        return result.deleted_count

    # -- queries -----------------------------------------------------------

    async def list_tenants(
        self,
        status: Optional[TenantStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Tenant]:
        """
        List tenants with optional filtering.

        Args:
            status: Filter by status
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            List of tenants
        """
        query: dict[str, Any] = dict(NOT_DELETED)
        if status:
            query["status"] = status.value

        cursor = self.collection.find(query, skip=skip, limit=limit, sort=[("created_at", DESCENDING)])

        tenants = []
        async for tenant_dict in cursor:
            tenant_dict.pop("_id", None)
            tenants.append(Tenant(**tenant_dict))

        return tenants

    async def count_tenants(self, status: Optional[TenantStatus] = None) -> int:
        """Count tenants, optionally filtered by status."""
        query: dict[str, Any] = dict(NOT_DELETED)
        if status:
            query["status"] = status.value

        return await self.collection.count_documents(query)

    async def subdomain_available(self, subdomain: str) -> bool:
        """
        Check if subdomain is available.

        Soft-deleted tenants keep their subdomain; only a hard delete frees it.
        """
        count = await self.collection.count_documents({"subdomain": subdomain}, limit=1)
        return count == 0


class PlanDBService:
    """Database service for subscription plans."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = self.db["plans"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_indexes([IndexModel([("code", ASCENDING)], unique=True)])

    async def upsert_plan(self, plan: Plan) -> Plan:
        """Create or replace a plan by code."""
        await self.collection.update_one({"code": plan.code}, {"$set": plan.model_dump()}, upsert=True)
        return plan

    async def get_plan(self, code: str) -> Optional[Plan]:
        plan_dict = await self.collection.find_one({"code": code})
        if plan_dict:
            plan_dict.pop("_id", None)
            return Plan(**plan_dict)
        return None

    async def get_module_codes(self, plan_code: Optional[str]) -> list[str]:
        """
        Resolve the ordered module codes enabled for a plan.

        Falls back to the configured default module set when the tenant has no
        plan or the plan cannot be found.
        """
        if not plan_code:
            return list(config.default_module_codes)

        plan = await self.get_plan(plan_code)
        if plan is None:
            logger.warning("plan_not_found", plan_code=plan_code)
            return list(config.default_module_codes)
        return list(plan.module_codes)
