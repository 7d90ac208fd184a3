"""
Tenant Store Provisioner

Creates and drops the isolated database backing each tenant workspace, and
hands out scoped handles to it.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError
from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..tenant_management.models import Tenant
from .errors import NameCollision, StoreCreationFailed, StoreHandleReleased

logger = get_logger()

# Ownership marker written into every store on creation
OWNERSHIP_COLLECTION = "_provisioning"
OWNER_MARKER_ID = "owner"


class StoreHandle:
    """
    Explicit reference to one tenant store.

    Passed to every migration and seeding call in place of ambient tenant
    state. Invalid once the scope that opened it has exited.
    """

    def __init__(self, store_name: str, db: AsyncIOMotorDatabase):
        self.store_name = store_name
        self._db: Optional[AsyncIOMotorDatabase] = db

    @property
    def db(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            raise StoreHandleReleased(f"Store handle for '{self.store_name}' has been released")
        return self._db

    @property
    def released(self) -> bool:
        return self._db is None

    def release(self) -> None:
        self._db = None

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    def __repr__(self) -> str:
        state = "released" if self.released else "open"
        return f"<StoreHandle {self.store_name} ({state})>"


class TenantStoreProvisioner:
    """Service for creating and destroying tenant stores."""

    def __init__(
        self,
        mongo_client: Optional[AsyncIOMotorClient] = None,
        platform_config: Optional[PlatformConfig] = None,
    ):
        """
        Initialize the provisioner.

        Args:
            mongo_client: Client used for tenant stores (creates new if not provided)
            platform_config: Settings override, mainly for tests
        """
        self.config = platform_config or get_config()
        self.mongo_client = mongo_client or AsyncIOMotorClient(self.config.platform_mongo_db_url)

    def store_name_for(self, tenant: Tenant) -> str:
        """Derive the deterministic store name for a tenant."""
        return self.config.get_tenant_store_name(tenant.subdomain)

    async def store_exists(self, store_name: str) -> bool:
        """Check whether a store with this name exists."""
        return store_name in await self.mongo_client.list_database_names()

    async def owned_store_name(self, tenant: Tenant) -> Optional[str]:
        """
        Return the derived store name if that store exists and belongs to the tenant.

        Used to find stores created before the assignment reached the registry.
        """
        store_name = self.store_name_for(tenant)
        if not await self.store_exists(store_name):
            return None
        owner = await self.mongo_client[store_name][OWNERSHIP_COLLECTION].find_one({"_id": OWNER_MARKER_ID})
        if owner is None or owner.get("tenant_id") != tenant.tenant_id:
            return None
        return store_name

    async def create_store(self, tenant: Tenant) -> str:
        """
        Create the tenant's isolated store.

        Idempotent for the same tenant: an existing store whose ownership
        marker names this tenant is accepted as already created.

        Args:
            tenant: Tenant being provisioned

        Returns:
            The store name

        Raises:
            NameCollision: If the store belongs to a different tenant
            StoreCreationFailed: If the database server rejects the operation
        """
        store_name = self.store_name_for(tenant)
        log = logger.bind(tenant_id=tenant.tenant_id, store=store_name)

        try:
            markers = self.mongo_client[store_name][OWNERSHIP_COLLECTION]

            if await self.store_exists(store_name):
                owner = await markers.find_one({"_id": OWNER_MARKER_ID})
                if owner is None or owner.get("tenant_id") != tenant.tenant_id:
                    log.error("tenant_store_name_collision", owner_id=owner and owner.get("tenant_id"))
                    raise NameCollision(store_name, tenant.tenant_id, owner and owner.get("tenant_id"))
                log.info("tenant_store_already_exists")
                return store_name

            try:
                # A store only exists once it has data, so the marker write creates it
                await markers.insert_one(
                    {
                        "_id": OWNER_MARKER_ID,
                        "tenant_id": tenant.tenant_id,
                        "subdomain": tenant.subdomain,
                        "created_at": datetime.utcnow(),
                    }
                )
            except DuplicateKeyError:
                # Another attempt created the store between our check and insert
                owner = await markers.find_one({"_id": OWNER_MARKER_ID})
                if owner is None or owner.get("tenant_id") != tenant.tenant_id:
                    raise NameCollision(store_name, tenant.tenant_id, owner and owner.get("tenant_id"))
                return store_name

        except PyMongoError as e:
            log.error("tenant_store_creation_failed", error=str(e))
            raise StoreCreationFailed(f"Could not create store '{store_name}': {e}", tenant.tenant_id) from e

        log.info("tenant_store_created")
        return store_name

    async def drop_store(self, store_name: str) -> None:
        """
        Drop a tenant store (used for rollback).

        Dropping a store that does not exist is a no-op.

        Args:
            store_name: Store to drop
        """
        if not await self.store_exists(store_name):
            logger.info("tenant_store_already_absent", store=store_name)
            return

        await self.mongo_client.drop_database(store_name)
        logger.warning("tenant_store_dropped", store=store_name)

    @asynccontextmanager
    async def open_store(self, store_name: str) -> AsyncIterator[StoreHandle]:
        """
        Acquire a handle to a tenant store for the duration of a block.

        The handle is released on every exit path, including errors.
        """
        handle = StoreHandle(store_name, self.mongo_client[store_name])
        logger.debug("tenant_store_opened", store=store_name)
        try:
            yield handle
        finally:
            handle.release()
            logger.debug("tenant_store_released", store=store_name)
