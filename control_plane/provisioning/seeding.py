"""
Tenant Seed Stage

Populates baseline reference data inside a freshly migrated tenant store:
the module hierarchy from the platform catalog and the default role shells.
Every operation is an upsert, so re-running a seed is harmless.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel
from pymongo.errors import PyMongoError
from structlog import get_logger

from .catalog import ModuleCatalog, ModuleDefinition, default_catalog
from .errors import SeedFailed, VerificationFailed
from .store import StoreHandle

logger = get_logger()

MODULES_COLLECTION = "modules"
SUB_MODULES_COLLECTION = "sub_modules"
COMPONENTS_COLLECTION = "module_components"
ACTIONS_COLLECTION = "module_component_actions"
ROLES_COLLECTION = "roles"

HIERARCHY_COLLECTIONS = (
    ACTIONS_COLLECTION,
    COMPONENTS_COLLECTION,
    SUB_MODULES_COLLECTION,
    MODULES_COLLECTION,
)


class RoleDefinition(BaseModel):
    """Role shell created in every tenant store."""

    name: str
    guard_name: str = "web"
    description: Optional[str] = None
    is_protected: bool = False


DEFAULT_ROLES: list[RoleDefinition] = [
    RoleDefinition(
        name="Super Administrator",
        description="Full access to all tenant features",
        is_protected=True,
    ),
    RoleDefinition(name="Administrator", description="Administrative access with most features"),
    RoleDefinition(name="HR Manager", description="Human Resources management access"),
    RoleDefinition(name="Employee", description="Basic employee access - self-service features"),
]


class SyncReport(BaseModel):
    """Counts of hierarchy rows written by one sync."""

    modules: int = 0
    sub_modules: int = 0
    components: int = 0
    actions: int = 0


class ModuleHierarchySeeder:
    """Mirrors the canonical module catalog into a tenant store."""

    def __init__(self, catalog: Optional[ModuleCatalog] = None):
        self.catalog = catalog or default_catalog()

    async def sync(self, store: StoreHandle, fresh: bool = False) -> SyncReport:
        """
        Upsert every tenant-scoped module of the catalog, keyed by code.

        Args:
            store: Handle to the tenant store
            fresh: Clear the hierarchy collections before syncing

        Returns:
            Row counts written

        Raises:
            SeedFailed: If any write fails
        """
        log = logger.bind(store=store.store_name)
        report = SyncReport()

        try:
            if fresh:
                for collection_name in HIERARCHY_COLLECTIONS:
                    await store[collection_name].delete_many({})
                log.warning("module_hierarchy_cleared")

            modules = self.catalog.tenant_modules()
            if not modules:
                log.info("module_catalog_empty")
                return report

            for module in modules:
                await self._sync_module(store, module, report)
                log.info("module_synced", module=module.code)

        except SeedFailed:
            raise
        except Exception as e:
            log.error("module_sync_failed", error=str(e))
            raise SeedFailed(f"Module hierarchy sync failed: {e}") from e

        log.info("module_hierarchy_synced", **report.model_dump())
        return report

    async def _upsert(self, store: StoreHandle, collection_name: str, key: dict[str, Any], values: dict[str, Any]) -> None:
        now = datetime.utcnow()
        await store[collection_name].update_one(
            key,
            {"$set": {**values, "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
        )

    async def _sync_module(self, store: StoreHandle, module: ModuleDefinition, report: SyncReport) -> None:
        await self._upsert(store, MODULES_COLLECTION, {"code": module.code}, module.attributes())
        report.modules += 1

        for sub_module in module.submodules:
            sub_key = {"module_code": module.code, "code": sub_module.code}
            await self._upsert(
                store, SUB_MODULES_COLLECTION, sub_key, sub_module.model_dump(exclude={"components"})
            )
            report.sub_modules += 1

            for component in sub_module.components:
                component_key = {**sub_key, "sub_module_code": sub_module.code, "code": component.code}
                await self._upsert(
                    store, COMPONENTS_COLLECTION, component_key, component.model_dump(exclude={"actions"})
                )
                report.components += 1

                for action in component.actions:
                    action_key = {
                        "module_code": module.code,
                        "sub_module_code": sub_module.code,
                        "component_code": component.code,
                        "code": action.code,
                    }
                    await self._upsert(store, ACTIONS_COLLECTION, action_key, action.model_dump())
                    report.actions += 1


class DefaultRoleSeeder:
    """Creates the fixed set of role shells. No permissions are assigned."""

    def __init__(self, roles: Optional[list[RoleDefinition]] = None):
        self.roles = roles or DEFAULT_ROLES

    async def seed(self, store: StoreHandle) -> list[str]:
        """
        Find-or-create each default role by (name, guard_name).

        Existing roles are left untouched.

        Args:
            store: Handle to the tenant store

        Returns:
            Names of the roles created by this call

        Raises:
            SeedFailed: If any write fails
        """
        created = []
        try:
            roles = store[ROLES_COLLECTION]
            for role in self.roles:
                now = datetime.utcnow()
                result = await roles.update_one(
                    {"name": role.name, "guard_name": role.guard_name},
                    {"$setOnInsert": {**role.model_dump(), "created_at": now, "updated_at": now}},
                    upsert=True,
                )
                if result.upserted_id is not None:
                    created.append(role.name)
        except Exception as e:
            logger.error("default_roles_seed_failed", store=store.store_name, error=str(e))
            raise SeedFailed(f"Default role seeding failed: {e}") from e

        logger.info("default_roles_seeded", store=store.store_name, created=created)
        return created


class ProvisioningVerifier:
    """Checks that a provisioned store has the structure an active tenant needs."""

    REQUIRED_COLLECTIONS = (
        "users",
        ROLES_COLLECTION,
        MODULES_COLLECTION,
        SUB_MODULES_COLLECTION,
        COMPONENTS_COLLECTION,
        ACTIONS_COLLECTION,
    )

    async def verify(self, store: StoreHandle) -> None:
        """
        Raise if required collections or the protected role are missing.

        Raises:
            VerificationFailed: If the store is incomplete
        """
        try:
            existing = set(await store.db.list_collection_names())
            has_super_admin = await store[ROLES_COLLECTION].count_documents({"name": "Super Administrator"}, limit=1)
            module_count = await store[MODULES_COLLECTION].count_documents({})
        except PyMongoError as e:
            raise VerificationFailed(f"Could not inspect store '{store.store_name}': {e}") from e

        missing = [name for name in self.REQUIRED_COLLECTIONS if name not in existing]
        if missing:
            raise VerificationFailed(f"Required collections missing: {', '.join(missing)}")

        if not has_super_admin:
            raise VerificationFailed("Super Administrator role not found after seeding")

        if module_count == 0:
            logger.warning("no_modules_after_sync", store=store.store_name)

        logger.info("provisioning_verified", store=store.store_name)
