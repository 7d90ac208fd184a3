"""
Tests for module hierarchy sync, default roles and post-seed verification
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import AutoReconnect

from control_plane.provisioning.catalog import StaticModuleCatalog, default_catalog
from control_plane.provisioning.errors import SeedFailed, VerificationFailed, is_retryable
from control_plane.provisioning.seeding import (
    DefaultRoleSeeder,
    ModuleHierarchySeeder,
    ProvisioningVerifier,
)
from control_plane.provisioning.store import StoreHandle
from control_plane.tenant_management.models import Tenant


@pytest.fixture
async def store(provisioner):
    tenant = Tenant(name="Acme", contact_email="admin@acme.test", subdomain="acme")
    store_name = await provisioner.create_store(tenant)
    async with provisioner.open_store(store_name) as handle:
        yield handle


class TestModuleCatalog:
    """Test catalog definitions"""

    def test_default_catalog_tenant_modules(self):
        codes = [module.code for module in default_catalog().tenant_modules()]
        assert codes == ["core", "hr"]

    def test_invalid_definition_rejected(self):
        with pytest.raises(ValueError):
            StaticModuleCatalog([{"code": "crm"}])


class TestModuleHierarchySeeder:
    """Test module hierarchy sync"""

    async def test_sync_writes_hierarchy(self, store):
        report = await ModuleHierarchySeeder().sync(store)

        assert report.modules == 2
        assert await store["modules"].count_documents({}) == 2
        assert await store["modules"].count_documents({"code": "platform"}) == 0
        assert await store["sub_modules"].count_documents({"module_code": "hr"}) == 2
        assert await store["module_component_actions"].count_documents(
            {"module_code": "hr", "component_code": "employee-directory"}
        ) == 5

    async def test_sync_is_idempotent(self, store):
        seeder = ModuleHierarchySeeder()
        await seeder.sync(store)
        await seeder.sync(store)

        assert await store["modules"].count_documents({}) == 2
        assert await store["module_components"].count_documents({}) == report_components(default_catalog())

    async def test_fresh_sync_removes_stale_rows(self, store):
        await store["modules"].insert_one({"code": "retired"})

        await ModuleHierarchySeeder().sync(store, fresh=True)

        assert await store["modules"].count_documents({"code": "retired"}) == 0
        assert await store["modules"].count_documents({}) == 2

    async def test_sync_updates_changed_definition(self, store):
        await ModuleHierarchySeeder().sync(store)
        renamed = StaticModuleCatalog([{"code": "core", "name": "Workspace Core"}])

        await ModuleHierarchySeeder(renamed).sync(store)

        module = await store["modules"].find_one({"code": "core"})
        assert module["name"] == "Workspace Core"

    async def test_empty_catalog(self, store):
        report = await ModuleHierarchySeeder(StaticModuleCatalog([])).sync(store)
        assert report.modules == 0

    async def test_write_failure_raises_seed_failed(self):
        collection = MagicMock()
        collection.update_one = AsyncMock(side_effect=RuntimeError("write concern error"))
        db = MagicMock()
        db.__getitem__.return_value = collection

        with pytest.raises(SeedFailed):
            await ModuleHierarchySeeder().sync(StoreHandle("tenant_acme", db))


def report_components(catalog):
    return sum(len(sub.components) for module in catalog.tenant_modules() for sub in module.submodules)


class TestDefaultRoleSeeder:
    """Test default role seeding"""

    async def test_seed_creates_roles(self, store):
        created = await DefaultRoleSeeder().seed(store)

        assert created == ["Super Administrator", "Administrator", "HR Manager", "Employee"]
        super_admin = await store["roles"].find_one({"name": "Super Administrator"})
        assert super_admin["guard_name"] == "web"
        assert super_admin["is_protected"] is True
        assert await store["role_has_permissions"].count_documents({}) == 0

    async def test_seed_is_find_or_create(self, store):
        await store["roles"].insert_one(
            {"name": "Employee", "guard_name": "web", "description": "Customised by the tenant"}
        )

        created = await DefaultRoleSeeder().seed(store)

        assert "Employee" not in created
        assert await store["roles"].count_documents({}) == 4
        employee = await store["roles"].find_one({"name": "Employee"})
        assert employee["description"] == "Customised by the tenant"

    async def test_reseed_creates_nothing(self, store):
        seeder = DefaultRoleSeeder()
        await seeder.seed(store)

        assert await seeder.seed(store) == []


class TestProvisioningVerifier:
    """Test post-seed verification"""

    async def test_missing_collections(self, store):
        with pytest.raises(VerificationFailed, match="users"):
            await ProvisioningVerifier().verify(store)

    async def test_missing_super_administrator(self, store):
        for name in ProvisioningVerifier.REQUIRED_COLLECTIONS:
            await store[name].insert_one({"name": "placeholder"})

        with pytest.raises(VerificationFailed, match="Super Administrator"):
            await ProvisioningVerifier().verify(store)

    async def test_complete_store_passes(self, store):
        await store["users"].insert_one({"email": "admin@acme.test"})
        await ModuleHierarchySeeder().sync(store)
        await DefaultRoleSeeder().seed(store)

        await ProvisioningVerifier().verify(store)

    async def test_driver_error_raises_verification_failed(self):
        db = MagicMock()
        db.list_collection_names = AsyncMock(side_effect=AutoReconnect("primary stepped down"))

        with pytest.raises(VerificationFailed) as exc_info:
            await ProvisioningVerifier().verify(StoreHandle("tenant_acme", db))

        assert is_retryable(exc_info.value)
