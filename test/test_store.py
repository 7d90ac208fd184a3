"""
Tests for tenant store creation, collision detection and scoped handles
"""

import pytest

from control_plane.provisioning.errors import NameCollision, StoreHandleReleased
from control_plane.provisioning.store import OWNER_MARKER_ID, OWNERSHIP_COLLECTION
from control_plane.tenant_management.models import Tenant


@pytest.fixture
def acme():
    return Tenant(name="Acme", contact_email="admin@acme.test", subdomain="acme")


class TestStoreNaming:
    """Test deterministic store names"""

    def test_store_name_from_subdomain(self, provisioner, acme):
        assert provisioner.store_name_for(acme) == "tenant_acme"

    def test_hyphens_replaced(self, provisioner):
        tenant = Tenant(name="Acme EU", contact_email="eu@acme.test", subdomain="acme-eu")
        assert provisioner.store_name_for(tenant) == "tenant_acme_eu"


class TestCreateStore:
    """Test store creation"""

    async def test_create_store_writes_owner_marker(self, provisioner, mongo_client, acme):
        store_name = await provisioner.create_store(acme)

        assert store_name == "tenant_acme"
        assert await provisioner.store_exists(store_name)
        marker = await mongo_client[store_name][OWNERSHIP_COLLECTION].find_one({"_id": OWNER_MARKER_ID})
        assert marker["tenant_id"] == acme.tenant_id

    async def test_create_store_is_idempotent_for_owner(self, provisioner, acme):
        first = await provisioner.create_store(acme)
        second = await provisioner.create_store(acme)

        assert first == second

    async def test_collision_with_other_tenant(self, provisioner, mongo_client, acme):
        owner = Tenant(name="First", contact_email="first@acme.test", subdomain="acme-1")
        await provisioner.create_store(owner)
        await mongo_client["tenant_acme_1"]["customers"].insert_one({"name": "Existing customer"})

        intruder = Tenant(name="Second", contact_email="second@acme.test", subdomain="acme-1")

        with pytest.raises(NameCollision) as exc_info:
            await provisioner.create_store(intruder)

        assert exc_info.value.owner_id == owner.tenant_id
        assert await mongo_client["tenant_acme_1"]["customers"].count_documents({}) == 1
        marker = await mongo_client["tenant_acme_1"][OWNERSHIP_COLLECTION].find_one({"_id": OWNER_MARKER_ID})
        assert marker["tenant_id"] == owner.tenant_id

    async def test_unmarked_store_is_a_collision(self, provisioner, mongo_client, acme):
        await mongo_client["tenant_acme"]["legacy"].insert_one({"x": 1})

        with pytest.raises(NameCollision):
            await provisioner.create_store(acme)

    async def test_owned_store_name(self, provisioner, acme):
        assert await provisioner.owned_store_name(acme) is None

        await provisioner.create_store(acme)

        assert await provisioner.owned_store_name(acme) == "tenant_acme"
        other = Tenant(name="Other", contact_email="o@acme.test", subdomain="acme")
        assert await provisioner.owned_store_name(other) is None


class TestDropStore:
    """Test store removal"""

    async def test_drop_store(self, provisioner, acme):
        store_name = await provisioner.create_store(acme)

        await provisioner.drop_store(store_name)

        assert not await provisioner.store_exists(store_name)

    async def test_drop_absent_store_is_noop(self, provisioner):
        await provisioner.drop_store("tenant_never_created")


class TestStoreHandle:
    """Test scoped store handles"""

    async def test_handle_released_after_scope(self, provisioner, acme):
        store_name = await provisioner.create_store(acme)

        async with provisioner.open_store(store_name) as store:
            await store["users"].insert_one({"email": "a@acme.test"})
            assert not store.released

        assert store.released
        with pytest.raises(StoreHandleReleased):
            store["users"]

    async def test_handle_released_on_error(self, provisioner, acme):
        store_name = await provisioner.create_store(acme)

        with pytest.raises(RuntimeError):
            async with provisioner.open_store(store_name) as store:
                raise RuntimeError("stage failed")

        assert store.released
