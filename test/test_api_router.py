"""
Tests for the tenant management API

The router runs in a bare FastAPI app wired to the in-memory platform
database; the provisioning queue is mocked.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI

from control_plane.config import config
from control_plane.provisioning.notifier import FAILURE_MESSAGE
from control_plane.tenant_management.api_router import router
from control_plane.tenant_management.models import DomainBinding, ProvisioningStep, Tenant, TenantStatus


@pytest.fixture
def provisioning_queue():
    queue = MagicMock()
    queue.enqueue = AsyncMock()
    return queue


@pytest.fixture
async def client(platform_db, registry, provisioner, provisioning_queue):
    app = FastAPI()
    app.include_router(router)
    app.state.platform_db = platform_db
    app.state.store_provisioner = provisioner
    app.state.provisioning_queue = provisioning_queue

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
async def acme(registry):
    tenant = Tenant(name="Acme", contact_email="admin@acme.com", subdomain="acme", plan_code="growth")
    await registry.create(tenant)
    await registry.create_domain(
        DomainBinding(tenant_id=tenant.tenant_id, domain=config.get_tenant_domain("acme"))
    )
    return tenant


class TestRegistration:
    """Test tenant registration"""

    async def test_register_queues_provisioning(self, client, registry, provisioning_queue):
        response = await client.post(
            "/platform/tenants/",
            json={"name": "Acme", "subdomain": "Acme", "contact_email": "admin@acme.com", "plan_code": "growth"},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        assert data["status_url"] == f"/platform/tenants/{data['tenant_id']}/provisioning-status"
        provisioning_queue.enqueue.assert_awaited_once_with(data["tenant_id"])

        tenant = await registry.get(data["tenant_id"])
        assert tenant.subdomain == "acme"
        domains = await registry.list_domains(data["tenant_id"])
        assert [d.domain for d in domains] == [config.get_tenant_domain("acme")]

    async def test_duplicate_subdomain_conflict(self, client, acme, provisioning_queue):
        response = await client.post(
            "/platform/tenants/",
            json={"name": "Other", "subdomain": "acme", "contact_email": "other@acme.com"},
        )

        assert response.status_code == 409
        provisioning_queue.enqueue.assert_not_called()

    async def test_invalid_subdomain_rejected(self, client):
        response = await client.post(
            "/platform/tenants/",
            json={"name": "Acme", "subdomain": "admin", "contact_email": "admin@acme.com"},
        )

        assert response.status_code == 422

    async def test_check_subdomain(self, client, acme):
        taken = (await client.get("/platform/tenants/check/subdomain/acme")).json()
        free = (await client.get("/platform/tenants/check/subdomain/globex")).json()
        invalid = (await client.get("/platform/tenants/check/subdomain/www")).json()

        assert not taken["available"]
        assert free["available"]
        assert not invalid["available"]


class TestProvisioningStatus:
    """Test the waiting-room poll endpoint"""

    async def test_pending_status(self, client, acme):
        response = await client.get(f"/platform/tenants/{acme.tenant_id}/provisioning-status")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == acme.tenant_id
        assert data["status"] == "pending"
        assert data["domain"] == config.get_tenant_domain("acme")
        assert data["is_ready"] is False
        assert data["has_failed"] is False
        assert data["login_url"] is None
        assert data["error"] is None

    async def test_in_progress_status(self, client, registry, acme):
        await registry.start_provisioning(acme.tenant_id, ProvisioningStep.CREATING_STORE)
        await registry.set_checkpoint(acme.tenant_id, ProvisioningStep.MIGRATING)

        data = (await client.get(f"/platform/tenants/{acme.tenant_id}/provisioning-status")).json()

        assert data["status"] == "provisioning"
        assert data["provisioning_step"] == "migrating"

    async def test_ready_status_has_login_url(self, client, registry, acme):
        await registry.start_provisioning(acme.tenant_id, ProvisioningStep.CREATING_STORE)
        await registry.activate(acme.tenant_id)

        data = (await client.get(f"/platform/tenants/{acme.tenant_id}/provisioning-status")).json()

        assert data["is_ready"] is True
        assert data["provisioning_step"] is None
        assert data["login_url"] == config.get_login_url("acme")

    async def test_failed_status_hides_internal_error(self, client, registry, acme):
        await registry.mark_failed(acme.tenant_id, "script_execution_failed: E11000 duplicate key")

        data = (await client.get(f"/platform/tenants/{acme.tenant_id}/provisioning-status")).json()

        assert data["has_failed"] is True
        assert data["error"] == FAILURE_MESSAGE
        assert data["support_email"] == config.support_email
        assert "E11000" not in str(data)

    async def test_unknown_tenant(self, client):
        response = await client.get("/platform/tenants/missing/provisioning-status")
        assert response.status_code == 404


class TestRetry:
    """Test manual provisioning retries"""

    async def test_retry_failed_tenant(self, client, registry, provisioner, provisioning_queue, acme):
        await registry.start_provisioning(acme.tenant_id, ProvisioningStep.CREATING_STORE)
        store_name = await provisioner.create_store(acme)
        await registry.set_store_name(acme.tenant_id, store_name)
        await registry.mark_failed(acme.tenant_id, "boom")

        response = await client.post(f"/platform/tenants/{acme.tenant_id}/provisioning/retry")

        assert response.status_code == 202
        tenant = await registry.get(acme.tenant_id)
        assert tenant.status == TenantStatus.PENDING
        assert tenant.provisioning_step is None
        assert not await provisioner.store_exists(store_name)
        provisioning_queue.enqueue.assert_awaited_once_with(acme.tenant_id)

    async def test_retry_restores_domain_binding(self, client, registry, acme):
        await registry.delete_domains(acme.tenant_id)
        await registry.mark_failed(acme.tenant_id, "boom")

        response = await client.post(f"/platform/tenants/{acme.tenant_id}/provisioning/retry")

        assert response.status_code == 202
        assert len(await registry.list_domains(acme.tenant_id)) == 1

    async def test_retry_pending_tenant(self, client, provisioning_queue, acme):
        response = await client.post(f"/platform/tenants/{acme.tenant_id}/provisioning/retry")

        assert response.status_code == 202
        provisioning_queue.enqueue.assert_awaited_once()

    async def test_retry_active_tenant_conflicts(self, client, registry, provisioning_queue, acme):
        await registry.start_provisioning(acme.tenant_id, ProvisioningStep.CREATING_STORE)
        await registry.activate(acme.tenant_id)

        response = await client.post(f"/platform/tenants/{acme.tenant_id}/provisioning/retry")

        assert response.status_code == 409
        provisioning_queue.enqueue.assert_not_called()

    async def test_retry_unknown_tenant(self, client):
        response = await client.post("/platform/tenants/missing/provisioning/retry")
        assert response.status_code == 404


class TestAdministration:
    """Test tenant administration endpoints"""

    async def test_get_and_list(self, client, acme):
        tenant = (await client.get(f"/platform/tenants/{acme.tenant_id}")).json()
        listing = (await client.get("/platform/tenants/", params={"status": "pending"})).json()

        assert tenant["subdomain"] == "acme"
        assert listing["total"] == 1
        assert listing["tenants"][0]["tenant_id"] == acme.tenant_id

    async def test_suspend_and_activate(self, client, registry, acme):
        await registry.start_provisioning(acme.tenant_id, ProvisioningStep.CREATING_STORE)
        await registry.activate(acme.tenant_id)

        suspended = await client.post(f"/platform/tenants/{acme.tenant_id}/suspend", json={"reason": "Unpaid"})
        reactivated = await client.post(f"/platform/tenants/{acme.tenant_id}/activate")

        assert suspended.json()["status"] == "suspended"
        assert reactivated.json()["status"] == "active"

    async def test_suspend_pending_conflicts(self, client, acme):
        response = await client.post(f"/platform/tenants/{acme.tenant_id}/suspend")
        assert response.status_code == 409

    async def test_soft_delete(self, client, acme):
        response = await client.delete(f"/platform/tenants/{acme.tenant_id}")

        assert response.status_code == 204
        assert (await client.get(f"/platform/tenants/{acme.tenant_id}")).status_code == 404
