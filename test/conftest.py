"""
Pytest configuration and fixtures for control plane tests

Platform and tenant stores run against mongomock, wrapped so the code under
test can await it the way it awaits Motor.
"""

import os
import sys
from unittest.mock import AsyncMock

import mongomock
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from control_plane.config import PlatformConfig  # noqa: E402
from control_plane.provisioning.migrations import (  # noqa: E402
    ChangeScript,
    MigrationRunner,
    StaticScriptSetResolver,
)
from control_plane.provisioning.notifier import ProgressReporter  # noqa: E402
from control_plane.provisioning.store import TenantStoreProvisioner  # noqa: E402
from control_plane.tenant_management.db_service import PlanDBService, TenantDBService  # noqa: E402
from control_plane.tenant_management.models import DomainBinding, Plan, Tenant  # noqa: E402


class MockMotorCursor:
    """Async iteration over a mongomock cursor."""

    def __init__(self, cursor):
        self._cursor = iter(cursor)

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return next(self._cursor)
        except StopIteration:
            raise StopAsyncIteration

    async def to_list(self, length=None):
        return list(self._cursor)


class MockMotorCollection:
    """Awaitable facade over a mongomock collection."""

    def __init__(self, collection):
        self._collection = collection

    @property
    def name(self):
        return self._collection.name

    def find(self, *args, **kwargs):
        return MockMotorCursor(self._collection.find(*args, **kwargs))

    def __getattr__(self, name):
        method = getattr(self._collection, name)

        async def call(*args, **kwargs):
            return method(*args, **kwargs)

        return call


class MockMotorDatabase:
    def __init__(self, db):
        self._db = db

    @property
    def name(self):
        return self._db.name

    def __getitem__(self, name):
        return MockMotorCollection(self._db[name])

    async def list_collection_names(self):
        return self._db.list_collection_names()


class MockMotorClient:
    def __init__(self):
        self._client = mongomock.MongoClient()

    def __getitem__(self, name):
        return MockMotorDatabase(self._client[name])

    async def list_database_names(self):
        return self._client.list_database_names()

    async def drop_database(self, name):
        self._client.drop_database(name)

    def close(self):
        self._client.close()


@pytest.fixture
def mongo_client():
    return MockMotorClient()


@pytest.fixture
def platform_db(mongo_client):
    return mongo_client["control_plane_test"]


@pytest.fixture
def test_config():
    return PlatformConfig(
        central_domain="platform.test",
        support_email="support@platform.test",
        provisioning_workers=1,
        provisioning_max_attempts=3,
        provisioning_backoff_seconds=[0.0],
        provisioning_max_exceptions=1,
        notification_webhook_url=None,
        enable_realtime_broadcasts=False,
    )


@pytest.fixture
async def registry(platform_db):
    service = TenantDBService(platform_db)
    await service.ensure_indexes()
    return service


@pytest.fixture
async def plans(platform_db):
    service = PlanDBService(platform_db)
    await service.ensure_indexes()
    await service.upsert_plan(Plan(code="growth", name="Growth", module_codes=["core", "hr"]))
    return service


@pytest.fixture
def provisioner(mongo_client, test_config):
    return TenantStoreProvisioner(mongo_client, test_config)


@pytest.fixture
def reporter():
    """Progress reporter with recording transports."""
    return ProgressReporter(broadcaster=AsyncMock(), notifier=AsyncMock())


@pytest.fixture
async def pending_tenant(registry, test_config):
    """The Acme tenant, registered and waiting for provisioning."""
    tenant = Tenant(name="Acme", contact_email="admin@acme.test", subdomain="acme", plan_code="growth")
    await registry.create(tenant)
    await registry.create_domain(
        DomainBinding(tenant_id=tenant.tenant_id, domain=test_config.get_tenant_domain(tenant.subdomain))
    )
    return tenant


def make_script(name, collection=None, calls=None, error=None):
    """Build an in-memory change-script that records its runs."""

    async def up(db):
        if calls is not None:
            calls.append(name)
        if error is not None:
            raise error
        await db[collection or name].insert_one({"script": name})

    return ChangeScript(name, up=up)


@pytest.fixture
def script_factory():
    return make_script


@pytest.fixture
def static_runner():
    """Migration runner over two in-memory core scripts and one hr script."""
    resolver = StaticScriptSetResolver(
        core=[
            make_script("2024_01_01_000001_create_users", "users"),
            make_script("2024_01_01_000002_create_roles", "roles"),
        ],
        modules={"hr": [make_script("2024_02_01_000001_create_employees", "employees")]},
    )
    return MigrationRunner(resolver)
