"""
Tests for progress broadcasting and contact notifications
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
from fakeredis import FakeAsyncRedis
from structlog.testing import capture_logs

from control_plane.provisioning.errors import BroadcastFailed, NotificationFailed
from control_plane.provisioning.notifier import (
    LoggingContactNotifier,
    NullBroadcaster,
    ProgressReporter,
    ProvisioningStepEvent,
    RedisBroadcaster,
    WebhookContactNotifier,
    build_reporter,
    channel_for,
)
from control_plane.tenant_management.models import Tenant


@pytest.fixture
def acme():
    return Tenant(name="Acme", contact_email="admin@acme.test", subdomain="acme")


@pytest.fixture
def webhook(monkeypatch):
    """Route the notifier's HTTP client through a recording transport."""
    requests = []
    responses = {"status": 200}

    def handler(request):
        requests.append(request)
        return httpx.Response(responses["status"], json={"ok": True})

    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    return requests, responses


class TestRedisBroadcaster:
    """Test realtime progress events"""

    async def test_publishes_on_tenant_channel(self):
        redis_client = FakeAsyncRedis(decode_responses=True)
        pubsub = redis_client.pubsub()
        await pubsub.subscribe(channel_for("t-1"))
        await pubsub.get_message(timeout=1)

        await RedisBroadcaster(redis_client).publish(
            ProvisioningStepEvent(tenant_id="t-1", step="migrating", message="Setting up")
        )

        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
        assert message["channel"] == "tenant.t-1.provisioning"
        assert json.loads(message["data"])["step"] == "migrating"
        await pubsub.aclose()

    async def test_transport_error_raises_broadcast_failed(self):
        redis_client = AsyncMock()
        redis_client.publish.side_effect = ConnectionError("connection refused")

        with pytest.raises(BroadcastFailed):
            await RedisBroadcaster(redis_client).publish(
                ProvisioningStepEvent(tenant_id="t-1", step="migrating", message="Setting up")
            )


class TestWebhookContactNotifier:
    """Test webhook notification delivery"""

    async def test_completion_payload(self, webhook, acme, test_config):
        requests, _ = webhook
        notifier = WebhookContactNotifier("https://hooks.platform.test/notify", test_config)

        await notifier.send_provisioning_complete(acme)

        payload = json.loads(requests[0].content)
        assert payload["event"] == "provisioning.completed"
        assert payload["login_url"] == "https://acme.platform.test/login"

    async def test_failure_payload_has_support_contact(self, webhook, acme, test_config):
        requests, _ = webhook
        notifier = WebhookContactNotifier("https://hooks.platform.test/notify", test_config)

        await notifier.send_provisioning_failed(acme, "Workspace setup failed")

        payload = json.loads(requests[0].content)
        assert payload["event"] == "provisioning.failed"
        assert payload["support_email"] == "support@platform.test"

    async def test_delivery_is_logged_as_sent(self, webhook, acme, test_config):
        notifier = WebhookContactNotifier("https://hooks.platform.test/notify", test_config)
        reporter = ProgressReporter(NullBroadcaster(), notifier)

        with capture_logs() as logs:
            await reporter.completed(acme)

        events = [entry["event"] for entry in logs]
        assert "notification_sent" in events
        assert "provisioning_notification_failed" not in events
        sent = next(entry for entry in logs if entry["event"] == "notification_sent")
        assert sent["notification"] == "provisioning.completed"

    async def test_error_status_raises(self, webhook, acme, test_config):
        _, responses = webhook
        responses["status"] = 503
        notifier = WebhookContactNotifier("https://hooks.platform.test/notify", test_config)

        with pytest.raises(NotificationFailed):
            await notifier.send_provisioning_complete(acme)


class TestProgressReporter:
    """Test the best-effort error boundary"""

    async def test_step_swallows_broadcast_errors(self):
        broadcaster = AsyncMock()
        broadcaster.publish.side_effect = BroadcastFailed("redis down")

        await ProgressReporter(broadcaster, AsyncMock()).step("t-1", "migrating")

        event = broadcaster.publish.await_args.args[0]
        assert event.message == "Setting up your workspace database"

    async def test_notifications_swallow_errors(self, acme):
        notifier = AsyncMock()
        notifier.send_provisioning_complete.side_effect = NotificationFailed("bounced")
        notifier.send_provisioning_failed.side_effect = NotificationFailed("bounced")
        reporter = ProgressReporter(NullBroadcaster(), notifier)

        await reporter.completed(acme)
        await reporter.failed(acme, "Workspace setup failed")

    def test_build_reporter_defaults(self, test_config):
        reporter = build_reporter(test_config)

        assert isinstance(reporter.broadcaster, NullBroadcaster)
        assert isinstance(reporter.notifier, LoggingContactNotifier)

    def test_build_reporter_with_webhook(self, test_config):
        reporter = build_reporter(
            test_config.model_copy(update={"notification_webhook_url": "https://hooks.platform.test/notify"})
        )

        assert isinstance(reporter.notifier, WebhookContactNotifier)
