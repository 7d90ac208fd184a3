"""
Provisioning Progress & Notifications

Realtime progress events for the onboarding UI and contact notifications sent
when a workspace is ready or could not be set up. Both channels are
best-effort: a failure here never fails or rolls back provisioning.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import httpx
from pydantic import BaseModel, Field
from redis import asyncio as aioredis
from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..tenant_management.models import Tenant
from .errors import BroadcastFailed, NotificationFailed

logger = get_logger()


class ProvisioningStepEvent(BaseModel):
    """Transient progress event. Never persisted."""

    tenant_id: str
    step: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": "9f1c2d3e4b5a69788796a5b4c3d2e1f0",
                "step": "migrating",
                "message": "Setting up your workspace database",
                "timestamp": "2024-01-15T10:30:00Z",
            }
        }


# The only failure wording tenants ever see
FAILURE_MESSAGE = "Workspace setup failed. Please contact support."

STEP_MESSAGES = {
    "creating_store": "Creating your workspace",
    "migrating": "Setting up your workspace database",
    "syncing_modules": "Installing your modules",
    "seeding_roles": "Creating default roles",
    "completed": "Your workspace is ready",
    "failed": "Workspace setup failed",
}


def channel_for(tenant_id: str) -> str:
    """Private per-tenant channel for progress events."""
    return f"tenant.{tenant_id}.provisioning"


class Broadcaster(ABC):
    """Publishes progress events to a realtime transport."""

    @abstractmethod
    async def publish(self, event: ProvisioningStepEvent) -> None:
        """
        Publish one event.

        Raises:
            BroadcastFailed: If the transport rejects the event
        """


class NullBroadcaster(Broadcaster):
    """Used when no realtime transport is configured."""

    async def publish(self, event: ProvisioningStepEvent) -> None:
        logger.debug("provisioning_event_dropped", tenant_id=event.tenant_id, step=event.step)


class RedisBroadcaster(Broadcaster):
    """Publishes events over redis pub/sub on the tenant's private channel."""

    def __init__(self, redis_client: aioredis.Redis):
        self.redis_client = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisBroadcaster":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def publish(self, event: ProvisioningStepEvent) -> None:
        try:
            await self.redis_client.publish(channel_for(event.tenant_id), event.model_dump_json())
        except Exception as e:
            raise BroadcastFailed(f"Could not publish provisioning event: {e}", event.tenant_id) from e

    async def close(self) -> None:
        await self.redis_client.aclose()


class ContactNotifier(ABC):
    """Delivers provisioning outcomes to the tenant's contact."""

    @abstractmethod
    async def send_provisioning_complete(self, tenant: Tenant) -> None:
        """Tell the contact their workspace is ready."""

    @abstractmethod
    async def send_provisioning_failed(self, tenant: Tenant, reason: str) -> None:
        """Tell the contact their workspace could not be set up."""


class LoggingContactNotifier(ContactNotifier):
    """Records notifications in the log stream only."""

    def __init__(self, platform_config: Optional[PlatformConfig] = None):
        self.config = platform_config or get_config()

    async def send_provisioning_complete(self, tenant: Tenant) -> None:
        logger.info(
            "provisioning_complete_notification",
            tenant_id=tenant.tenant_id,
            contact_email=tenant.contact_email,
            login_url=self.config.get_login_url(tenant.subdomain),
        )

    async def send_provisioning_failed(self, tenant: Tenant, reason: str) -> None:
        logger.info(
            "provisioning_failed_notification",
            tenant_id=tenant.tenant_id,
            contact_email=tenant.contact_email,
            reason=reason,
        )


class WebhookContactNotifier(ContactNotifier):
    """Posts notifications to an external delivery service."""

    def __init__(self, webhook_url: str, platform_config: Optional[PlatformConfig] = None):
        self.config = platform_config or get_config()
        self.webhook_url = webhook_url

    async def _post(self, tenant: Tenant, payload: dict) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.config.notification_timeout_seconds) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationFailed(
                f"Notification webhook returned {e.response.status_code}", tenant.tenant_id
            ) from e
        except httpx.HTTPError as e:
            raise NotificationFailed(f"Notification webhook unreachable: {e}", tenant.tenant_id) from e

        logger.info("notification_sent", tenant_id=tenant.tenant_id, notification=payload["event"])

    async def send_provisioning_complete(self, tenant: Tenant) -> None:
        await self._post(
            tenant,
            {
                "event": "provisioning.completed",
                "tenant_id": tenant.tenant_id,
                "name": tenant.name,
                "contact_email": tenant.contact_email,
                "login_url": self.config.get_login_url(tenant.subdomain),
            },
        )

    async def send_provisioning_failed(self, tenant: Tenant, reason: str) -> None:
        await self._post(
            tenant,
            {
                "event": "provisioning.failed",
                "tenant_id": tenant.tenant_id,
                "name": tenant.name,
                "contact_email": tenant.contact_email,
                "reason": reason,
                "support_email": self.config.support_email,
            },
        )


class ProgressReporter:
    """
    Error boundary around the broadcaster and contact notifier.

    The saga and rollback manager only talk to this class, so publish and
    delivery failures are logged here and never reach provisioning logic.
    """

    def __init__(
        self,
        broadcaster: Optional[Broadcaster] = None,
        notifier: Optional[ContactNotifier] = None,
    ):
        self.broadcaster = broadcaster or NullBroadcaster()
        self.notifier = notifier or LoggingContactNotifier()

    async def step(self, tenant_id: str, step: str, message: Optional[str] = None) -> None:
        event = ProvisioningStepEvent(
            tenant_id=tenant_id,
            step=step,
            message=message or STEP_MESSAGES.get(step, step),
        )
        try:
            await self.broadcaster.publish(event)
        except Exception as e:
            logger.warning("provisioning_broadcast_failed", tenant_id=tenant_id, step=step, error=str(e))

    async def completed(self, tenant: Tenant) -> None:
        try:
            await self.notifier.send_provisioning_complete(tenant)
        except Exception as e:
            logger.warning("provisioning_notification_failed", tenant_id=tenant.tenant_id, error=str(e))

    async def failed(self, tenant: Tenant, reason: str) -> None:
        try:
            await self.notifier.send_provisioning_failed(tenant, reason)
        except Exception as e:
            logger.warning("provisioning_notification_failed", tenant_id=tenant.tenant_id, error=str(e))


def build_reporter(platform_config: Optional[PlatformConfig] = None) -> ProgressReporter:
    """Pick broadcaster and notifier implementations from settings."""
    platform_config = platform_config or get_config()

    broadcaster: Broadcaster = NullBroadcaster()
    if platform_config.enable_realtime_broadcasts:
        broadcaster = RedisBroadcaster.from_url(platform_config.redis_url)

    notifier: ContactNotifier = LoggingContactNotifier(platform_config)
    if platform_config.notification_webhook_url:
        notifier = WebhookContactNotifier(platform_config.notification_webhook_url, platform_config)

    return ProgressReporter(broadcaster, notifier)
