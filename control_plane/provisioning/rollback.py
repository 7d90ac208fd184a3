"""
Provisioning Rollback

Compensates a failed provisioning run: drops the tenant store, removes domain
bindings, deletes the tenant record and tells the contact. Each step is
attempted independently; when cleanup is incomplete the tenant is kept and
marked failed so an operator can finish the job.
"""

from typing import Optional

from pydantic import BaseModel, Field
from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..tenant_management.db_service import TenantDBService
from ..tenant_management.models import Tenant
from .audit import ProvisioningAuditService, ProvisioningFailureRecord
from .errors import RollbackPartialFailure
from .notifier import FAILURE_MESSAGE, ProgressReporter
from .store import TenantStoreProvisioner

logger = get_logger()


class RollbackOutcome(BaseModel):
    """What a rollback managed to undo."""

    tenant_id: str
    store_name: Optional[str] = None
    store_dropped: bool = False
    domains_deleted: int = 0
    tenant_deleted: bool = False
    marked_failed: bool = False
    failed_steps: dict[str, str] = Field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed_steps


def error_kind(error: BaseException) -> str:
    return getattr(error, "kind", type(error).__name__)


class RollbackManager:
    """Runs compensation for a tenant whose provisioning cannot continue."""

    def __init__(
        self,
        registry: TenantDBService,
        provisioner: TenantStoreProvisioner,
        reporter: Optional[ProgressReporter] = None,
        audit: Optional[ProvisioningAuditService] = None,
        platform_config: Optional[PlatformConfig] = None,
    ):
        self.registry = registry
        self.provisioner = provisioner
        self.reporter = reporter or ProgressReporter()
        self.audit = audit
        self.config = platform_config or get_config()

    async def rollback(self, tenant: Tenant, error: BaseException, attempt: int = 1) -> RollbackOutcome:
        """
        Undo whatever provisioning created for a tenant.

        Never raises: failures are collected in the outcome, logged, and the
        tenant falls back to the failed status.

        Args:
            tenant: Tenant snapshot taken before rollback
            error: The failure that triggered rollback
            attempt: Saga attempt on which provisioning gave up

        Returns:
            Rollback outcome
        """
        log = logger.bind(tenant_id=tenant.tenant_id, failed_step=tenant.provisioning_step)
        log.warning("provisioning_rollback_started", error=str(error), error_type=error_kind(error))

        outcome = RollbackOutcome(tenant_id=tenant.tenant_id)
        try:
            await self._compensate(tenant, error, outcome)
        except Exception as e:
            log.error("provisioning_rollback_crashed", error=str(e))
            outcome.failed_steps["rollback"] = str(e)
            if not outcome.marked_failed:
                await self._mark_failed(tenant, error, outcome)

        if outcome.complete:
            log.info("provisioning_rolled_back", **outcome.model_dump(exclude={"tenant_id", "failed_steps"}))
        else:
            partial = RollbackPartialFailure(tenant.tenant_id, outcome.failed_steps)
            log.critical(
                "provisioning_rollback_incomplete",
                error=str(partial),
                failed_steps=partial.failed_steps,
                marked_failed=outcome.marked_failed,
            )

        await self._record(tenant, error, attempt, outcome)
        return outcome

    async def _compensate(self, tenant: Tenant, error: BaseException, outcome: RollbackOutcome) -> None:
        try:
            outcome.store_name = tenant.store_name or await self.provisioner.owned_store_name(tenant)
            if outcome.store_name:
                await self.provisioner.drop_store(outcome.store_name)
                outcome.store_dropped = True
        except Exception as e:
            outcome.failed_steps["drop_store"] = str(e)

        try:
            outcome.domains_deleted = await self.registry.delete_domains(tenant.tenant_id)
        except Exception as e:
            outcome.failed_steps["delete_domains"] = str(e)

        if outcome.failed_steps or self.config.preserve_failed_tenants:
            # Keep the row and its checkpoint for manual remediation
            await self._mark_failed(tenant, error, outcome)
        else:
            try:
                outcome.tenant_deleted = await self.registry.delete(tenant.tenant_id, hard=True)
            except Exception as e:
                outcome.failed_steps["delete_tenant"] = str(e)
                await self._mark_failed(tenant, error, outcome)

        await self.reporter.step(tenant.tenant_id, "failed")
        await self.reporter.failed(tenant, FAILURE_MESSAGE)

    async def _mark_failed(self, tenant: Tenant, error: BaseException, outcome: RollbackOutcome) -> None:
        try:
            outcome.marked_failed = await self.registry.mark_failed(
                tenant.tenant_id, f"{error_kind(error)}: {error}"
            )
        except Exception as e:
            outcome.failed_steps["mark_failed"] = str(e)

    async def _record(
        self, tenant: Tenant, error: BaseException, attempt: int, outcome: RollbackOutcome
    ) -> None:
        if self.audit is None or not self.config.enable_audit_logging:
            return

        entry = ProvisioningFailureRecord(
            tenant_id=tenant.tenant_id,
            name=tenant.name,
            subdomain=tenant.subdomain,
            contact_email=tenant.contact_email,
            store_name=outcome.store_name or tenant.store_name,
            failed_step=tenant.provisioning_step.value if tenant.provisioning_step else None,
            error=str(error),
            error_type=error_kind(error),
            attempt=attempt,
            rollback_outcome=outcome.model_dump(exclude={"tenant_id"}),
        )
        try:
            await self.audit.record(entry)
        except Exception as e:
            logger.error("provisioning_audit_failed", tenant_id=tenant.tenant_id, error=str(e))
