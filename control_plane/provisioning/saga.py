"""
Tenant Provisioning Saga

Drives one tenant from ``pending`` to ``active``:

    creating_store -> migrating -> syncing_modules -> seeding_roles -> active

The checkpoint is persisted before each stage runs, so the tenant row always
names the stage in flight. Every stage is safe to re-run, which lets the queue
redeliver the whole saga after a transient failure. The saga decides
whether a failure is retried or rolled back.
"""

from typing import Optional

from structlog import get_logger

from ..config import PlatformConfig, get_config
from ..tenant_management.db_service import PlanDBService, TenantDBService
from ..tenant_management.models import ProvisioningStep, Tenant, TenantStatus
from .errors import PreflightFailed, ProvisioningError, is_retryable
from .migrations import FilesystemScriptSetResolver, MigrationRunner
from .notifier import ProgressReporter
from .rollback import RollbackManager, error_kind
from .seeding import DefaultRoleSeeder, ModuleHierarchySeeder, ProvisioningVerifier
from .store import TenantStoreProvisioner

logger = get_logger()


class ProvisioningSaga:
    """Provisioning state machine for a single tenant."""

    def __init__(
        self,
        registry: TenantDBService,
        plans: PlanDBService,
        provisioner: TenantStoreProvisioner,
        migrations: Optional[MigrationRunner] = None,
        module_seeder: Optional[ModuleHierarchySeeder] = None,
        role_seeder: Optional[DefaultRoleSeeder] = None,
        verifier: Optional[ProvisioningVerifier] = None,
        reporter: Optional[ProgressReporter] = None,
        rollback: Optional[RollbackManager] = None,
        platform_config: Optional[PlatformConfig] = None,
    ):
        """
        Initialize the saga.

        Args:
            registry: Tenant registry in the platform database
            plans: Plan lookup for the tenant's module codes
            provisioner: Creates and drops tenant stores
            migrations: Change-script runner (defaults to the configured scripts path)
            module_seeder: Module hierarchy sync
            role_seeder: Default role seeding
            verifier: Post-seed structural check
            reporter: Progress events and contact notifications
            rollback: Compensation manager
            platform_config: Settings override, mainly for tests
        """
        self.config = platform_config or get_config()
        self.registry = registry
        self.plans = plans
        self.provisioner = provisioner
        self.migrations = migrations or MigrationRunner(
            FilesystemScriptSetResolver(self.config.change_scripts_path)
        )
        self.module_seeder = module_seeder or ModuleHierarchySeeder()
        self.role_seeder = role_seeder or DefaultRoleSeeder()
        self.verifier = verifier or ProvisioningVerifier()
        self.reporter = reporter or ProgressReporter()
        self.rollback = rollback or RollbackManager(
            registry, provisioner, self.reporter, platform_config=self.config
        )

    async def handle(self, tenant_id: str, attempt: int = 1, max_attempts: int = 1) -> Optional[Tenant]:
        """
        Run (or resume) provisioning for a tenant.

        Args:
            tenant_id: Tenant to provision
            attempt: Current delivery attempt, starting at 1
            max_attempts: Attempts the queue will make in total

        Returns:
            The tenant after this run, or None if it no longer exists

        Raises:
            Exception: Stage failure. Retryable provisioning errors and errors outside
                the provisioning taxonomy are re-raised with the checkpoint intact while
                attempts remain; anything else, or the last attempt, is re-raised after rollback.
        """
        log = logger.bind(tenant_id=tenant_id, attempt=attempt, max_attempts=max_attempts)

        tenant = await self.registry.get(tenant_id)
        if tenant is None:
            log.info("provisioning_skipped_tenant_absent")
            return None
        if tenant.status == TenantStatus.ACTIVE:
            log.info("provisioning_skipped_already_active")
            return tenant
        if tenant.status in (TenantStatus.FAILED, TenantStatus.SUSPENDED):
            log.warning("provisioning_skipped_needs_operator", status=tenant.status.value)
            return tenant

        try:
            return await self._run(tenant, log)
        except Exception as e:
            snapshot = await self._snapshot(tenant)
            # Unexpected errors with attempts left belong to the queue's exception budget
            deferred = is_retryable(e) or not isinstance(e, ProvisioningError)
            if deferred and attempt < max_attempts:
                log.warning(
                    "provisioning_attempt_failed",
                    step=snapshot.provisioning_step,
                    error=str(e),
                    error_type=error_kind(e),
                )
                raise

            log.error(
                "provisioning_failed",
                step=snapshot.provisioning_step,
                error=str(e),
                error_type=error_kind(e),
            )
            await self.rollback.rollback(snapshot, e, attempt)
            raise

    async def failed(self, tenant_id: str, error: BaseException) -> None:
        """
        Permanent-failure handler, called once the queue gives up on a tenant.

        Rolls back only if the tenant is still mid-provisioning; a tenant that
        was already rolled back or marked failed is left alone.
        """
        tenant = await self.registry.get(tenant_id)
        if tenant is None or tenant.status not in (TenantStatus.PENDING, TenantStatus.PROVISIONING):
            logger.info("provisioning_failure_already_handled", tenant_id=tenant_id)
            return

        logger.error("provisioning_abandoned", tenant_id=tenant_id, error=str(error))
        await self.rollback.rollback(tenant, error, tenant.provisioning_attempts or 1)

    async def _run(self, tenant: Tenant, log) -> Tenant:
        tenant_id = tenant.tenant_id
        module_codes = await self._preflight(tenant, log)

        await self.registry.start_provisioning(tenant_id, ProvisioningStep.CREATING_STORE)
        await self.reporter.step(tenant_id, ProvisioningStep.CREATING_STORE.value)
        store_name = await self.provisioner.create_store(tenant)
        await self.registry.set_store_name(tenant_id, store_name)

        async with self.provisioner.open_store(store_name) as store:
            await self._checkpoint(tenant_id, ProvisioningStep.MIGRATING)
            report = await self.migrations.run(store, module_codes, tenant_id)
            log.info("tenant_store_migrated", applied=len(report.applied), batch=report.batch)

            await self._checkpoint(tenant_id, ProvisioningStep.SYNCING_MODULES)
            await self.module_seeder.sync(store)

            await self._checkpoint(tenant_id, ProvisioningStep.SEEDING_ROLES)
            await self.role_seeder.seed(store)

            await self.verifier.verify(store)

        tenant = await self.registry.activate(tenant_id)
        await self.reporter.step(tenant_id, ProvisioningStep.COMPLETED.value)
        await self.reporter.completed(tenant)

        log.info("tenant_provisioned", store=store_name, modules=module_codes)
        return tenant

    async def _preflight(self, tenant: Tenant, log) -> list[str]:
        """Check the tenant is complete enough to provision and resolve its modules."""
        if not tenant.subdomain:
            raise PreflightFailed("Tenant has no subdomain", tenant.tenant_id)

        if not await self.registry.list_domains(tenant.tenant_id):
            raise PreflightFailed("Tenant has no domain binding", tenant.tenant_id)

        module_codes = await self.plans.get_module_codes(tenant.plan_code)
        if not tenant.plan_code or not module_codes:
            log.warning("tenant_plan_missing", plan_code=tenant.plan_code, modules=module_codes)

        return module_codes

    async def _checkpoint(self, tenant_id: str, step: ProvisioningStep) -> None:
        await self.registry.set_checkpoint(tenant_id, step)
        await self.reporter.step(tenant_id, step.value)
        logger.info("provisioning_step", tenant_id=tenant_id, step=step.value)

    async def _snapshot(self, tenant: Tenant) -> Tenant:
        """Latest tenant row for rollback, falling back to the copy loaded at start."""
        try:
            return await self.registry.get(tenant.tenant_id) or tenant
        except Exception as e:
            logger.warning("tenant_reload_failed", tenant_id=tenant.tenant_id, error=str(e))
            return tenant
