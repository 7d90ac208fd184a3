"""
Provisioning Errors

Exception taxonomy for the provisioning saga. Stage errors propagate to the
saga, which alone decides between retrying and rolling back.
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base class for every provisioning failure."""

    kind = "provisioning_error"
    retryable = False

    def __init__(self, message: str, tenant_id: Optional[str] = None):
        super().__init__(message)
        self.tenant_id = tenant_id


class PreflightFailed(ProvisioningError):
    """Tenant data is not complete enough to start provisioning."""

    kind = "preflight_failed"


class NameCollision(ProvisioningError):
    """The derived store name already belongs to a different tenant."""

    kind = "name_collision"

    def __init__(self, store_name: str, tenant_id: Optional[str] = None, owner_id: Optional[str] = None):
        super().__init__(f"Store '{store_name}' is already owned by another tenant", tenant_id)
        self.store_name = store_name
        self.owner_id = owner_id


class StoreCreationFailed(ProvisioningError):
    """The store could not be created; safe to retry from the top."""

    kind = "store_creation_failed"
    retryable = True


class StoreHandleReleased(RuntimeError):
    """A store handle was used after its scope ended."""


class ScriptExecutionFailed(ProvisioningError):
    """A schema change-script failed; the ledger makes a retry safe."""

    kind = "script_execution_failed"
    retryable = True

    def __init__(self, message: str, tenant_id: Optional[str] = None, script: Optional[str] = None):
        super().__init__(message, tenant_id)
        self.script = script


class MalformedChangeScript(ScriptExecutionFailed):
    """A change-script has no executable ``up`` entry point."""

    kind = "malformed_change_script"


class SeedFailed(ProvisioningError):
    """Module hierarchy sync or role seeding failed."""

    kind = "seed_failed"
    retryable = True


class VerificationFailed(SeedFailed):
    """The provisioned store is missing required collections or roles."""

    kind = "verification_failed"


class BroadcastFailed(ProvisioningError):
    """A progress event could not be published. Always swallowed."""

    kind = "broadcast_failed"


class NotificationFailed(ProvisioningError):
    """A contact notification could not be delivered. Always swallowed."""

    kind = "notification_failed"


class RollbackPartialFailure(ProvisioningError):
    """One or more compensation steps failed; the tenant needs manual remediation."""

    kind = "rollback_partial_failure"

    def __init__(self, tenant_id: str, failed_steps: dict[str, str]):
        steps = ", ".join(f"{step}: {error}" for step, error in failed_steps.items())
        super().__init__(f"Rollback incomplete for tenant '{tenant_id}' ({steps})", tenant_id)
        self.failed_steps = failed_steps


def is_retryable(exc: BaseException) -> bool:
    """Whether the outer queue may run the whole saga again after this error."""
    return isinstance(exc, ProvisioningError) and exc.retryable
