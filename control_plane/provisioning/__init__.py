"""
Provisioning Module

Turns a registered tenant into a working workspace: isolated store, schema
change-scripts, module hierarchy and default roles, with rollback on failure.
"""

from .errors import (
    NameCollision,
    ProvisioningError,
    RollbackPartialFailure,
    ScriptExecutionFailed,
    SeedFailed,
    StoreCreationFailed,
)
from .migrations import FilesystemScriptSetResolver, MigrationRunner, StaticScriptSetResolver
from .queue import ProvisioningQueue
from .rollback import RollbackManager, RollbackOutcome
from .saga import ProvisioningSaga
from .store import StoreHandle, TenantStoreProvisioner

__all__ = [
    "ProvisioningError",
    "NameCollision",
    "StoreCreationFailed",
    "ScriptExecutionFailed",
    "SeedFailed",
    "RollbackPartialFailure",
    "FilesystemScriptSetResolver",
    "StaticScriptSetResolver",
    "MigrationRunner",
    "ProvisioningQueue",
    "ProvisioningSaga",
    "RollbackManager",
    "RollbackOutcome",
    "StoreHandle",
    "TenantStoreProvisioner",
]
