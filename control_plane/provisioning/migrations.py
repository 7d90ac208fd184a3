"""
Tenant Migration Runner

Applies ordered schema change-scripts to a tenant store. Script sets are
selected per tenant: the core set, one set per plan module, and an optional
application-level set. A ledger collection inside the store records every
applied script so a re-run only executes what is missing.
"""

import importlib.util
import inspect
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError, PyMongoError
from structlog import get_logger

from .errors import MalformedChangeScript, ProvisioningError, ScriptExecutionFailed
from .store import StoreHandle

logger = get_logger()

LEDGER_COLLECTION = "migrations"

# Module codes that never carry their own script set
EXCLUDED_MODULES = frozenset({"core", "dashboard"})


class MigrationRecord(BaseModel):
    """Ledger entry for one applied change-script."""

    name: str
    batch: int
    script_set: str
    applied_at: datetime = Field(default_factory=datetime.utcnow)


class MigrationReport(BaseModel):
    """Outcome of one runner invocation."""

    batch: Optional[int] = None
    applied: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    empty_sets: list[str] = Field(default_factory=list)


class ChangeScript:
    """
    Handle to one change-script.

    A script is either backed by a Python file exporting ``up(db)`` or built
    directly from a callable. ``up`` may be a coroutine function.
    """

    def __init__(
        self,
        name: str,
        up: Optional[Callable[[Any], Any]] = None,
        path: Optional[Path] = None,
    ):
        self.name = name
        self.path = path
        self._up = up

    def entry_point(self) -> Callable[[Any], Any]:
        """Load and return the script's ``up`` callable."""
        if self._up is None and self.path is not None:
            self._up = self._load_from_file(self.path)
        if not callable(self._up):
            raise MalformedChangeScript(f"Change-script '{self.name}' has no callable 'up'", script=self.name)
        return self._up

    def _load_from_file(self, path: Path) -> Any:
        spec = importlib.util.spec_from_file_location(f"_change_script_{path.stem}", path)
        if spec is None or spec.loader is None:
            raise MalformedChangeScript(f"Change-script '{self.name}' cannot be loaded", script=self.name)

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise ScriptExecutionFailed(
                f"Change-script '{self.name}' failed to import: {e}", script=self.name
            ) from e
        return getattr(module, "up", None)

    async def run(self, db) -> None:
        result = self.entry_point()(db)
        if inspect.isawaitable(result):
            await result

    def __repr__(self) -> str:
        return f"<ChangeScript {self.name}>"


class ScriptSet:
    """Named group of change-scripts from one source directory."""

    def __init__(self, name: str, scripts: Iterable[ChangeScript]):
        self.name = name
        self.scripts = list(scripts)

    def ordered(self) -> list[ChangeScript]:
        """Scripts in application order (names embed a timestamp)."""
        return sorted(self.scripts, key=lambda script: script.name)

    def __repr__(self) -> str:
        return f"<ScriptSet {self.name} ({len(self.scripts)} scripts)>"


class ScriptSetResolver(ABC):
    """Resolves the ordered script sets that apply to a tenant."""

    def select_modules(self, module_codes: Iterable[str]) -> list[str]:
        """Deduplicate plan modules in plan order, dropping codes that never carry a set."""
        selected: list[str] = []
        for code in module_codes:
            if code in EXCLUDED_MODULES or code in selected:
                continue
            selected.append(code)
        return selected

    @abstractmethod
    def resolve(self, module_codes: Iterable[str]) -> list[ScriptSet]:
        """
        Return script sets in application order.

        Args:
            module_codes: Module codes enabled by the tenant's plan

        Returns:
            Core set first, then one set per module that has scripts, then the
            application-level set if present

        Raises:
            ScriptExecutionFailed: If no core set is available
        """


class FilesystemScriptSetResolver(ScriptSetResolver):
    """
    Discovers change-scripts on disk.

    Layout under ``root``::

        core/<timestamp>_<name>.py
        modules/<module_code>/<timestamp>_<name>.py
        tenant/<timestamp>_<name>.py
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _load_set(self, name: str, directory: Path) -> ScriptSet:
        scripts = [
            ChangeScript(path.stem, path=path)
            for path in directory.glob("*.py")
            if not path.name.startswith("_")
        ]
        return ScriptSet(name, scripts)

    def resolve(self, module_codes: Iterable[str]) -> list[ScriptSet]:
        core_dir = self.root / "core"
        if not core_dir.is_dir():
            raise ScriptExecutionFailed(f"No core change-scripts found at {core_dir}")

        script_sets = [self._load_set("core", core_dir)]

        for code in self.select_modules(module_codes):
            module_dir = self.root / "modules" / code
            if not module_dir.is_dir():
                logger.info("module_has_no_change_scripts", module=code, path=str(module_dir))
                continue
            script_sets.append(self._load_set(code, module_dir))

        tenant_dir = self.root / "tenant"
        if tenant_dir.is_dir():
            script_sets.append(self._load_set("tenant", tenant_dir))

        return script_sets


class StaticScriptSetResolver(ScriptSetResolver):
    """Script sets held in memory, e.g. embedded in an application or built in tests."""

    def __init__(
        self,
        core: Iterable[ChangeScript],
        modules: Optional[dict[str, Iterable[ChangeScript]]] = None,
        tenant: Optional[Iterable[ChangeScript]] = None,
    ):
        self.core = list(core)
        self.modules = {code: list(scripts) for code, scripts in (modules or {}).items()}
        self.tenant = list(tenant) if tenant is not None else None

    def resolve(self, module_codes: Iterable[str]) -> list[ScriptSet]:
        script_sets = [ScriptSet("core", self.core)]

        for code in self.select_modules(module_codes):
            if code not in self.modules:
                logger.info("module_has_no_change_scripts", module=code)
                continue
            script_sets.append(ScriptSet(code, self.modules[code]))

        if self.tenant is not None:
            script_sets.append(ScriptSet("tenant", self.tenant))

        return script_sets


class MigrationRunner:
    """Applies resolved script sets to a tenant store, consulting the ledger."""

    def __init__(self, resolver: ScriptSetResolver):
        self.resolver = resolver

    async def ensure_ledger(self, store: StoreHandle) -> None:
        """Create the ledger collection and its unique index if absent."""
        await store[LEDGER_COLLECTION].create_indexes(
            [
                IndexModel([("name", ASCENDING)], unique=True),
                IndexModel([("batch", ASCENDING)]),
            ]
        )

    async def applied_records(self, store: StoreHandle) -> list[MigrationRecord]:
        """Return ledger contents in application order."""
        records = []
        async for record in store[LEDGER_COLLECTION].find({}, sort=[("batch", ASCENDING), ("name", ASCENDING)]):
            record.pop("_id", None)
            records.append(MigrationRecord(**record))
        return records

    async def _next_batch(self, store: StoreHandle) -> int:
        latest = await store[LEDGER_COLLECTION].find_one({}, sort=[("batch", DESCENDING)])
        return (latest["batch"] + 1) if latest else 1

    async def run(
        self,
        store: StoreHandle,
        module_codes: Iterable[str],
        tenant_id: Optional[str] = None,
    ) -> MigrationReport:
        """
        Apply every pending change-script to the store.

        Stops at the first failure; later scripts and later sets are not attempted.

        Args:
            store: Handle to the tenant store
            module_codes: Module codes enabled by the tenant's plan
            tenant_id: Tenant identifier, for logs and errors

        Returns:
            Report of applied and skipped scripts

        Raises:
            ScriptExecutionFailed: If resolution or any script fails
        """
        log = logger.bind(tenant_id=tenant_id, store=store.store_name)

        try:
            script_sets = self.resolver.resolve(list(module_codes))
        except ProvisioningError as e:
            e.tenant_id = e.tenant_id or tenant_id
            raise

        log.info("migration_sets_resolved", script_sets=[script_set.name for script_set in script_sets])

        try:
            await self.ensure_ledger(store)
            applied_names = {record.name for record in await self.applied_records(store)}
        except PyMongoError as e:
            log.error("migration_ledger_unavailable", error=str(e))
            raise ScriptExecutionFailed(f"Migration ledger unavailable: {e}", tenant_id) from e

        ledger = store[LEDGER_COLLECTION]

        report = MigrationReport()

        for script_set in script_sets:
            if not script_set.scripts:
                log.info("migration_set_empty", script_set=script_set.name)
                report.empty_sets.append(script_set.name)
                continue

            for script in script_set.ordered():
                if script.name in applied_names:
                    report.skipped.append(script.name)
                    continue

                try:
                    await script.run(store.db)
                except ScriptExecutionFailed as e:
                    e.tenant_id = e.tenant_id or tenant_id
                    log.error("migration_failed", script=script.name, error=str(e))
                    raise
                except Exception as e:
                    log.error("migration_failed", script=script.name, error=str(e))
                    raise ScriptExecutionFailed(
                        f"Change-script '{script.name}' failed: {e}", tenant_id, script=script.name
                    ) from e

                try:
                    if report.batch is None:
                        report.batch = await self._next_batch(store)

                    record = MigrationRecord(name=script.name, batch=report.batch, script_set=script_set.name)
                    await ledger.insert_one(record.model_dump())
                except DuplicateKeyError:
                    # A concurrent attempt recorded the same script first
                    log.warning("migration_already_recorded", script=script.name)
                except PyMongoError as e:
                    # The script ran but is unrecorded; it re-runs on the next attempt
                    log.error("migration_record_failed", script=script.name, error=str(e))
                    raise ScriptExecutionFailed(
                        f"Could not record change-script '{script.name}': {e}", tenant_id, script=script.name
                    ) from e

                applied_names.add(script.name)
                report.applied.append(script.name)
                log.info("migrated", script=script.name, script_set=script_set.name, batch=report.batch)

        log.info(
            "migrations_completed",
            applied=len(report.applied),
            skipped=len(report.skipped),
            batch=report.batch,
        )
        return report
