"""
Migration runner for executing change units against MongoDB.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from docmigrate.core.config import ANY_ENVIRONMENT, MigrationConfig
from docmigrate.core.exceptions import ChangeSetError, ConfigurationError, LockUnavailableError
from docmigrate.log.logging import logger
from docmigrate.migrations.changelog import ChangeLogStore
from docmigrate.migrations.lock import LockStore
from docmigrate.migrations.models import ChangeLogEntry, ChangeUnit, ExecutionReport
from docmigrate.migrations.params import ParameterResolver
from docmigrate.migrations.registry import ChangeLog, ChangeRegistry, PackageRegistry, invoke_change


class MigrationRunner:
    """
    Applies change units exactly once, under a database-wide process lock.

    Features:
    - One process at a time per database via the lock store
    - Change log with a unique (change_id, author) index as the ledger
    - Repeatable, postponed and environment restricted change units
    - Failed change units recorded and counted without aborting the run

    A run validates the configuration, connects, takes the lock, walks every
    registry group in order and releases the lock on every exit path.
    """

    def __init__(
        self,
        client: Optional[AsyncIOMotorClient],
        config: MigrationConfig,
        registries: Optional[Sequence[ChangeRegistry]] = None,
        registry_factory: Callable[[str], ChangeRegistry] = PackageRegistry,
        changelog_store: Optional[ChangeLogStore] = None,
        lock_store: Optional[LockStore] = None,
    ):
        """
        Initialize the migration runner.

        Args:
            client: Configured MongoDB client.
            config: Immutable runner configuration.
            registries: Explicit registries. When set, scan packages are not
                required and are scanned after these.
            registry_factory: Builds a registry for each scan package.
            changelog_store: Change log store (defaults to one on
                config.changelog_collection).
            lock_store: Lock store (defaults to one on config.lock_collection).
        """
        self._client = client
        self._config = config
        self._registries = list(registries or [])
        self._registry_factory = registry_factory
        self._changelog = changelog_store or ChangeLogStore(
            config.changelog_collection, installation_id=config.installation_id
        )
        self._lock = lock_store or LockStore(config.lock_collection)
        self._db: Optional[AsyncIOMotorDatabase] = None

    @property
    def config(self) -> MigrationConfig:
        return self._config

    @property
    def changelog(self) -> ChangeLogStore:
        return self._changelog

    @property
    def lock(self) -> LockStore:
        return self._lock

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _validate_config(self, require_sources: bool = True) -> None:
        if not self._config.database or not self._config.database.strip():
            raise ConfigurationError("Database name is not set")
        if require_sources and not self._config.scan_packages and not self._registries:
            raise ConfigurationError("No change log source is configured: set scan packages")
        if self._client is None:
            raise ConfigurationError("MongoDB client is not set")

    async def _connect(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            db = self._client[self._config.database]
            self._changelog.connect(db)
            await self._changelog.ensure_index()
            self._lock.connect(db)
            await self._lock.initialize()
            self._db = db
        return self._db

    async def _acquire_lock(self) -> bool:
        """
        Acquire the process lock according to the wait policy.

        Returns:
            True if acquired.

        Raises:
            LockUnavailableError: If not acquired and hard failure is configured.
        """
        acquired = await self._lock.acquire()

        if not acquired and self._config.lock_wait_enabled:
            deadline = time.monotonic() + self._config.lock_wait_minutes * 60
            while not acquired and time.monotonic() < deadline:
                logger.info(
                    "Waiting for changelog lock...",
                    event_type="migration_lock_waiting",
                )
                await asyncio.sleep(self._config.lock_poll_seconds)
                acquired = await self._lock.acquire()

        if not acquired and self._config.throw_if_lock_unavailable:
            logger.info(
                "Process lock not acquired. Raising error.",
                event_type="migration_lock_unavailable",
            )
            raise LockUnavailableError("Could not acquire process lock")

        return acquired

    def _registries_for_run(self) -> list[ChangeRegistry]:
        registries = list(self._registries)
        registries.extend(self._registry_factory(p) for p in self._config.scan_packages)
        return registries

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute(self) -> Optional[ExecutionReport]:
        """
        Run every pending change unit.

        Returns:
            The merged report, or None if the runner is disabled or the
            lock was not acquired.

        Raises:
            ConfigurationError: If the configuration is incomplete.
            MigrationConnectionError: If the database fails mid-run.
            DuplicateChangeError: If a change log declares an id twice.
            LockUnavailableError: If the lock is unavailable and hard
                failure is configured.
        """
        if not self._config.enabled:
            logger.info("Migration runner is disabled. Exiting.", event_type="migration_disabled")
            return None

        self._validate_config()
        await self._connect()

        if not await self._acquire_lock():
            logger.info(
                "Process lock not acquired. Exiting.",
                event_type="migration_lock_not_acquired",
            )
            return None

        logger.info(
            "Process lock acquired, starting the data migration sequence",
            installation_id=self._config.installation_id,
            event_type="migration_started",
        )

        try:
            report = await self._execute_migration()
        finally:
            logger.info("Releasing process lock", event_type="migration_releasing")
            await self._lock.release()

        logger.info(
            "Migration finished: {executed} executed, {failed} failed",
            event_type="migration_finished",
            **report.to_dict(),
        )
        return report

    async def execute_single(self, unit: ChangeUnit) -> Optional[ExecutionReport]:
        """
        Run exactly one change unit, outside registry discovery.

        A new unit is executed, an installed repeatable unit is executed
        again, an installed non-repeatable unit is counted as failed.

        Returns:
            A report with scanned=1, or None if disabled or the lock was
            not acquired.
        """
        if not self._config.enabled:
            logger.info("Migration runner is disabled. Exiting.", event_type="migration_disabled")
            return None

        self._validate_config()
        db = await self._connect()

        if not await self._acquire_lock():
            logger.info(
                "Process lock not acquired. Exiting.",
                event_type="migration_lock_not_acquired",
            )
            return None

        report = ExecutionReport(self._config.installation_id)
        resolver = ParameterResolver(db, self._config.change_params)
        try:
            report.add_scanned()
            if not self._environment_matches(unit):
                report.add_failed()
                logger.error(
                    "Change {change} can be executed only on {environment} environment",
                    change=str(unit),
                    environment=unit.environment,
                    event_type="change_rejected",
                )
            elif await self._changelog.is_new(unit.change_id, unit.author):
                if await self._apply(unit, resolver, invoke_change, report):
                    report.add_executed()
                    logger.info("{change} applied", change=str(unit), event_type="change_applied")
            elif unit.repeatable:
                if await self._apply(unit, resolver, invoke_change, report, re_execution=True):
                    report.add_re_executed()
                    logger.info("{change} reapplied", change=str(unit), event_type="change_reapplied")
            else:
                report.add_failed()
                logger.error(
                    "Change {change} cannot be executed again: it is installed and not repeatable",
                    change=str(unit),
                    event_type="change_rejected",
                )
        finally:
            logger.info("Releasing process lock", event_type="migration_releasing")
            await self._lock.release()

        return report

    async def is_execution_in_progress(self) -> bool:
        """True if any process currently holds the migration lock."""
        self._validate_config(require_sources=False)
        await self._connect()
        return await self._lock.is_held()

    async def release_lock(self) -> None:
        """Forcefully remove the lock document, e.g. after a crashed run."""
        self._validate_config(require_sources=False)
        await self._connect()
        await self._lock.release()

    async def history(self, limit: Optional[int] = None) -> list[ChangeLogEntry]:
        """Change log entries, oldest first."""
        self._validate_config(require_sources=False)
        await self._connect()
        return await self._changelog.history(limit=limit)

    def close(self) -> None:
        """Close the MongoDB client used by the runner."""
        if self._client is not None:
            self._client.close()
        self._db = None

    # ------------------------------------------------------------------
    # Run internals
    # ------------------------------------------------------------------

    async def _execute_migration(self) -> ExecutionReport:
        report = ExecutionReport(self._config.installation_id)
        resolver = ParameterResolver(self._db, self._config.change_params)
        for registry in self._registries_for_run():
            for changelog in registry.list_groups():
                group_report = await self._execute_changelog(registry, changelog, resolver)
                report.merge(group_report)
        return report

    async def _execute_changelog(
        self,
        registry: ChangeRegistry,
        changelog: ChangeLog,
        resolver: ParameterResolver,
    ) -> ExecutionReport:
        report = ExecutionReport(self._config.installation_id)
        units = changelog.units()
        report.add_scanned(len(units))

        for unit in units:
            if not self._environment_matches(unit):
                report.add_skipped()
                logger.info(
                    "{change} skipped (wrong environment)",
                    change=str(unit),
                    event_type="change_skipped",
                )
                continue

            if await self._changelog.is_new(unit.change_id, unit.author):
                if unit.postponed:
                    report.add_postponed()
                    logger.info("{change} postponed", change=str(unit), event_type="change_postponed")
                elif await self._apply(unit, resolver, registry.invoke, report):
                    report.add_executed()
                    logger.info("{change} applied", change=str(unit), event_type="change_applied")
            elif unit.repeatable and not unit.postponed:
                if await self._apply(unit, resolver, registry.invoke, report, re_execution=True):
                    report.add_re_executed()
                    logger.info("{change} reapplied", change=str(unit), event_type="change_reapplied")
            else:
                report.add_skipped()
                logger.info("{change} passed over", change=str(unit), event_type="change_skipped")

        return report

    async def _apply(
        self,
        unit: ChangeUnit,
        resolver: ParameterResolver,
        invoke: Callable[..., Awaitable[Any]],
        report: ExecutionReport,
        re_execution: bool = False,
    ) -> bool:
        """
        Invoke a unit and record the outcome in the change log.

        Returns:
            True if the body succeeded and an INSTALLED entry was written
            (under a derived identifier for a re-execution).
            False if it raised a ChangeSetError, in which case a FAILED
            entry was written and the report's failed counter bumped.
        """
        entry = ChangeLogEntry.from_unit(unit)
        started = time.monotonic()
        try:
            kwargs = resolver.resolve(unit.body)
            await invoke(unit, kwargs)
        except ChangeSetError as e:
            report.add_failed()
            logger.error(
                "{change} failed: {error}",
                change=str(unit),
                error=e.details,
                event_type="change_failed",
            )
            await self._changelog.append(entry.as_failed(e.details))
            return False

        await self._changelog.append(entry.as_re_executed() if re_execution else entry)
        logger.debug(
            "{change} took {elapsed_ms}ms",
            change=str(unit),
            elapsed_ms=int((time.monotonic() - started) * 1000),
            event_type="change_timing",
        )
        return True

    def _environment_matches(self, unit: ChangeUnit) -> bool:
        return (
            unit.environment == self._config.environment
            or unit.environment == ANY_ENVIRONMENT
            or self._config.environment == ANY_ENVIRONMENT
        )
