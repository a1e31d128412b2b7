"""
Change registries: where change units come from.

A ChangeLog groups change units declared with its ``changeset`` decorator:

    changelog = ChangeLog("users", order="001")

    @changelog.changeset("add-email-index", author="alice", order="001")
    async def add_email_index(db: AsyncIOMotorDatabase) -> None:
        await db["users"].create_index("email", unique=True)

A registry yields ChangeLog groups in processing order and invokes bodies.
PackageRegistry finds every ChangeLog object in a Python package;
StaticRegistry wraps an explicit list.
"""

import importlib
import inspect
import pkgutil
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Mapping, Optional

from docmigrate.core.config import ANY_ENVIRONMENT
from docmigrate.core.exceptions import ChangeSetError, ConfigurationError, DuplicateChangeError
from docmigrate.log.logging import logger
from docmigrate.migrations.models import ChangeUnit


class ChangeLog:
    """A named, ordered group of change units."""

    def __init__(self, name: str, order: str = ""):
        self.name = name
        self.order = order
        self._units: list[ChangeUnit] = []

    def __repr__(self) -> str:
        return f"ChangeLog(name={self.name!r}, order={self.order!r}, units={len(self._units)})"

    def changeset(
        self,
        change_id: str,
        *,
        author: str,
        order: str,
        description: str = "",
        group: str = "",
        environment: str = ANY_ENVIRONMENT,
        repeatable: bool = False,
        postponed: bool = False,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator registering the wrapped function as a change unit."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.add(
                ChangeUnit(
                    change_id=change_id,
                    author=author,
                    order=order,
                    body=func,
                    description=description,
                    group=group,
                    environment=environment,
                    repeatable=repeatable,
                    postponed=postponed,
                    changelog=self.name,
                )
            )
            return func

        return decorator

    def add(self, unit: ChangeUnit) -> None:
        self._units.append(unit)

    def units(self) -> list[ChangeUnit]:
        """
        Change units sorted by order key (lexical, ascending).

        Raises:
            DuplicateChangeError: If two units share a change id.
        """
        seen: set[str] = set()
        for unit in self._units:
            if unit.change_id in seen:
                raise DuplicateChangeError(unit.change_id, self.name)
            seen.add(unit.change_id)
        return sorted(self._units, key=lambda u: u.order)


async def invoke_change(unit: ChangeUnit, kwargs: Optional[Mapping[str, Any]] = None) -> Any:
    """
    Call a change unit body, awaiting it if it is a coroutine.

    Raises:
        ChangeSetError: Wrapping any exception raised by the body.
    """
    try:
        result = unit.body(**(kwargs or {}))
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception as e:
        raise ChangeSetError(f"Change set {unit.change_id} failed: {e}") from e


class ChangeRegistry(ABC):
    """Source of change log groups."""

    @abstractmethod
    def list_groups(self) -> list[ChangeLog]:
        """Change logs in processing order."""

    async def invoke(self, unit: ChangeUnit, kwargs: Optional[Mapping[str, Any]] = None) -> Any:
        return await invoke_change(unit, kwargs)


class StaticRegistry(ChangeRegistry):
    """Registry over an explicit list of change logs, kept in the given order."""

    def __init__(self, changelogs: Iterable[ChangeLog], name: str = "static"):
        self._changelogs = list(changelogs)
        self.name = name

    def __repr__(self) -> str:
        return f"StaticRegistry({self.name!r})"

    def list_groups(self) -> list[ChangeLog]:
        return list(self._changelogs)


class PackageRegistry(ChangeRegistry):
    """
    Registry that imports a package and every module below it and collects
    module level ChangeLog objects.

    Groups are ordered by (ChangeLog.order, ChangeLog.name).
    """

    def __init__(self, package: str):
        self.package = package

    def __repr__(self) -> str:
        return f"PackageRegistry({self.package!r})"

    def _import(self, module_name: str):
        try:
            return importlib.import_module(module_name)
        except ImportError as e:
            raise ConfigurationError(f"Unable to import change log module {module_name}: {e}") from e

    def discover_modules(self) -> list:
        root = self._import(self.package)
        modules = [root]
        if hasattr(root, "__path__"):
            for info in pkgutil.walk_packages(root.__path__, prefix=f"{root.__name__}."):
                modules.append(self._import(info.name))
        return modules

    def list_groups(self) -> list[ChangeLog]:
        changelogs: dict[int, ChangeLog] = {}
        for module in self.discover_modules():
            for value in vars(module).values():
                if isinstance(value, ChangeLog):
                    changelogs[id(value)] = value

        groups = sorted(changelogs.values(), key=lambda c: (c.order, c.name))

        logger.info(
            "Discovered {count} change logs in {package}",
            count=len(groups),
            package=self.package,
            event_type="changelogs_discovered",
        )
        return groups
