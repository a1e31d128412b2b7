"""
Change unit, change log entry and execution report models.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from docmigrate.core.config import ANY_ENVIRONMENT

FAILED_CHANGE_ID_TEMPLATE = "{change_id} (failed, {epoch_ms})"
RE_EXECUTED_CHANGE_ID_TEMPLATE = "{change_id} (re-executed, {epoch_ms})"

_last_derived_ms = 0


def _next_derived_ms(now: datetime) -> int:
    # Strictly increasing within the process so entries derived in the same
    # millisecond still get distinct identifiers.
    global _last_derived_ms
    _last_derived_ms = max(int(now.timestamp() * 1000), _last_derived_ms + 1)
    return _last_derived_ms


class ChangeStatus(str, Enum):
    """Status of a change log entry."""

    INSTALLED = "INSTALLED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ChangeUnit:
    """
    A single migration procedure as supplied by a change registry.

    Attributes:
        change_id: Identifier, unique together with author.
        author: Author of the change.
        order: Ordering key, compared lexically within a change log.
        body: Callable applying the change. May be a coroutine function.
        description: Human-readable description.
        group: Free-form group label stored on the log entry.
        environment: Environment the change is restricted to ("any" for all).
        repeatable: Re-executed on every run once installed.
        postponed: Withheld from execution and from the log.
        changelog: Name of the change log that declared this unit.
    """

    change_id: str
    author: str
    order: str
    body: Callable[..., Any]
    description: str = ""
    group: str = ""
    environment: str = ANY_ENVIRONMENT
    repeatable: bool = False
    postponed: bool = False
    changelog: str = ""

    @property
    def body_name(self) -> str:
        return getattr(self.body, "__qualname__", repr(self.body))

    def __str__(self) -> str:
        return f"{self.change_id} by {self.author} ({self.changelog}.{self.body_name})"


@dataclass
class ChangeLogEntry:
    """
    Record of a change unit stored in the change log collection.

    Attributes:
        change_id: Change identifier (derived for FAILED and re-executed entries).
        author: Change author.
        timestamp: When the entry was produced.
        changelog: Name of the declaring change log.
        change_set: Name of the body callable.
        description: Change description.
        group: Change group label.
        environment: Declared environment.
        postponed: Declared postponed flag.
        repeatable: Declared repeatable flag.
        status: INSTALLED or FAILED.
        error: Captured error text for FAILED entries.
        original_change_id: Original identifier for derived entries.
        installation_id: Identifier of the runner that wrote the entry.
    """

    change_id: str
    author: str
    timestamp: datetime
    changelog: str
    change_set: str
    description: str = ""
    group: str = ""
    environment: str = ANY_ENVIRONMENT
    postponed: bool = False
    repeatable: bool = False
    status: ChangeStatus = ChangeStatus.INSTALLED
    error: Optional[str] = None
    original_change_id: Optional[str] = None
    installation_id: Optional[str] = None

    @classmethod
    def from_unit(cls, unit: ChangeUnit) -> "ChangeLogEntry":
        """Build an INSTALLED entry for a change unit."""
        return cls(
            change_id=unit.change_id,
            author=unit.author,
            timestamp=datetime.now(timezone.utc),
            changelog=unit.changelog,
            change_set=unit.body_name,
            description=unit.description,
            group=unit.group,
            environment=unit.environment,
            postponed=unit.postponed,
            repeatable=unit.repeatable,
        )

    def as_failed(self, error: str) -> "ChangeLogEntry":
        """
        Copy of this entry marked FAILED under a derived identifier.

        The derived identifier embeds the failure time so repeated failures
        never collide with each other or with the INSTALLED entry on the
        unique (change_id, author) index.
        """
        now = datetime.now(timezone.utc)
        return replace(
            self,
            change_id=FAILED_CHANGE_ID_TEMPLATE.format(
                change_id=self.change_id, epoch_ms=_next_derived_ms(now)
            ),
            timestamp=now,
            status=ChangeStatus.FAILED,
            error=error,
            original_change_id=self.change_id,
        )

    def as_re_executed(self) -> "ChangeLogEntry":
        """
        Copy of this entry for a repeated run of an installed change.

        The first INSTALLED row keeps the plain identifier. Every re-execution
        adds its own row under a derived identifier pointing back to it.
        """
        now = datetime.now(timezone.utc)
        return replace(
            self,
            change_id=RE_EXECUTED_CHANGE_ID_TEMPLATE.format(
                change_id=self.change_id, epoch_ms=_next_derived_ms(now)
            ),
            timestamp=now,
            original_change_id=self.change_id,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for MongoDB storage."""
        doc = {
            "change_id": self.change_id,
            "author": self.author,
            "timestamp": self.timestamp,
            "changelog": self.changelog,
            "change_set": self.change_set,
            "description": self.description,
            "group": self.group,
            "environment": self.environment,
            "postponed": self.postponed,
            "repeatable": self.repeatable,
            "status": self.status.value,
            "installation_id": self.installation_id,
        }
        if self.error is not None:
            doc["error"] = self.error
        if self.original_change_id is not None:
            doc["original_change_id"] = self.original_change_id
        return doc

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeLogEntry":
        """Create from MongoDB document."""
        return cls(
            change_id=data["change_id"],
            author=data["author"],
            timestamp=data["timestamp"],
            changelog=data.get("changelog", ""),
            change_set=data.get("change_set", ""),
            description=data.get("description", ""),
            group=data.get("group", ""),
            environment=data.get("environment", ANY_ENVIRONMENT),
            postponed=data.get("postponed", False),
            repeatable=data.get("repeatable", False),
            status=ChangeStatus(data["status"]),
            error=data.get("error"),
            original_change_id=data.get("original_change_id"),
            installation_id=data.get("installation_id"),
        )


@dataclass
class ExecutionReport:
    """Counters describing one runner invocation."""

    installation_id: str
    scanned: int = 0
    executed: int = 0
    re_executed: int = 0
    skipped: int = 0
    postponed: int = 0
    failed: int = 0

    def merge(self, other: Optional["ExecutionReport"]) -> "ExecutionReport":
        if other is None:
            return self
        self.scanned += other.scanned
        self.executed += other.executed
        self.re_executed += other.re_executed
        self.skipped += other.skipped
        self.postponed += other.postponed
        self.failed += other.failed
        return self

    def add_scanned(self, count: int = 1) -> None:
        self.scanned += count

    def add_executed(self) -> None:
        self.executed += 1

    def add_re_executed(self) -> None:
        self.re_executed += 1

    def add_skipped(self) -> None:
        self.skipped += 1

    def add_postponed(self) -> None:
        self.postponed += 1

    def add_failed(self) -> None:
        self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "installation_id": self.installation_id,
            "scanned": self.scanned,
            "executed": self.executed,
            "re_executed": self.re_executed,
            "skipped": self.skipped,
            "postponed": self.postponed,
            "failed": self.failed,
        }
