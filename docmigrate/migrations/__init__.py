"""
MongoDB change log runner.

This module applies versioned change units to a MongoDB database exactly
once, records them in a change log collection and serializes runs across
processes with a lock collection.
"""

from docmigrate.migrations.changelog import ChangeLogStore
from docmigrate.migrations.lock import LockStore
from docmigrate.migrations.models import ChangeLogEntry, ChangeStatus, ChangeUnit, ExecutionReport
from docmigrate.migrations.registry import ChangeLog, ChangeRegistry, PackageRegistry, StaticRegistry
from docmigrate.migrations.runner import MigrationRunner

__all__ = [
    "ChangeLog",
    "ChangeLogEntry",
    "ChangeLogStore",
    "ChangeRegistry",
    "ChangeStatus",
    "ChangeUnit",
    "ExecutionReport",
    "LockStore",
    "MigrationRunner",
    "PackageRegistry",
    "StaticRegistry",
]
