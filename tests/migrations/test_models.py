"""Tests for migration models."""

from datetime import datetime, timezone

from docmigrate.migrations.models import ChangeLogEntry, ChangeStatus, ChangeUnit, ExecutionReport


def create_users():
    pass


UNIT = ChangeUnit(
    change_id="create-users",
    author="alice",
    order="001",
    body=create_users,
    description="Create users collection",
    group="users",
    environment="prod",
    changelog="v001_users",
)


class TestChangeUnit:
    def test_str(self):
        assert str(UNIT) == "create-users by alice (v001_users.create_users)"


class TestChangeLogEntry:
    """Tests for ChangeLogEntry."""

    def test_from_unit(self):
        entry = ChangeLogEntry.from_unit(UNIT)

        assert entry.change_id == "create-users"
        assert entry.change_set == "create_users"
        assert entry.group == "users"
        assert entry.environment == "prod"
        assert entry.status == ChangeStatus.INSTALLED
        assert entry.timestamp.tzinfo is not None

    def test_as_failed(self):
        entry = ChangeLogEntry.from_unit(UNIT)

        failed = entry.as_failed("ValueError: bad")

        assert failed.status == ChangeStatus.FAILED
        assert failed.error == "ValueError: bad"
        assert failed.original_change_id == "create-users"
        assert failed.change_id.startswith("create-users (failed, ")
        assert failed.author == entry.author
        assert entry.status == ChangeStatus.INSTALLED

    def test_as_re_executed(self):
        entry = ChangeLogEntry.from_unit(UNIT)

        rerun = entry.as_re_executed()

        assert rerun.status == ChangeStatus.INSTALLED
        assert rerun.change_id.startswith("create-users (re-executed, ")
        assert rerun.original_change_id == "create-users"
        assert rerun.error is None

    def test_failed_ids_are_distinct(self):
        entry = ChangeLogEntry.from_unit(UNIT)

        ids = {entry.as_failed("boom").change_id for _ in range(50)}

        assert len(ids) == 50

    def test_to_dict_from_dict(self):
        entry = ChangeLogEntry(
            change_id="c1",
            author="alice",
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            changelog="log",
            change_set="body",
            installation_id="install-1",
        )

        doc = entry.to_dict()

        assert doc["status"] == "INSTALLED"
        assert "error" not in doc
        assert "original_change_id" not in doc
        assert ChangeLogEntry.from_dict(doc) == entry

    def test_failed_to_dict_carries_error(self):
        doc = ChangeLogEntry.from_unit(UNIT).as_failed("boom").to_dict()

        assert doc["status"] == "FAILED"
        assert doc["error"] == "boom"
        assert doc["original_change_id"] == "create-users"


class TestExecutionReport:
    """Tests for ExecutionReport."""

    def test_counters(self):
        report = ExecutionReport("install-1")
        report.add_scanned(3)
        report.add_executed()
        report.add_re_executed()
        report.add_skipped()
        report.add_postponed()
        report.add_failed()

        assert report.to_dict() == {
            "installation_id": "install-1",
            "scanned": 3,
            "executed": 1,
            "re_executed": 1,
            "skipped": 1,
            "postponed": 1,
            "failed": 1,
        }

    def test_merge(self):
        total = ExecutionReport("install-1", scanned=2, executed=2)
        group = ExecutionReport("install-1", scanned=3, skipped=1, failed=2)

        result = total.merge(group)

        assert result is total
        assert total.scanned == 5
        assert total.executed == 2
        assert total.skipped == 1
        assert total.failed == 2

    def test_merge_none_is_noop(self):
        report = ExecutionReport("install-1", scanned=1)

        assert report.merge(None) is report
        assert report.scanned == 1
