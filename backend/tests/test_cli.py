# Overview: Pytest coverage for the migration and schema CLI groups.

import json
import logging

import pytest


@pytest.fixture
def runner(app):
    # Keep INFO log lines out of the captured command output
    app.logger.setLevel(logging.WARNING)
    return app.test_cli_runner()


class TestMigrationCommands:
    def test_run_all_migrates_everything(self, runner, make_legacy_invoice):
        for n in range(3):
            make_legacy_invoice(f"N2500000{n + 1}")

        result = runner.invoke(args=["migration", "run", "--batch-size", "2", "--all"])

        assert result.exit_code == 0, result.output
        assert "PASS Migrated 2 invoices with 0 errors" in result.output
        assert "PASS Migration completed" in result.output

        progress = json.loads(runner.invoke(args=["migration", "progress"]).output)
        assert progress["migrated"] == 3

    def test_run_reports_failed_records(self, runner, make_legacy_invoice):
        bad = make_legacy_invoice(buyer_name=None)

        result = runner.invoke(args=["migration", "run"])

        assert result.exit_code == 0
        assert f"WARN host {bad}: Buyer name is required" in result.output

        stalled = runner.invoke(args=["migration", "run", "--all"])
        assert stalled.exit_code == 0
        assert "WARN 1 failed invoices remain unmigrated" in stalled.output
        assert "PASS Cleared 1 failure markers" in runner.invoke(args=["migration", "retry-failed"]).output

    def test_verify_exits_nonzero_without_tables(self, runner):
        result = runner.invoke(args=["migration", "verify"])
        assert result.exit_code == 1
        assert "Relational tables do not exist" in result.output

    def test_rollback_requires_confirmation(self, runner, make_legacy_invoice):
        make_legacy_invoice()
        runner.invoke(args=["migration", "run"])

        aborted = runner.invoke(args=["migration", "rollback"], input="n\n")
        assert aborted.exit_code != 0

        result = runner.invoke(args=["migration", "rollback", "--yes"])
        assert result.exit_code == 0
        assert "PASS Migration rolled back" in result.output

    def test_migrate_one_prints_outcome(self, runner, make_legacy_invoice):
        host_id = make_legacy_invoice()

        result = runner.invoke(args=["migration", "migrate-one", "--host-id", str(host_id)])

        outcome = json.loads(result.output)
        assert outcome["success"] is True
        assert outcome["host_id"] == host_id


class TestSchemaCommands:
    def test_reconcile_health_drop(self, runner):
        assert runner.invoke(args=["schema", "reconcile"]).exit_code == 0

        health = json.loads(runner.invoke(args=["schema", "health"]).output)
        assert health["ready"] is True

        assert runner.invoke(args=["schema", "drop", "--yes"]).exit_code == 0
        health = json.loads(runner.invoke(args=["schema", "health"]).output)
        assert health["ready"] is False
