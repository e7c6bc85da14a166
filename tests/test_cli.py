"""
Tests for the CLI interface.
"""
import os
from datetime import date, datetime, timezone

import pytest
import yaml
from typer.testing import CliRunner

from cloud_cost_tracker.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from cloud_cost_tracker.core.billable import EntityRef
from cloud_cost_tracker.storage.models import TrackingMode
from cloud_cost_tracker.storage.repository import UsageRepository

runner = CliRunner()

ORG_A = EntityRef("Organization", "1")
ORG_B = EntityRef("Organization", "2")
JUNE = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def config_path(tmp_path, test_costs):
    """Write a tracker config file for the CLI."""
    path = os.path.join(str(tmp_path), "tracker.yaml")
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump({"costs": test_costs}, f)
    return path


@pytest.fixture
def seeded_db(repository, db_path):
    """Database with June rollups for two organizations."""
    for _ in range(3):
        repository.increment_rollup(ORG_A, "import", date(2025, 6, 1), 100.0, 0.50, now=JUNE)
    repository.increment_rollup(ORG_A, "merge", date(2025, 6, 1), 100.0, 0.50, now=JUNE)
    repository.increment_rollup(ORG_B, "import", date(2025, 6, 1), 100.0, 1.00, now=JUNE)
    return db_path


class TestCLI:
    """Test general CLI behavior."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init_creates_database(self, db_path):
        result = runner.invoke(app, ["--database", db_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(db_path)

    def test_missing_config_file_fails(self, db_path):
        result = runner.invoke(app, ["--config", "nonexistent.yaml", "--database", db_path, "status"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config error" in result.output

    def test_malformed_config_file_fails(self, tmp_path, db_path):
        path = os.path.join(str(tmp_path), "broken.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("costs: [unclosed\n")

        result = runner.invoke(app, ["--config", path, "--database", db_path, "status"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config error" in result.output

    def test_status_shows_dimensions(self, config_path, db_path):
        result = runner.invoke(app, ["-c", config_path, "-d", db_path, "status"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Tracking: enabled" in result.output
        assert "bandwidth" in result.output
        assert "websocket" in result.output

    def test_verbose_flag(self, db_path):
        result = runner.invoke(app, ["--verbose", "--database", db_path, "status"])

        assert result.exit_code == EXIT_CODE_PASS


class TestEstimate:
    """Test the estimate command."""

    def test_estimate_time_dimension(self, config_path):
        result = runner.invoke(app, ["-c", config_path, "estimate", "--ms", "1000", "--dimension", "compute"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "compute" in result.output
        assert "Total: $0.00000165" in result.output

    def test_estimate_count_dimension_with_multiplier(self, config_path):
        result = runner.invoke(app, [
            "-c", config_path, "estimate",
            "--dimension", "bandwidth=5",
            "--multiplier", "2",
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total: $1.00" in result.output

    def test_estimate_defaults_to_default_dimension(self, config_path):
        result = runner.invoke(app, ["-c", config_path, "estimate", "--ms", "500"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "compute" in result.output

    def test_estimate_unknown_dimension_fails(self, config_path):
        result = runner.invoke(app, ["-c", config_path, "estimate", "--dimension", "gpu"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "not defined" in result.output

    def test_estimate_bad_quantity_fails(self, config_path):
        result = runner.invoke(app, ["-c", config_path, "estimate", "--dimension", "bandwidth=lots"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid quantity" in result.output


class TestReports:
    """Test report and top commands."""

    def test_report_by_feature(self, seeded_db):
        result = runner.invoke(app, ["-d", seeded_db, "report", "--month", "2025-06"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "import" in result.output
        assert "merge" in result.output
        assert "$2.50" in result.output
        assert "Total: $3.00" in result.output

    def test_report_for_one_entity(self, seeded_db):
        result = runner.invoke(app, [
            "-d", seeded_db, "report",
            "--entity-type", "Organization",
            "--entity-id", "2",
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total: $1.00" in result.output

    def test_report_other_month_has_no_data(self, seeded_db):
        result = runner.invoke(app, ["-d", seeded_db, "report", "--month", "2025-05"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage data found" in result.output

    def test_report_uninitialized_database(self, db_path):
        result = runner.invoke(app, ["-d", db_path, "report"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "cloud-cost-tracker init" in result.output

    def test_report_entity_id_requires_type(self, seeded_db):
        result = runner.invoke(app, ["-d", seeded_db, "report", "--entity-id", "1"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "--entity-id requires --entity-type" in result.output

    def test_report_invalid_month(self, seeded_db):
        result = runner.invoke(app, ["-d", seeded_db, "report", "--month", "June"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "expected YYYY-MM" in result.output

    def test_report_invalid_source(self, seeded_db):
        result = runner.invoke(app, ["-d", seeded_db, "report", "--source", "logs"])

        assert result.exit_code == EXIT_CODE_FAIL

    def test_top_entities(self, seeded_db):
        result = runner.invoke(app, ["-d", seeded_db, "top", "--limit", "1"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Organization" in result.output
        assert "$2.00" in result.output
        assert "$1.00" not in result.output


class TestPolicyCommands:
    """Test policy set/show/clear."""

    def test_set_and_show_policy(self, repository, db_path):
        result = runner.invoke(app, [
            "-d", db_path, "policy", "set", "Organization", "1",
            "--mode", "denylist",
            "--feature", "import",
            "--feature", "merge",
            "--multiplier", "1.5",
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Policy saved for Organization:1" in result.output

        policy = repository.get_tracking_policy(ORG_A)
        assert policy.tracking_mode == TrackingMode.DENYLIST
        assert policy.tracking_features == frozenset({"import", "merge"})
        assert policy.usage_multiplier == 1.5

        result = runner.invoke(app, ["-d", db_path, "policy", "show", "Organization", "1"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Mode: denylist" in result.output
        assert "import, merge" in result.output

    def test_show_missing_policy(self, repository, db_path):
        result = runner.invoke(app, ["-d", db_path, "policy", "show", "Organization", "9"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No policy for Organization:9" in result.output

    def test_set_invalid_mode_fails(self, repository, db_path):
        result = runner.invoke(app, ["-d", db_path, "policy", "set", "Organization", "1", "--mode", "some"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert repository.get_tracking_policy(ORG_A) is None

    def test_set_zero_multiplier(self, repository, db_path):
        result = runner.invoke(app, ["-d", db_path, "policy", "set", "Organization", "1", "--multiplier", "0"])

        assert result.exit_code == EXIT_CODE_PASS
        assert repository.get_tracking_policy(ORG_A).usage_multiplier == 0.0

    def test_clear_policy(self, repository, db_path):
        runner.invoke(app, ["-d", db_path, "policy", "set", "Organization", "1", "--mode", "none"])

        result = runner.invoke(app, ["-d", db_path, "policy", "clear", "Organization", "1"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Policy removed for Organization:1" in result.output
        assert repository.get_tracking_policy(ORG_A) is None
