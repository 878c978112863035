"""Unit tests for the command-line interface."""

import pytest
import yaml
from typer.testing import CliRunner

from cricket_warehouse.cli import app
from cricket_warehouse.database import dispose_engines
from match_documents import write_match

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, staging_dir):
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "staging_dir": str(staging_dir),
                "database_url": f"sqlite:///{tmp_path / 'warehouse.db'}",
            }
        )
    )
    yield path
    dispose_engines()


class TestCli:
    """Test the CLI end to end against a file-backed SQLite warehouse."""

    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "Cricket Warehouse" in result.stdout

    def test_missing_config(self, tmp_path):
        result = runner.invoke(app, ["status", "--config", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_activate_root_first_fails(self, config_file):
        result = runner.invoke(app, ["activate", "raw_ingest", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "cannot activate" in result.stdout

    def test_activate_unknown_stage(self, config_file):
        result = runner.invoke(app, ["activate", "bogus", "--config", str(config_file)])

        assert result.exit_code == 1

    def test_ingest_without_files(self, config_file):
        result = runner.invoke(app, ["ingest", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "No new files" in result.stdout

    def test_tick_then_team_report(self, config_file, staging_dir):
        write_match(staging_dir, "1415701.json")

        assert runner.invoke(app, ["init-db", "--config", str(config_file)]).exit_code == 0
        assert runner.invoke(app, ["activate", "--all", "--config", str(config_file)]).exit_code == 0

        result = runner.invoke(app, ["tick", "--config", str(config_file)])
        assert result.exit_code == 0, result.stdout

        result = runner.invoke(app, ["team-report", "South Africa", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "1415701" in result.stdout
        assert "Canada" in result.stdout

        result = runner.invoke(app, ["status", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "raw_ingest" in result.stdout

    def test_team_list(self, config_file, staging_dir):
        write_match(staging_dir, "1415701.json")
        runner.invoke(app, ["activate", "--all", "--config", str(config_file)])
        runner.invoke(app, ["tick", "--config", str(config_file)])

        result = runner.invoke(app, ["team-report", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Canada" in result.stdout
        assert "South Africa" in result.stdout
