"""Tests for the rewardflow CLI."""

import json

import pytest
from click.testing import CliRunner

from rewardflow import __version__
from rewardflow.cli.main import app


@pytest.fixture
def runner():
    return CliRunner()


def test_version(runner):
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestConfigShow:
    def test_json(self, runner):
        result = runner.invoke(app, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["scheduler"]["max_retries"] == 3
        assert data["distributor"]["default_fee"] == 100

    def test_yaml_from_file(self, runner, tmp_path):
        path = tmp_path / "rewardflow.yaml"
        path.write_text("unit: 1000\n")
        result = runner.invoke(app, ["config", "show", "--config", str(path)])
        assert result.exit_code == 0
        assert "unit: 1000" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(app, ["config", "show", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code != 0
        assert "cannot read config file" in result.output


class TestFees:
    def test_json(self, runner):
        result = runner.invoke(app, ["fees", "--amount", "1000", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["amount"] == 1_000
        by_name = {row["name"]: row for row in data["chains"]}
        assert by_name["ethereum"]["fee"] == 50
        assert by_name["ethereum"]["net"] == 950
        assert by_name["polygon"]["net"] == 998

    def test_fee_capped(self, runner):
        result = runner.invoke(app, ["fees", "--amount", "3", "--json"])
        rows = json.loads(result.output)["chains"]
        assert all(row["net"] >= 0 for row in rows)

    def test_negative_amount(self, runner):
        result = runner.invoke(app, ["fees", "--amount", "-1"])
        assert result.exit_code == 2

    def test_table(self, runner):
        result = runner.invoke(app, ["fees"])
        assert result.exit_code == 0
        assert "ethereum" in result.output


class TestTier:
    def test_json(self, runner):
        result = runner.invoke(app, ["tier", "--liquidity", "1000", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "level": "gold",
            "tier_points": 1_000,
            "multiplier_bps": 12_500,
        }

    def test_text(self, runner):
        result = runner.invoke(app, ["tier", "--liquidity", "10000", "--days", "3"])
        assert result.exit_code == 0
        assert "diamond" in result.output
        assert "2.00x" in result.output

    def test_loyalty_range(self, runner):
        result = runner.invoke(app, ["tier", "--loyalty", "101"])
        assert result.exit_code == 2


class TestSimulate:
    def test_json(self, runner):
        result = runner.invoke(app, ["simulate", "--users", "3", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert len(data["build_pass"]["created"]) == 1
        assert len(data["dispatch_pass"]["completed"]) == 1
        assert data["distribution"]["total_requests"] == 3
        assert data["distribution"]["total_fees"] == 150
        assert data["pending"] == 0

    def test_single_user_never_batches(self, runner):
        result = runner.invoke(app, ["simulate", "--users", "1", "--json"])
        data = json.loads(result.output)
        assert data["build_pass"]["created"] == []
        assert data["distribution"]["total_requests"] == 0
        assert data["pending"] > 0

    def test_table(self, runner):
        result = runner.invoke(app, ["simulate", "--users", "2"])
        assert result.exit_code == 0
        assert "Distributed" in result.output
