"""
Unit tests for CLI commands.
"""

import json
import pytest

from bdmmflow.cli.main import app


class TestCLIHelp:
    """Test help messages and basic CLI functionality."""

    def test_main_help(self, cli_runner):
        """Test main CLI help message."""
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "birth-death" in result.stdout.lower()
        assert "loglik" in result.stdout
        assert "intervals" in result.stdout

    def test_loglik_help(self, cli_runner):
        """Test 'loglik' command help message."""
        result = cli_runner.invoke(app, ["loglik", "--help"])
        assert result.exit_code == 0
        assert "--tree" in result.stdout or "-t" in result.stdout
        assert "--model" in result.stdout or "-m" in result.stdout
        assert "--engine" in result.stdout


class TestCLILoglik:
    """Test 'loglik' command functionality."""

    def test_text_output(self, cli_runner, tree_file, model_file):
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(model_file), "--quiet"
        ])
        assert result.exit_code == 0
        assert "Log-likelihood:" in result.stdout
        assert "inverse-flow" in result.stdout
        assert "survival" in result.stdout

    def test_json_output(self, cli_runner, tree_file, model_file, tmp_path):
        output_file = tmp_path / "result.json"
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(model_file),
            "--format", "json", "--output", str(output_file), "--quiet"
        ])
        assert result.exit_code == 0
        assert output_file.exists()

        with open(output_file) as f:
            data = json.load(f)
        assert data["engine"] == "inverse-flow"
        assert data["n_types"] == 2
        assert data["log_likelihood"] < 0

    def test_overrides(self, cli_runner, tree_file, model_file):
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(model_file),
            "-e", "direct", "-c", "none", "--min-intervals", "12",
            "--basis", "identity", "--format", "json", "--quiet"
        ])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["engine"] == "direct-flow"
        assert data["conditioning"] == "none"
        assert data["conditioning_density"] == 1.0
        assert data["n_intervals"] >= 12

    def test_all_engines(self, cli_runner, tree_file, model_file):
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(model_file),
            "-e", "all", "--format", "json", "--quiet"
        ])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [entry["engine"] for entry in data] == ["inverse-flow", "direct-flow", "classic"]
        values = [entry["log_likelihood"] for entry in data]
        assert values[1] == pytest.approx(values[0], rel=1e-5)
        assert values[2] == pytest.approx(values[0], rel=1e-5)

    def test_all_engines_text(self, cli_runner, tree_file, model_file):
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(model_file), "-e", "all", "--quiet"
        ])
        assert result.exit_code == 0
        assert "Engine" in result.stdout
        assert "classic" in result.stdout

    def test_tsv_with_nodes(self, cli_runner, tree_file, model_file):
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(model_file),
            "--format", "tsv", "--nodes", "--quiet"
        ])
        assert result.exit_code == 0
        lines = result.stdout.splitlines()
        assert lines[0] == "engine\tconditioning\tn_intervals\tlog_likelihood"
        assert lines[1].startswith("inverse-flow\tsurvival\t")
        assert "node_id\tname\ttime\tlog_scale\tL0\tL1" in lines

    def test_json_with_nodes(self, cli_runner, tree_file, model_file):
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(model_file),
            "--format", "json", "--nodes", "--quiet"
        ])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert len(data["nodes"]) == 7
        assert {"node_id", "name", "time", "L0", "L1"} <= set(data["nodes"][0])

    def test_invalid_model(self, cli_runner, tree_file, tmp_path):
        bad_model = tmp_path / "bad.json"
        bad_model.write_text(json.dumps({"process_length": 3.0, "birth_rates": [1.0]}))
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree_file), "-m", str(bad_model), "--quiet"
        ])
        assert result.exit_code == 1
        assert "Could not load model" in result.output

    def test_invalid_tree(self, cli_runner, model_file, tmp_path):
        bad_tree = tmp_path / "bad.nwk"
        bad_tree.write_text("((A:1,B:1)")
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(bad_tree), "-m", str(model_file), "--quiet"
        ])
        assert result.exit_code == 1
        assert "Could not load tree" in result.output

    def test_untyped_tree(self, cli_runner, model_file, tmp_path):
        tree = tmp_path / "untyped.nwk"
        tree.write_text("((A:1,B:1):1,C:2);")
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tree), "-m", str(model_file), "--quiet"
        ])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_missing_tree_file(self, cli_runner, model_file, tmp_path):
        result = cli_runner.invoke(app, [
            "loglik", "-t", str(tmp_path / "missing.nwk"), "-m", str(model_file)
        ])
        assert result.exit_code != 0


class TestCLIIntervals:
    """Test 'intervals' command functionality."""

    def test_text_output(self, cli_runner, model_file):
        result = cli_runner.invoke(app, ["intervals", "-m", str(model_file)])
        assert result.exit_code == 0
        assert "Index" in result.stdout
        assert "reset at boundaries: yes" in result.stdout

    def test_json_partition(self, cli_runner, model_file):
        result = cli_runner.invoke(app, [
            "intervals", "-m", str(model_file), "--max-interval-size", "0.5", "--format", "json"
        ])
        assert result.exit_code == 0
        pieces = json.loads(result.stdout)
        assert pieces[0]["start"] == 0.0
        assert pieces[-1]["end"] == pytest.approx(3.0)
        for a, b in zip(pieces, pieces[1:]):
            assert a["end"] == b["start"]
            assert b["end"] - b["start"] <= 0.5 + 1e-12
        assert {p["parameterization_index"] for p in pieces} == {0, 1}

    def test_single_interval(self, cli_runner, model_file):
        result = cli_runner.invoke(app, [
            "intervals", "-m", str(model_file), "--max-interval-size", "10", "--format", "tsv"
        ])
        assert result.exit_code == 0
        lines = result.stdout.strip().splitlines()
        assert lines[0] == "index\tparameterization_index\tstart\tend"
        # one piece per rate interval
        assert len(lines) == 3
