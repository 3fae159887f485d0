"""Tests for the click command line interface."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from eyes_storybook import __version__
from eyes_storybook.cli import cli
from eyes_storybook.models.config import RunConfig
from eyes_storybook.models.test_result import RunVerdict

from conftest import make_result


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def stories_file(tmp_path: Path) -> Path:
    path = tmp_path / "stories.json"
    path.write_text(json.dumps([
        {"name": "Primary", "kind": "Button", "source_url": "http://localhost:9001/iframe.html?id=button--primary"},
    ]))
    return path


def _mock_orchestrator(verdict: RunVerdict) -> MagicMock:
    orchestrator_cls = MagicMock()
    orchestrator_cls.return_value.run.return_value = verdict
    orchestrator_cls.return_value.batch.id = "batch123"
    return orchestrator_cls


class TestRunCommand:

    def test_success_exit_code(self, runner, stories_file):
        verdict = RunVerdict(results=[make_result()], exit_code=0)
        with runner.isolated_filesystem(), patch("eyes_storybook.cli.Orchestrator", _mock_orchestrator(verdict)):
            result = runner.invoke(cli, ["run", "--stories", str(stories_file)])

        assert result.exit_code == 0
        assert "[EYES: TEST RESULTS]:" in result.output
        assert "No configuration file found" in result.output

    def test_diffs_exit_code(self, runner, stories_file):
        verdict = RunVerdict(results=[make_result(is_passed=False, mismatches=1)], exit_code=130)
        with runner.isolated_filesystem(), patch("eyes_storybook.cli.Orchestrator", _mock_orchestrator(verdict)):
            result = runner.invoke(cli, ["run", "--stories", str(stories_file)])

        assert result.exit_code == 130
        assert "Failed 1 of 1" in result.output

    def test_fatal_run_suggests_debug(self, runner, stories_file):
        verdict = RunVerdict(exit_code=1, fatal_error="Could not obtain rendering info")
        with runner.isolated_filesystem(), patch("eyes_storybook.cli.Orchestrator", _mock_orchestrator(verdict)):
            result = runner.invoke(cli, ["run", "--stories", str(stories_file)])

        assert result.exit_code == 1
        assert "Run failed" in result.output
        assert "--debug" in result.output

    def test_overrides_reach_the_orchestrator(self, runner, stories_file):
        orchestrator_cls = _mock_orchestrator(RunVerdict(results=[make_result()]))
        with runner.isolated_filesystem(), patch("eyes_storybook.cli.Orchestrator", orchestrator_cls):
            result = runner.invoke(cli, [
                "run", "--stories", str(stories_file), "--local", "--concurrency", "3",
            ])

        assert result.exit_code == 0
        config = orchestrator_cls.call_args.args[0]
        assert config.use_remote_rendering is False
        assert config.concurrency == 3
        stories = orchestrator_cls.return_value.run.call_args.args[0]
        assert [s.name for s in stories] == ["Primary"]

    def test_loads_config_file(self, runner, stories_file, tmp_path):
        conf = tmp_path / "custom.json"
        RunConfig(app_name="design-system", concurrency=4).save(conf)
        orchestrator_cls = _mock_orchestrator(RunVerdict(results=[make_result()]))

        with patch("eyes_storybook.cli.Orchestrator", orchestrator_cls):
            result = runner.invoke(cli, ["run", "--conf", str(conf), "--stories", str(stories_file)])

        assert result.exit_code == 0
        assert "Configuration was loaded from" in result.output
        config = orchestrator_cls.call_args.args[0]
        assert config.app_name == "design-system"
        assert config.concurrency == 4

    def test_writes_json_report(self, runner, stories_file, tmp_path):
        verdict = RunVerdict(results=[make_result()], exit_code=0)
        report_dir = tmp_path / "reports"
        with runner.isolated_filesystem(), patch("eyes_storybook.cli.Orchestrator", _mock_orchestrator(verdict)):
            result = runner.invoke(cli, [
                "run", "--stories", str(stories_file), "--report-dir", str(report_dir),
            ])

        assert result.exit_code == 0
        assert (report_dir / "report_batch123.json").exists()

    def test_missing_custom_config(self, runner, stories_file, tmp_path):
        orchestrator_cls = _mock_orchestrator(RunVerdict())
        with patch("eyes_storybook.cli.Orchestrator", orchestrator_cls):
            result = runner.invoke(cli, [
                "run", "--conf", str(tmp_path / "missing.json"), "--stories", str(stories_file),
            ])

        assert result.exit_code == 1
        assert "cannot be found" in result.output
        orchestrator_cls.assert_not_called()

    def test_missing_stories_file(self, runner, tmp_path):
        orchestrator_cls = _mock_orchestrator(RunVerdict())
        with runner.isolated_filesystem(), patch("eyes_storybook.cli.Orchestrator", orchestrator_cls):
            result = runner.invoke(cli, ["run", "--stories", str(tmp_path / "nope.json")])

        assert result.exit_code == 1
        orchestrator_cls.assert_not_called()

    def test_malformed_stories_file(self, runner, tmp_path):
        path = tmp_path / "stories.json"
        path.write_text("[{")
        orchestrator_cls = _mock_orchestrator(RunVerdict())
        with runner.isolated_filesystem(), patch("eyes_storybook.cli.Orchestrator", orchestrator_cls):
            result = runner.invoke(cli, ["run", "--stories", str(path)])

        assert result.exit_code == 1
        assert "not valid JSON" in " ".join(result.output.split())
        orchestrator_cls.assert_not_called()

    def test_stories_option_is_required(self, runner):
        result = runner.invoke(cli, ["run"])
        assert result.exit_code == 2


class TestInitCommand:

    def test_creates_config(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["init", "--app-name", "design-system"])

            assert result.exit_code == 0
            data = json.loads(Path("eyes-storybook.json").read_text())
            assert data["app_name"] == "design-system"
            assert "api_key" not in data

    def test_keeps_existing_config_when_declined(self, runner):
        with runner.isolated_filesystem():
            Path("eyes-storybook.json").write_text("{}")
            result = runner.invoke(cli, ["init", "--app-name", "x"], input="n\n")

            assert result.exit_code == 0
            assert Path("eyes-storybook.json").read_text() == "{}"


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
