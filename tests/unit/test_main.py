"""
Unit tests for the CLI entrypoint in src/main.py.
The pipeline itself is replaced with stubs; only argument handling and exit codes are tested.

Run with: pytest tests/unit/test_main.py -v
"""

from datetime import date

import pytest

from src import logging_config
from src import main as cli
from src.airbnb import run as run_module
from src.airbnb.validation.checks import CheckResult


@pytest.fixture(autouse=True)
def no_log_files(monkeypatch):
    monkeypatch.setattr(logging_config, "setup_logging", lambda *args, **kwargs: None)
    for key in ("AIRBNB_START_DATE", "AIRBNB_END_DATE", "AIRBNB_WINDOW_POLICY", "AIRBNB_MIN_REVIEW_ROWS",
                "AIRBNB_AS_OF", "AIRBNB_USER_NAME"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def captured_run(monkeypatch):
    calls = {}

    def fake_run(config, publish_to_output=True):
        calls["config"] = config
        calls["publish"] = publish_to_output
        return run_module.RunSummary(load=None, checks=calls.get("checks", []))

    monkeypatch.setattr(run_module, "run", fake_run)
    return calls


class TestExitCodes:

    def test_bad_date_is_a_config_error(self, captured_run):
        assert cli.main(["run", "--start-date", "2024-99-01", "--end-date", "2024-01-31"]) == cli.EXIT_CONFIG_ERROR
        assert "config" not in captured_run

    def test_bad_env_date_is_a_config_error(self, captured_run, monkeypatch):
        monkeypatch.setenv("AIRBNB_END_DATE", "tomorrow")
        assert cli.main(["run"]) == cli.EXIT_CONFIG_ERROR

    def test_success(self, captured_run):
        assert cli.main(["run", "--start-date", "2024-01-01", "--end-date", "2024-01-31", "--no-publish"]) == cli.EXIT_OK
        assert captured_run["config"].explicit_window == (date(2024, 1, 1), date(2024, 1, 31))
        assert captured_run["publish"] is False

    def test_failed_check(self, captured_run):
        captured_run["checks"] = [CheckResult("minimum_row_count_fct_reviews", "fct_reviews", failures=1)]
        assert cli.main(["run"]) == cli.EXIT_CHECKS_FAILED

    def test_flags_override_environment(self, captured_run, monkeypatch):
        monkeypatch.setenv("AIRBNB_MIN_REVIEW_ROWS", "5")
        monkeypatch.setenv("AIRBNB_START_DATE", "2024-01-01")
        cli.main(["run", "--start-date", "2024-02-01", "--window-policy", "full_history"])

        config = captured_run["config"]
        assert config.min_review_rows == 5
        assert config.start_date == date(2024, 2, 1)
        assert config.window_policy.value == "full_history"

    def test_unknown_env_variable_is_ignored(self, captured_run, monkeypatch):
        monkeypatch.setenv("AIRBNB_HOME", "/opt/airbnb")
        assert cli.main(["run"]) == cli.EXIT_OK


# ---------------------------------------------------------------------------
# Log level and missing inputs
# ---------------------------------------------------------------------------

class TestLogLevelAndMissingInput:

    def test_unknown_log_level_is_a_usage_error(self, captured_run):
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["run", "--log-level", "foo"])
        assert excinfo.value.code == 2
        assert "config" not in captured_run

    def test_log_level_is_case_insensitive(self):
        assert cli.build_parser().parse_args(["--log-level", "debug"]).log_level == "DEBUG"

    def test_check_without_warehouse(self, monkeypatch, caplog):
        def missing(config):
            raise FileNotFoundError("Warehouse not found: datalake/warehouse.duckdb")

        monkeypatch.setattr(run_module, "check", missing)
        assert cli.main(["check"]) == cli.EXIT_MISSING_INPUT
        assert "Warehouse not built" in caplog.text

    def test_run_with_missing_export(self, monkeypatch):
        def missing(config, publish_to_output=True):
            raise FileNotFoundError("Raw file for src_reviews not found: data/reviews.csv")

        monkeypatch.setattr(run_module, "run", missing)
        assert cli.main(["run"]) == cli.EXIT_MISSING_INPUT
