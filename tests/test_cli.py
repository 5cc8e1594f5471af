"""Tests for the command-line interface."""

import logging
from datetime import date, timedelta

import pytest
import structlog
from click.testing import CliRunner
from rich.console import Console
from sqlalchemy import create_engine, inspect

from swapstation import cli as cli_module
from swapstation.cli import cli
from swapstation.config.settings import get_settings
from swapstation.db.engine import get_session
from swapstation.db.models import BatteryStatus, BatteryUnit, Station, User, UserRole


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("SWAP_DATABASE_URL", url)
    monkeypatch.setenv("SWAP_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("SWAP_NOTIFIER", "log")
    monkeypatch.setattr(cli_module, "console", Console(width=200))
    root = logging.getLogger()
    saved, level = root.handlers[:], root.level

    yield url

    root.handlers = saved
    root.setLevel(level)
    structlog.reset_defaults()
    get_settings.cache_clear()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def initialized(runner, db_url):
    result = runner.invoke(cli, ["init-db"])
    assert result.exit_code == 0, result.output

    engine = create_engine(db_url)
    with get_session(engine) as session:
        driver = User(full_name="Dana Driver", email="dana@example.com", role=UserRole.DRIVER)
        station = Station(name="Central", battery_type="LFP-72V")
        session.add_all([driver, station])
        session.flush()
        session.add(
            BatteryUnit(
                serial_number="CLI-0001",
                model="PowerPack 2",
                battery_type="LFP-72V",
                charge_level=60.0,
                status=BatteryStatus.CHARGING,
                current_station_id=station.id,
            )
        )
        ids = {"driver": driver.id, "station": station.id}
    engine.dispose()
    return ids


class TestInitDb:
    """Tests for schema creation."""

    def test_creates_tables(self, runner, db_url):
        """Test that init-db creates the schema."""
        result = runner.invoke(cli, ["init-db"])

        assert result.exit_code == 0
        assert "initialized successfully" in result.output
        engine = create_engine(db_url)
        assert "battery_units" in inspect(engine).get_table_names()
        engine.dispose()


class TestCreditCommands:
    """Tests for subscription credit commands."""

    def test_grant_then_show(self, runner, initialized):
        """Test granting a package and reading it back."""
        driver = str(initialized["driver"])
        result = runner.invoke(cli, ["credit", "grant", driver, "--package-id", "2", "--swaps", "6", "--days", "30"])
        assert result.exit_code == 0, result.output
        end_date = date.today() + timedelta(days=30)
        assert f"Granted 6 swaps until {end_date}" in result.output

        result = runner.invoke(cli, ["credit", "show", driver])
        assert result.exit_code == 0
        assert "6" in result.output
        assert "swaps left" in result.output

    def test_show_without_credit(self, runner, initialized):
        """Test the message for a driver without a subscription."""
        result = runner.invoke(cli, ["credit", "show", str(initialized["driver"])])
        assert "no active subscription" in result.output

    def test_grant_rejects_empty_package(self, runner, initialized):
        """Test that a failing grant exits with status 1 and the error code."""
        result = runner.invoke(
            cli, ["credit", "grant", str(initialized["driver"]), "--package-id", "2", "--swaps", "0", "--days", "30"]
        )
        assert result.exit_code == 1
        assert "ERR_VALIDATION" in result.output


class TestRedeemCommand:
    """Tests for code redemption from the command line."""

    def test_unknown_code(self, runner, initialized):
        """Test that an unknown code is reported as not found."""
        result = runner.invoke(cli, ["redeem", "QQQ000"])
        assert result.exit_code == 1
        assert "ERR_NOT_FOUND" in result.output


class TestBatteryCommands:
    """Tests for battery inspection."""

    def test_list(self, runner, initialized):
        """Test that units are listed with their status."""
        result = runner.invoke(cli, ["battery", "list", "--status", "charging"])
        assert result.exit_code == 0
        assert "CLI-0001" in result.output
        assert "CHARGING" in result.output

    def test_list_empty(self, runner, initialized):
        """Test the message when no unit matches."""
        result = runner.invoke(cli, ["battery", "list", "--status", "MAINTENANCE"])
        assert "No batteries found" in result.output


class TestSchedulerCommands:
    """Tests for running reconciliation jobs."""

    def test_run_job(self, runner, initialized):
        """Test that a single job runs and reports its results."""
        result = runner.invoke(cli, ["scheduler", "run-job", "health-check"])
        assert result.exit_code == 0, result.output
        assert "Sweep Results" in result.output
        assert "health-check" in result.output

    def test_unknown_job(self, runner, initialized):
        """Test that job names are validated."""
        result = runner.invoke(cli, ["scheduler", "run-job", "defrag"])
        assert result.exit_code == 2
