"""Test circulation configuration defaults and environment overrides."""
import dataclasses

import pytest

from patterns.domain_config import CirculationConfig


def test_defaults():
    config = CirculationConfig.default()
    assert config.loans.max_active_borrows == 3
    assert config.loans.loan_period_days == 14
    assert config.holds.hold_expiry_days == 14
    assert config.holds.pickup_window_days == 7
    assert config.sweeps.interval_seconds == 300.0
    assert config.notifications.webhook_url is None


def test_config_is_frozen():
    config = CirculationConfig.default()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.loans.max_active_borrows = 10


def test_from_env(monkeypatch):
    monkeypatch.setenv("CIRCULATION_MAX_ACTIVE_BORROWS", "5")
    monkeypatch.setenv("CIRCULATION_PICKUP_WINDOW_DAYS", "3")
    monkeypatch.setenv("CIRCULATION_SWEEP_INTERVAL_SECONDS", "60")
    monkeypatch.setenv("CIRCULATION_WEBHOOK_URL", "https://hooks.example.com/library")

    config = CirculationConfig.from_env()

    assert config.loans.max_active_borrows == 5
    assert config.loans.loan_period_days == 14
    assert config.holds.pickup_window_days == 3
    assert config.sweeps.interval_seconds == 60.0
    assert config.notifications.webhook_url == "https://hooks.example.com/library"


def test_from_env_custom_prefix(monkeypatch):
    monkeypatch.setenv("LIB_LOAN_PERIOD_DAYS", "21")
    assert CirculationConfig.from_env(prefix="LIB_").loans.loan_period_days == 21
