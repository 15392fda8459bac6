"""Dataclass-based domain configuration pattern.

The circulation engine defines its limits, periods and intervals as a
frozen dataclass. This gives you:
- Type safety (IDE autocompletion, mypy checking)
- Default values (sensible out-of-the-box)
- Immutability (frozen=True prevents accidental mutation)
- Easy overrides (from env vars or explicit construction in tests)
"""

import os
from dataclasses import dataclass, field, replace
from typing import Optional


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LoanPolicy:
    """Borrowing limits and loan periods."""

    max_active_borrows: int = 3
    loan_period_days: int = 14
    reservation_period_days: int = 7


@dataclass(frozen=True)
class HoldPolicy:
    """Hold queue timing."""

    hold_expiry_days: int = 14
    pickup_window_days: int = 7


@dataclass(frozen=True)
class SweepPolicy:
    """Periodic job settings."""

    interval_seconds: float = 300.0  # 5 minutes
    overdue_minimum_days: int = 1


@dataclass(frozen=True)
class NotificationPolicy:
    """Outbound notification delivery."""

    queue_size: int = 1000
    max_retries: int = 3
    backoff_base: float = 1.0
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    webhook_url: Optional[str] = None
    webhook_secret: str = ""


# ---------------------------------------------------------------------------
# Top-level domain config
# ---------------------------------------------------------------------------

_ENV_FIELDS = {
    # env suffix: (section, attribute, parser)
    "MAX_ACTIVE_BORROWS": ("loans", "max_active_borrows", int),
    "LOAN_PERIOD_DAYS": ("loans", "loan_period_days", int),
    "RESERVATION_PERIOD_DAYS": ("loans", "reservation_period_days", int),
    "HOLD_EXPIRY_DAYS": ("holds", "hold_expiry_days", int),
    "PICKUP_WINDOW_DAYS": ("holds", "pickup_window_days", int),
    "SWEEP_INTERVAL_SECONDS": ("sweeps", "interval_seconds", float),
    "OVERDUE_MINIMUM_DAYS": ("sweeps", "overdue_minimum_days", int),
    "WEBHOOK_URL": ("notifications", "webhook_url", str),
    "WEBHOOK_SECRET": ("notifications", "webhook_secret", str),
}


@dataclass(frozen=True)
class CirculationConfig:
    """Complete configuration for the circulation engine.

    Usage::

        config = CirculationConfig.default()
        due = now + timedelta(days=config.loans.loan_period_days)
    """

    loans: LoanPolicy = field(default_factory=LoanPolicy)
    holds: HoldPolicy = field(default_factory=HoldPolicy)
    sweeps: SweepPolicy = field(default_factory=SweepPolicy)
    notifications: NotificationPolicy = field(default_factory=NotificationPolicy)

    @classmethod
    def default(cls) -> "CirculationConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "CIRCULATION_") -> "CirculationConfig":
        """Create config from environment variables.

        Example: CIRCULATION_LOAN_PERIOD_DAYS=21
        """
        overrides: dict[str, dict] = {}
        for suffix, (section, attr, parse) in _ENV_FIELDS.items():
            raw = os.getenv(f"{prefix}{suffix}")
            if raw:
                overrides.setdefault(section, {})[attr] = parse(raw)

        config = cls()
        for section, values in overrides.items():
            config = replace(config, **{section: replace(getattr(config, section), **values)})
        return config
