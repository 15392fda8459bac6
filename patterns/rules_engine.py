"""Pure-function rules engine pattern.

Rules are stateless functions: (facts, policy) -> RuleResult.
No database, no side effects. This makes them:
- Trivially testable (pure input/output)
- Composable (chain multiple rules)
- Auditable (deterministic, explainable)

The circulation services gather facts from the stores, evaluate these
rules, and turn a failed rule into the matching typed error.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RuleResult:
    """Outcome of a single rule evaluation."""

    passed: bool
    rule_name: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RuleSetResult:
    """Aggregate outcome of multiple rules."""

    all_passed: bool
    results: list[RuleResult]
    failed: list[RuleResult] = field(default_factory=list)

    def __post_init__(self):
        self.failed = [r for r in self.results if not r.passed]
        self.all_passed = len(self.failed) == 0


# ---------------------------------------------------------------------------
# Circulation rules
# ---------------------------------------------------------------------------

def check_borrow_limit(active_borrows: int, max_active_borrows: int) -> RuleResult:
    """A user may hold at most `max_active_borrows` active borrows."""
    passed = active_borrows < max_active_borrows
    return RuleResult(
        passed=passed,
        rule_name="borrow_limit",
        message=(
            f"{active_borrows} of {max_active_borrows} borrows in use"
            if passed
            else f"Borrowing limit of {max_active_borrows} books reached"
        ),
        details={"active_borrows": active_borrows, "limit": max_active_borrows},
    )


def check_no_open_request(open_requests: int, kind: str) -> RuleResult:
    """At most one pending/active request of a kind per user and book."""
    passed = open_requests == 0
    return RuleResult(
        passed=passed,
        rule_name="no_open_request",
        message=(
            f"No open {kind} request"
            if passed
            else f"A pending or active {kind} request already exists for this book"
        ),
        details={"open_requests": open_requests, "kind": kind},
    )


def check_copies_free(available_stock: int, held_for_pickup: int) -> RuleResult:
    """Copies on the shelf that are not set aside for a ready hold.

    Passes when at least one copy can go to a new borrower.
    """
    free = available_stock - held_for_pickup
    passed = free > 0
    return RuleResult(
        passed=passed,
        rule_name="copies_free",
        message=(
            f"{free} copies free"
            if passed
            else "No copies available, place a hold instead"
        ),
        details={
            "available_stock": available_stock,
            "held_for_pickup": held_for_pickup,
            "free": max(free, 0),
        },
    )


def days_overdue(due: datetime, now: datetime) -> int:
    """Whole days elapsed since the due date (0 when not yet due)."""
    if now <= due:
        return 0
    return (now - due) // timedelta(days=1)


def check_overdue_window(
    due: datetime,
    now: datetime,
    minimum_days: int = 0,
    maximum_days: Optional[int] = None,
) -> RuleResult:
    """A loan qualifies when due < now - minimum_days (and within maximum_days)."""
    days = days_overdue(due, now)
    past_minimum = due < now - timedelta(days=minimum_days)
    within_maximum = maximum_days is None or days <= maximum_days
    passed = past_minimum and within_maximum

    reasons = []
    if not past_minimum:
        reasons.append(f"{days} days overdue, minimum is {minimum_days}")
    if not within_maximum:
        reasons.append(f"{days} days overdue exceeds maximum of {maximum_days}")

    return RuleResult(
        passed=passed,
        rule_name="overdue_window",
        message="Overdue" if passed else "; ".join(reasons),
        details={"days_overdue": days, "minimum_days": minimum_days, "maximum_days": maximum_days},
    )


# ---------------------------------------------------------------------------
# Rule composition
# ---------------------------------------------------------------------------

def evaluate_rules(*rules: RuleResult) -> RuleSetResult:
    """Compose multiple rule results into a single aggregate.

    Example::

        result = evaluate_rules(
            check_no_open_request(open_count, "borrow"),
            check_borrow_limit(active, config.loans.max_active_borrows),
        )
        if not result.all_passed:
            reject(result.failed[0])
    """
    return RuleSetResult(
        all_passed=all(r.passed for r in rules),
        results=list(rules),
    )
