"""Overdue Sweeper: reminders for loans past their due date.

A run is a read of every qualifying loan followed, outside dry-run, by one
notification per user and a conditional `reminder_sent` flag per loan. The
flag is only set on rows still active (and still unflagged, unless forced),
so a loan returned between the read and the write is skipped, not failed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from patterns.rules_engine import check_overdue_window
from verticals.circulation.notifier import NotificationKind
from verticals.circulation.repository import TransactionRepository
from verticals.circulation.unit_of_work import CirculationUnit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverdueItem:
    transaction_id: str
    book_id: str
    book_title: str
    user_email: str
    end_date: datetime
    days_overdue: int
    reminder_sent: bool

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "user_email": self.user_email,
            "end_date": self.end_date.isoformat(),
            "days_overdue": self.days_overdue,
            "reminder_sent": self.reminder_sent,
        }


@dataclass
class OverdueSweepReport:
    """What a sweep saw and what it did.

    `overdue` is every loan in the window; `due_for_reminder` the subset a
    real run would notify; `notified` what this run actually flagged (always
    empty for a dry run).
    """

    ran_at: datetime
    dry_run: bool
    minimum_days: int
    overdue: list[OverdueItem] = field(default_factory=list)
    due_for_reminder: list[OverdueItem] = field(default_factory=list)
    notified: list[OverdueItem] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def users_notified(self) -> list[str]:
        return sorted({item.user_email for item in self.notified})

    def to_dict(self) -> dict:
        return {
            "ran_at": self.ran_at.isoformat(),
            "dry_run": self.dry_run,
            "minimum_days": self.minimum_days,
            "overdue": [i.to_dict() for i in self.overdue],
            "due_for_reminder": [i.to_dict() for i in self.due_for_reminder],
            "notified": [i.to_dict() for i in self.notified],
            "users_notified": self.users_notified,
            "skipped": list(self.skipped),
        }


class OverdueSweeper:

    def __init__(self, unit: CirculationUnit):
        self.unit = unit

    async def run(
        self,
        now: datetime,
        minimum_days: int,
        dry_run: bool = True,
        force: bool = False,
        maximum_days: Optional[int] = None,
    ) -> OverdueSweepReport:
        report = OverdueSweepReport(ran_at=now, dry_run=dry_run, minimum_days=minimum_days)

        async with self.unit.session() as session:
            candidates = await TransactionRepository(session).overdue_borrows(
                now - timedelta(days=minimum_days)
            )

        for txn in candidates:
            window = check_overdue_window(txn.end_date, now, minimum_days, maximum_days)
            if not window.passed:
                continue
            item = OverdueItem(
                transaction_id=txn.id,
                book_id=txn.book_id,
                book_title=txn.book_title,
                user_email=txn.user_email,
                end_date=txn.end_date,
                days_overdue=window.details["days_overdue"],
                reminder_sent=txn.reminder_sent,
            )
            report.overdue.append(item)
            if force or not txn.reminder_sent:
                report.due_for_reminder.append(item)

        if dry_run:
            logger.info(
                "overdue sweep (dry run): %d overdue, %d due for reminder",
                len(report.overdue), len(report.due_for_reminder),
            )
            return report

        by_user: dict[str, list[OverdueItem]] = defaultdict(list)
        async with self.unit.session() as session:
            transactions = TransactionRepository(session)
            for item in report.due_for_reminder:
                if await transactions.mark_reminder_sent(item.transaction_id, force=force):
                    by_user[item.user_email].append(item)
                    report.notified.append(item)
                else:
                    logger.debug("loan %s changed since the scan, skipping", item.transaction_id)
                    report.skipped.append(item.transaction_id)

        # Flags are committed; now the reminders can go out.
        for user_email, items in by_user.items():
            self.unit.dispatcher.notify(user_email, NotificationKind.OVERDUE, {
                "items": [
                    {
                        "transaction_id": i.transaction_id,
                        "book_id": i.book_id,
                        "book_title": i.book_title,
                        "due_date": i.end_date.isoformat(),
                        "days_overdue": i.days_overdue,
                    }
                    for i in items
                ],
                "total_overdue": len(items),
            })

        logger.info(
            "overdue sweep: %d overdue, %d reminders to %d users",
            len(report.overdue), len(report.notified), len(by_user),
        )
        return report
