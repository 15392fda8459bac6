"""Test the hold queue: placement, compaction, promotion and expiry."""
import asyncio
from datetime import timedelta

import pytest

from verticals.circulation.errors import ErrorKind
from verticals.circulation.notifier import NotificationKind
from verticals.circulation.states import HoldStatus, TransactionStatus


async def exhausted_book(desk, total_stock=1):
    book = await desk.book(total_stock=total_stock)
    loans = [await desk.lend(book.id, f"reader{i}@example.com") for i in range(total_stock)]
    return book, loans


@pytest.mark.asyncio
async def test_hold_refused_while_copies_available(engine, desk):
    book = await desk.book(total_stock=1)
    result = await engine.place_hold(book.id, "ann@example.com")
    assert result.error == ErrorKind.STOCK_AVAILABLE


@pytest.mark.asyncio
async def test_place_hold_appends_to_queue(engine, desk, now):
    book, _ = await exhausted_book(desk)

    first = await desk.hold(book.id, "ann@example.com")
    second = await desk.hold(book.id, "bob@example.com")

    assert first.status == HoldStatus.ACTIVE
    assert first.queue_position == 1
    assert second.queue_position == 2
    assert first.expiry_date == now + timedelta(days=14)


@pytest.mark.asyncio
async def test_second_hold_by_same_user(engine, desk):
    book, _ = await exhausted_book(desk)
    await desk.hold(book.id, "ann@example.com")

    result = await engine.place_hold(book.id, "ann@example.com")
    assert result.error == ErrorKind.ALREADY_ON_HOLD
    assert result.details["queue_position"] == 1


@pytest.mark.asyncio
async def test_borrower_cannot_hold_own_copy(engine, desk):
    book, _ = await exhausted_book(desk)
    result = await engine.place_hold(book.id, "reader0@example.com")
    assert result.error == ErrorKind.DUPLICATE_REQUEST


@pytest.mark.asyncio
async def test_return_promotes_head_of_queue(engine, desk, notifier, now):
    book, loans = await exhausted_book(desk, total_stock=2)
    hold = await desk.hold(book.id, "xavier@example.com")
    assert hold.queue_position == 1

    returned = await engine.complete_return(loans[0].id)
    assert returned.ok

    hold = (await engine.get_hold(hold.id)).value
    assert hold.status == HoldStatus.READY
    assert hold.queue_position is None
    assert hold.ready_pickup_date == now
    assert hold.expiry_date == now + timedelta(days=7)
    # The copy is back on the shelf but set aside for the holder.
    assert await desk.stock(book.id) == 1

    await desk.settle()
    ready = notifier.of_kind(NotificationKind.HOLD_READY)
    assert [n.user_email for n in ready] == ["xavier@example.com"]
    assert ready[0].payload["hold_id"] == hold.id


@pytest.mark.asyncio
async def test_ready_copy_goes_to_holder_not_walk_in(engine, desk):
    book, loans = await exhausted_book(desk)
    hold = await desk.hold(book.id, "xavier@example.com")
    await engine.complete_return(loans[0].id)

    walk_in = await engine.request_borrow(book.id, "yara@example.com")
    refused = await engine.approve(walk_in.value.id)
    assert refused.error == ErrorKind.OUT_OF_STOCK

    pickup = await engine.request_borrow(book.id, "xavier@example.com")
    approved = await engine.approve(pickup.value.id)
    assert approved.ok
    assert await desk.stock(book.id) == 0

    hold = (await engine.get_hold(hold.id)).value
    assert hold.status == HoldStatus.EXPIRED
    assert hold.picked_up_at is not None


@pytest.mark.asyncio
async def test_hold_allowed_while_copy_waits_for_pickup(engine, desk):
    book, loans = await exhausted_book(desk)
    await desk.hold(book.id, "xavier@example.com")
    await engine.complete_return(loans[0].id)

    result = await engine.place_hold(book.id, "yara@example.com")
    assert result.ok
    assert result.value.queue_position == 1


@pytest.mark.asyncio
async def test_return_with_empty_queue_frees_copy(engine, desk):
    book, loans = await exhausted_book(desk)
    await engine.complete_return(loans[0].id)

    assert await desk.stock(book.id) == 1
    assert (await engine.hold_queue(book.id)).value == []


@pytest.mark.asyncio
async def test_cancel_middle_hold_compacts_queue(engine, desk):
    book, _ = await exhausted_book(desk)
    await desk.hold(book.id, "ann@example.com")
    middle = await desk.hold(book.id, "bob@example.com")
    await desk.hold(book.id, "cat@example.com")

    result = await engine.cancel_hold(middle.id, reason="Bought a copy")

    assert result.value.status == HoldStatus.CANCELLED
    assert result.value.cancelled_reason == "Bought a copy"
    assert await desk.positions(book.id) == [("ann@example.com", 1), ("cat@example.com", 2)]


@pytest.mark.asyncio
async def test_cancel_hold_twice(engine, desk):
    book, _ = await exhausted_book(desk)
    hold = await desk.hold(book.id, "ann@example.com")

    assert (await engine.cancel_hold(hold.id)).ok
    result = await engine.cancel_hold(hold.id)
    assert result.error == ErrorKind.INVALID_STATE_TRANSITION


@pytest.mark.asyncio
async def test_cancel_ready_hold_promotes_next(engine, desk):
    book, loans = await exhausted_book(desk)
    first = await desk.hold(book.id, "ann@example.com")
    second = await desk.hold(book.id, "bob@example.com")
    await engine.complete_return(loans[0].id)

    await engine.cancel_hold(first.id)

    second = (await engine.get_hold(second.id)).value
    assert second.status == HoldStatus.READY
    assert await desk.positions(book.id) == []


@pytest.mark.asyncio
async def test_queue_positions_stay_contiguous(engine, desk):
    book, loans = await exhausted_book(desk, total_stock=2)
    holds = [await desk.hold(book.id, f"user{i}@example.com") for i in range(5)]

    await engine.cancel_hold(holds[0].id)
    await engine.complete_return(loans[0].id)
    await engine.cancel_hold(holds[3].id)
    await desk.hold(book.id, "late@example.com")

    positions = await desk.positions(book.id)
    assert [p for _, p in positions] == list(range(1, len(positions) + 1))
    assert [u for u, _ in positions] == ["user2@example.com", "user4@example.com", "late@example.com"]


@pytest.mark.asyncio
async def test_expire_sweep_cascades_lapsed_pickup(engine, desk, notifier, now):
    book, loans = await exhausted_book(desk)
    first = await desk.hold(book.id, "ann@example.com")
    second = await desk.hold(book.id, "bob@example.com")
    await engine.complete_return(loans[0].id)

    later = now + timedelta(days=8)
    result = await engine.expire_sweep(now=later)

    report = result.value
    assert report.expired == [first.id]
    assert report.promoted == [second.id]
    second = (await engine.get_hold(second.id)).value
    assert second.status == HoldStatus.READY
    assert second.expiry_date == later + timedelta(days=7)

    await desk.settle()
    expired = notifier.of_kind(NotificationKind.HOLD_EXPIRED)
    assert [n.user_email for n in expired] == ["ann@example.com"]


@pytest.mark.asyncio
async def test_expire_sweep_drops_stale_queue_entries(engine, desk, now):
    book, _ = await exhausted_book(desk)
    old = await desk.hold(book.id, "ann@example.com", now=now - timedelta(days=20))
    fresh = await desk.hold(book.id, "bob@example.com", now=now)

    report = (await engine.expire_sweep(now=now)).value

    assert report.expired == [old.id]
    assert report.promoted == []
    assert await desk.positions(book.id) == [("bob@example.com", 1)]
    assert (await engine.get_hold(fresh.id)).value.status == HoldStatus.ACTIVE


@pytest.mark.asyncio
async def test_expire_sweep_with_nothing_lapsed(engine, desk, now):
    book, _ = await exhausted_book(desk)
    await desk.hold(book.id, "ann@example.com")

    report = (await engine.expire_sweep(now=now)).value
    assert report.expired == []
    assert report.promoted == []


@pytest.mark.asyncio
async def test_picked_up_loan_completes_normally(engine, desk):
    book, loans = await exhausted_book(desk)
    await desk.hold(book.id, "ann@example.com")
    await engine.complete_return(loans[0].id)
    loan = await desk.lend(book.id, "ann@example.com")

    done = await engine.complete_return(loan.id)
    assert done.value.status == TransactionStatus.COMPLETED
    assert await desk.stock(book.id) == 1


@pytest.mark.asyncio
async def test_concurrent_holds_get_distinct_positions(engine, desk):
    book, _ = await exhausted_book(desk)

    results = await asyncio.gather(*(
        engine.place_hold(book.id, f"user{i}@example.com") for i in range(5)
    ))

    assert all(r.ok for r in results)
    assert sorted(r.value.queue_position for r in results) == [1, 2, 3, 4, 5]
    assert [p for _, p in await desk.positions(book.id)] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_concurrent_cancels_and_placements_keep_queue_contiguous(engine, desk):
    book, _ = await exhausted_book(desk)
    holds = [await desk.hold(book.id, f"user{i}@example.com") for i in range(4)]

    results = await asyncio.gather(
        engine.cancel_hold(holds[0].id),
        engine.place_hold(book.id, "late1@example.com"),
        engine.cancel_hold(holds[2].id),
        engine.place_hold(book.id, "late2@example.com"),
    )

    assert all(r.ok for r in results)
    positions = await desk.positions(book.id)
    assert [p for _, p in positions] == [1, 2, 3, 4]
    assert [u for u, _ in positions[:2]] == ["user1@example.com", "user3@example.com"]
    assert {u for u, _ in positions[2:]} == {"late1@example.com", "late2@example.com"}


@pytest.mark.asyncio
async def test_user_holds_and_queue_position(engine, desk):
    book, _ = await exhausted_book(desk)
    other, _ = await exhausted_book(desk)
    await desk.hold(book.id, "ann@example.com")
    mine = await desk.hold(book.id, "bob@example.com")
    elsewhere = await desk.hold(other.id, "bob@example.com")

    position = (await engine.queue_position(book.id, "bob@example.com")).value
    assert (position.hold_id, position.queue_position, position.queue_length) == (mine.id, 2, 2)

    holds = (await engine.user_holds("bob@example.com")).value
    assert {h.id for h in holds} == {mine.id, elsewhere.id}

    await engine.cancel_hold(elsewhere.id)
    queued = (await engine.user_holds("bob@example.com", HoldStatus.ACTIVE)).value
    assert [h.id for h in queued] == [mine.id]

    missing = await engine.queue_position(other.id, "bob@example.com")
    assert missing.error == ErrorKind.NOT_FOUND
