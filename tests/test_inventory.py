"""Test stock counters: guarded decrement/increment and catalog edits."""
import asyncio
import logging

import pytest

from verticals.circulation.errors import ErrorKind, InvariantViolation, OutOfStock
from verticals.circulation.states import TransactionStatus


@pytest.mark.asyncio
async def test_register_book_puts_every_copy_on_shelf(engine):
    result = await engine.register_book("Dune", 3)
    assert result.ok
    book = result.value
    assert book.total_stock == 3
    assert book.available_stock == 3
    assert book.archived is False


@pytest.mark.asyncio
async def test_decrement_and_increment(engine, desk):
    book = await desk.book(total_stock=2)
    async with engine.unit.for_book(book.id) as scope:
        assert await engine.inventory.decrement(scope) == 1
        assert await engine.inventory.decrement(scope) == 0
    async with engine.unit.for_book(book.id) as scope:
        assert await engine.inventory.increment(scope) == 1
    assert await desk.stock(book.id) == 1


@pytest.mark.asyncio
async def test_decrement_at_zero_is_out_of_stock(engine, desk):
    book = await desk.book(total_stock=0)
    with pytest.raises(OutOfStock):
        async with engine.unit.for_book(book.id) as scope:
            await engine.inventory.decrement(scope)
    assert await desk.stock(book.id) == 0


@pytest.mark.asyncio
async def test_increment_past_total_is_invariant_violation(engine, desk):
    book = await desk.book(total_stock=1)
    with pytest.raises(InvariantViolation, match="exceed its total stock"):
        async with engine.unit.for_book(book.id) as scope:
            await engine.inventory.increment(scope)
    assert await desk.stock(book.id) == 1


@pytest.mark.asyncio
async def test_approve_without_copies_fails_and_stays_pending(engine, desk):
    book = await desk.book(total_stock=1)
    await desk.lend(book.id, "ann@example.com")
    requested = await engine.request_borrow(book.id, "bob@example.com")

    result = await engine.approve(requested.value.id)

    assert not result.ok
    assert result.error == ErrorKind.OUT_OF_STOCK
    assert "place a hold" in result.message
    txn = (await engine.get_transaction(requested.value.id)).value
    assert txn.status == TransactionStatus.PENDING
    assert await desk.stock(book.id) == 0


@pytest.mark.asyncio
async def test_concurrent_approvals_for_last_copy(engine, desk):
    book = await desk.book(total_stock=1)
    requests = []
    for i in range(5):
        result = await engine.request_borrow(book.id, f"user{i}@example.com")
        requests.append(result.value.id)

    results = await asyncio.gather(*(engine.approve(txn_id) for txn_id in requests))

    approved = [r for r in results if r.ok]
    refused = [r for r in results if not r.ok]
    assert len(approved) == 1
    assert {r.error for r in refused} == {ErrorKind.OUT_OF_STOCK}
    assert await desk.stock(book.id) == 0

    statuses = [(await engine.get_transaction(t)).value.status for t in requests]
    assert statuses.count(TransactionStatus.ACTIVE) == 1
    assert statuses.count(TransactionStatus.PENDING) == 4


@pytest.mark.asyncio
async def test_adjust_total_stock_moves_available_by_delta(engine, desk):
    book = await desk.book(total_stock=2)
    await desk.lend(book.id, "ann@example.com")

    result = await engine.adjust_total_stock(book.id, 5)
    assert result.ok
    assert result.value.total_stock == 5
    assert result.value.available_stock == 4

    result = await engine.adjust_total_stock(book.id, 1)
    assert result.ok
    assert result.value.available_stock == 0


@pytest.mark.asyncio
async def test_adjust_total_stock_below_copies_on_loan(engine, desk, caplog):
    book = await desk.book(total_stock=2)
    await desk.lend(book.id, "ann@example.com")
    await desk.lend(book.id, "bob@example.com")

    with caplog.at_level(logging.ERROR, logger="verticals.circulation.engine"):
        with pytest.raises(InvariantViolation, match="2 copies on loan"):
            await engine.adjust_total_stock(book.id, 1)

    assert "invariant violation in adjust_total_stock" in caplog.text
    book = (await engine.get_book(book.id)).value
    assert (book.total_stock, book.available_stock) == (2, 0)


@pytest.mark.asyncio
async def test_added_copies_go_to_waiting_holders(engine, desk, notifier, now):
    book = await desk.book(total_stock=1)
    await desk.lend(book.id, "ann@example.com")
    await desk.hold(book.id, "bob@example.com")
    await desk.hold(book.id, "cat@example.com")

    await engine.adjust_total_stock(book.id, 2, now=now)

    queue = await desk.positions(book.id)
    assert queue == [("cat@example.com", 1)]
    await desk.settle()
    assert [n.user_email for n in notifier.sent] == ["bob@example.com"]


@pytest.mark.asyncio
async def test_unknown_book_is_not_found(engine):
    result = await engine.get_book("missing")
    assert result.error == ErrorKind.NOT_FOUND
    result = await engine.request_borrow("missing", "ann@example.com")
    assert result.error == ErrorKind.NOT_FOUND
