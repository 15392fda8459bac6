"""Circulation API router.

A thin request layer over CirculationEngine:
- Request bodies validated by pydantic schemas
- Engine injected via FastAPI Depends (built in the app lifespan)
- Failed OperationResults translated to HTTP errors with user messages
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from verticals.circulation.engine import CirculationEngine, OperationResult
from verticals.circulation.errors import ErrorKind
from verticals.circulation.models.schemas import (
    BookCreate,
    BookResponse,
    CancelRequest,
    CirculationRequest,
    CompleteReturnRequest,
    ErrorResponse,
    HoldCreate,
    HoldResponse,
    OverdueSweepRequest,
    QueuePositionResponse,
    ReasonRequest,
    ReturnRequest,
    StockUpdate,
    TransactionResponse,
)
from verticals.circulation.states import HoldStatus, TransactionType

router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)

STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.LIMIT_EXCEEDED: 400,
    ErrorKind.OUT_OF_STOCK: 409,
    ErrorKind.DUPLICATE_REQUEST: 409,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.ALREADY_ON_HOLD: 409,
    ErrorKind.STOCK_AVAILABLE: 409,
}

USER_MESSAGES = {
    ErrorKind.OUT_OF_STOCK: "No copies available, place a hold instead",
    ErrorKind.STOCK_AVAILABLE: "Copies are available, borrow the book instead of placing a hold",
    ErrorKind.ALREADY_ON_HOLD: "You already have a hold on this book",
    ErrorKind.INVALID_STATE_TRANSITION: "This request has already been processed",
}


def get_engine(request: Request) -> CirculationEngine:
    return request.app.state.engine


def unwrap(result: OperationResult):
    """Return the result's value or raise the matching HTTPException."""
    if result.ok:
        return result.value
    raise HTTPException(
        status_code=STATUS_CODES.get(result.error, 409),
        detail={
            "error": result.error.value,
            "message": USER_MESSAGES.get(result.error, result.message),
            "details": result.details,
        },
    )


# ============================================================================
# Book Endpoints
# ============================================================================

@router.post("/books", status_code=201, response_model=BookResponse)
async def register_book(request: BookCreate, engine: CirculationEngine = Depends(get_engine)):
    """Add a title with all copies on the shelf."""
    book = unwrap(await engine.register_book(request.title, request.total_stock))
    return book.to_dict()


@router.get("/books/{book_id}", response_model=BookResponse)
async def get_book(book_id: str, engine: CirculationEngine = Depends(get_engine)):
    return unwrap(await engine.get_book(book_id)).to_dict()


@router.put("/books/{book_id}/stock", response_model=BookResponse)
async def update_stock(
    book_id: str,
    request: StockUpdate,
    engine: CirculationEngine = Depends(get_engine),
):
    """Change the number of copies owned. Added copies are offered to the hold queue first."""
    return unwrap(await engine.adjust_total_stock(book_id, request.total_stock)).to_dict()


# ============================================================================
# Transaction Endpoints
# ============================================================================

@router.post("/transactions/borrow", status_code=201, response_model=TransactionResponse)
async def request_borrow(request: CirculationRequest, engine: CirculationEngine = Depends(get_engine)):
    txn = unwrap(await engine.request_borrow(request.book_id, request.user_email))
    return txn.to_dict()


@router.post("/transactions/reserve", status_code=201, response_model=TransactionResponse)
async def request_reserve(request: CirculationRequest, engine: CirculationEngine = Depends(get_engine)):
    txn = unwrap(await engine.request_reserve(request.book_id, request.user_email))
    return txn.to_dict()


@router.get("/transactions/pending")
async def pending_requests(
    type: Optional[TransactionType] = None,
    engine: CirculationEngine = Depends(get_engine),
):
    """Borrow and reserve requests awaiting a decision, newest first."""
    transactions = unwrap(await engine.pending_requests(type))
    return {"data": [t.to_dict() for t in transactions], "count": len(transactions)}


@router.get("/transactions/return-requests")
async def pending_returns(engine: CirculationEngine = Depends(get_engine)):
    """Loans whose return is waiting for librarian confirmation."""
    transactions = unwrap(await engine.pending_returns())
    return {"data": [t.to_dict() for t in transactions], "count": len(transactions)}


@router.get("/transactions/user/{user_email}")
async def user_transactions(user_email: str, engine: CirculationEngine = Depends(get_engine)):
    """All transactions of one user, newest first, with a derived overdue flag."""
    transactions = unwrap(await engine.user_transactions(user_email))
    now = engine.clock()
    data = [{**t.to_dict(), "overdue": t.is_overdue(now)} for t in transactions]
    return {"data": data, "count": len(data)}


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: str, engine: CirculationEngine = Depends(get_engine)):
    return unwrap(await engine.get_transaction(transaction_id)).to_dict()


@router.post("/transactions/{transaction_id}/approve", response_model=TransactionResponse)
async def approve(transaction_id: str, engine: CirculationEngine = Depends(get_engine)):
    return unwrap(await engine.approve(transaction_id)).to_dict()


@router.post("/transactions/{transaction_id}/reject", response_model=TransactionResponse)
async def reject(
    transaction_id: str,
    request: ReasonRequest,
    engine: CirculationEngine = Depends(get_engine),
):
    return unwrap(await engine.reject(transaction_id, request.reason)).to_dict()


@router.post("/transactions/{transaction_id}/cancel", response_model=TransactionResponse)
async def cancel(
    transaction_id: str,
    request: CancelRequest,
    engine: CirculationEngine = Depends(get_engine),
):
    return unwrap(await engine.cancel(transaction_id, request.user_email)).to_dict()


@router.post("/transactions/{transaction_id}/request-return", response_model=TransactionResponse)
async def request_return(
    transaction_id: str,
    request: ReturnRequest,
    engine: CirculationEngine = Depends(get_engine),
):
    return unwrap(await engine.request_return(transaction_id, request.condition)).to_dict()


@router.post("/transactions/{transaction_id}/reject-return", response_model=TransactionResponse)
async def reject_return(
    transaction_id: str,
    request: ReasonRequest,
    engine: CirculationEngine = Depends(get_engine),
):
    return unwrap(await engine.reject_return(transaction_id, request.reason)).to_dict()


@router.post("/transactions/{transaction_id}/complete-return", response_model=TransactionResponse)
async def complete_return(
    transaction_id: str,
    request: CompleteReturnRequest,
    engine: CirculationEngine = Depends(get_engine),
):
    """Librarian confirms the copy is back; the next holder is promoted."""
    return unwrap(await engine.complete_return(transaction_id, request.condition)).to_dict()


# ============================================================================
# Hold Endpoints
# ============================================================================

@router.post("/holds", status_code=201, response_model=HoldResponse)
async def place_hold(request: HoldCreate, engine: CirculationEngine = Depends(get_engine)):
    return unwrap(await engine.place_hold(request.book_id, request.user_email)).to_dict()


@router.get("/holds/book/{book_id}")
async def hold_queue(book_id: str, engine: CirculationEngine = Depends(get_engine)):
    """Active holds for a book in queue order."""
    holds = unwrap(await engine.hold_queue(book_id))
    return {"data": [h.to_dict() for h in holds], "count": len(holds)}


@router.get("/holds/user/{user_email}")
async def user_holds(
    user_email: str,
    status: Optional[HoldStatus] = None,
    engine: CirculationEngine = Depends(get_engine),
):
    holds = unwrap(await engine.user_holds(user_email, status))
    return {"data": [h.to_dict() for h in holds], "count": len(holds)}


@router.get("/holds/position/{book_id}/{user_email}", response_model=QueuePositionResponse)
async def queue_position(book_id: str, user_email: str, engine: CirculationEngine = Depends(get_engine)):
    return unwrap(await engine.queue_position(book_id, user_email)).to_dict()


@router.get("/holds/{hold_id}", response_model=HoldResponse)
async def get_hold(hold_id: str, engine: CirculationEngine = Depends(get_engine)):
    return unwrap(await engine.get_hold(hold_id)).to_dict()


@router.post("/holds/{hold_id}/cancel", response_model=HoldResponse)
async def cancel_hold(
    hold_id: str,
    request: ReasonRequest,
    engine: CirculationEngine = Depends(get_engine),
):
    return unwrap(await engine.cancel_hold(hold_id, request.reason)).to_dict()


# ============================================================================
# Sweep Endpoints
# ============================================================================

@router.post("/sweeps/holds")
async def run_hold_sweep(engine: CirculationEngine = Depends(get_engine)):
    return unwrap(await engine.expire_sweep()).to_dict()


@router.post("/sweeps/overdue")
async def run_overdue_sweep(
    request: OverdueSweepRequest,
    engine: CirculationEngine = Depends(get_engine),
):
    """Preview (dry_run, the default) or send overdue reminders."""
    report = unwrap(await engine.overdue_sweep(
        dry_run=request.dry_run,
        minimum_days=request.minimum_days,
        force=request.force,
        maximum_days=request.maximum_days,
    ))
    return report.to_dict()
