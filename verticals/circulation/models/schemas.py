"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from verticals.circulation.states import ReturnCondition

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class BookCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    total_stock: int = Field(..., ge=0)


class StockUpdate(BaseModel):
    total_stock: int = Field(..., ge=0)


class CirculationRequest(BaseModel):
    book_id: str
    user_email: str = Field(..., pattern=EMAIL_PATTERN)


class CancelRequest(BaseModel):
    user_email: str = Field(..., pattern=EMAIL_PATTERN)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ReturnRequest(BaseModel):
    condition: ReturnCondition = ReturnCondition.GOOD


class CompleteReturnRequest(BaseModel):
    condition: Optional[ReturnCondition] = None


class HoldCreate(BaseModel):
    book_id: str
    user_email: str = Field(..., pattern=EMAIL_PATTERN)


class OverdueSweepRequest(BaseModel):
    dry_run: bool = True
    minimum_days: Optional[int] = Field(None, ge=0)
    maximum_days: Optional[int] = Field(None, ge=0)
    force: bool = False


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class BookResponse(BaseModel):
    id: str
    title: str
    total_stock: int
    available_stock: int
    archived: bool = False


class TransactionResponse(BaseModel):
    id: str
    book_id: str
    book_title: str
    user_email: str
    type: str
    status: str
    requested_at: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    return_condition: Optional[str] = None
    return_requested_at: Optional[datetime] = None
    reminder_sent: bool = False


class HoldResponse(BaseModel):
    id: str
    book_id: str
    book_title: str
    user_email: str
    status: str
    hold_date: Optional[datetime] = None
    queue_position: Optional[int] = None
    ready_pickup_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None


class QueuePositionResponse(BaseModel):
    hold_id: str
    book_id: str
    user_email: str
    queue_position: int
    queue_length: int


class ErrorDetail(BaseModel):
    error: str
    message: str
    details: dict = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    detail: ErrorDetail
