"""Circulation vertical: borrowing, returns, holds and overdue reminders.

Brings the shared patterns together in one domain:
- SQLAlchemy models for books, transactions and holds
- Async repositories with guarded stock updates
- Transition tables for the transaction and hold lifecycles
- Pure-function circulation rules
- Queued notifications with circuit breaker and dead letters
- FastAPI router over the CirculationEngine facade
"""
