"""
Atomic transaction handlers.

The Reservation Coordinator is the single writer for bookings and for the
payment side effects of booking (session debit, invoice creation, confirmation
on payment). Each operation is one database transaction:
1. SERIALIZABLE isolation on PostgreSQL, plus an in-process asyncio.Lock
2. SELECT FOR UPDATE on the rows being checked
3. Complete rollback on any failure
4. Notifications only after commit
"""

from scheduling.transactions.reservation import (
    ReservationCoordinator,
    ReservationResult,
    get_reservation_coordinator,
)

__all__ = ["ReservationCoordinator", "ReservationResult", "get_reservation_coordinator"]
