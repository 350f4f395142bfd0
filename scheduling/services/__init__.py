"""
Scheduling and billing services.

Each module owns one part of the engine and works on a caller-provided
AsyncSession without committing:
- availability_calendar: recurring weekly availability windows
- slot_generator: bookable slots for a date and service duration
- booking_ledger: appointments, conflict detection, status transitions
- session_account: client package balances (debit / credit / purchase)
- invoice_ledger: invoices and payments
- notification_service: post-commit notifications over Redis
"""
