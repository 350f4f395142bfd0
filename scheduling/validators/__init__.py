"""
Transaction Validators.

Business-rule checks that run inside the reservation transaction, against the
same session that writes the appointment:
- validate_slot_availability: interval overlaps no non-cancelled booking or blocked time
- validate_future_start: start is in the future (plus minimum lead time)
- validate_within_availability: interval fits an active availability window
"""

from scheduling.validators.transaction_validators import (
    validate_future_start,
    validate_slot_availability,
    validate_within_availability,
)

__all__ = [
    "validate_future_start",
    "validate_slot_availability",
    "validate_within_availability",
]
