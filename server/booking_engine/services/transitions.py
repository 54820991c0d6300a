"""Booking entry state machine."""

from ..core.exceptions import InvalidTransitionError
from ..models.booking_entry import BookingStatus

# Entry states are set once by reserve; these are the only moves after that
VALID_TRANSITIONS = {
    BookingStatus.WAITLISTED: {BookingStatus.CONFIRMED, BookingStatus.EXPIRED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.EXPIRED: set(),
    BookingStatus.REJECTED: set(),
}


def can_transition(current, target) -> bool:
    return BookingStatus(target) in VALID_TRANSITIONS[BookingStatus(current)]


def validate_status_transition(entry_id: int, current, target) -> None:
    """
    Raise InvalidTransitionError unless ``current -> target`` is allowed.

    Accepts enum members or their stored string values.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            booking_entry_id=entry_id,
            current_status=BookingStatus(current).value,
            target_status=BookingStatus(target).value,
        )
