from enum import Enum

from wakili.domain.errors import ConflictError


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ClientPaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class PartyRole(str, Enum):
    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"
    SYSTEM = "SYSTEM"


class ConsultationType(str, Enum):
    VIDEO = "VIDEO"
    PHONE = "PHONE"
    IN_PERSON = "IN_PERSON"


BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING_PAYMENT: {BookingStatus.PAYMENT_CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.PAYMENT_CONFIRMED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# Statuses that occupy the provider's calendar.
ACTIVE_STATUSES = set(BookingStatus) - {BookingStatus.CANCELLED}
PAID_STATUSES = {BookingStatus.PAYMENT_CONFIRMED, BookingStatus.IN_PROGRESS}
CONFIRMABLE_STATUSES = {BookingStatus.PAYMENT_CONFIRMED, BookingStatus.IN_PROGRESS}


def assert_valid_transition(current: BookingStatus | str, target: BookingStatus | str) -> None:
    current_status = BookingStatus(current)
    target_status = BookingStatus(target)
    allowed = BOOKING_TRANSITIONS[current_status]
    if not allowed:
        raise ConflictError(f"Booking is already in terminal status: {current_status.value}")
    if target_status not in allowed:
        raise ConflictError(
            f"Cannot transition booking from {current_status.value} to {target_status.value}"
        )
