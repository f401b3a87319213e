"""Booking domain exceptions."""


class BookingError(Exception):
    """Base class for booking engine errors."""
    pass


class BookingPersistenceError(BookingError):
    """Raised when a booking, contact or payment record cannot be read or written."""
    pass


class BookingValidationError(BookingPersistenceError):
    """Raised when a batch is rejected before anything is written."""
    pass


class PaymentLinkError(BookingError):
    """Raised when a payment link cannot be created or delivered."""
    pass
