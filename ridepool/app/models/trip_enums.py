"""
Trip and booking enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    PENDING = "PENDING"  # Drafted, not yet open
    ACTIVE = "ACTIVE"  # Published, accepting bookings
    IN_PROGRESS = "IN_PROGRESS"  # Driver has departed
    COMPLETED = "COMPLETED"  # Terminal
    CANCELLED = "CANCELLED"  # Terminal


class BookingStatus(str, enum.Enum):
    """Booking status enumeration."""
    PENDING = "PENDING"  # Requested by rider, no seats held
    CONFIRMED = "CONFIRMED"  # Accepted by driver, seats reserved
    COMPLETED = "COMPLETED"  # Paid via QR scan
    CANCELLED = "CANCELLED"  # Rejected or cancelled


class PaymentStatus(str, enum.Enum):
    """Booking payment status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"


BOOKABLE_TRIP_STATUSES = (TripStatus.PENDING, TripStatus.ACTIVE)
OPEN_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
