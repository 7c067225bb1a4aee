"""
Booking database model.

A rider's seat reservation on a trip, and the record of its payment.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, Numeric, JSON, CheckConstraint
from sqlalchemy.sql import func
from ridepool.app.db.session import Base
from ridepool.app.models.trip_enums import BookingStatus, PaymentStatus


class Booking(Base):
    """
    Booking model.
    
    Lifecycle: PENDING -> CONFIRMED -> COMPLETED, CANCELLED from PENDING or CONFIRMED.
    A CONFIRMED booking holds seats_booked seats of its trip's inventory.
    payment_status moves PENDING -> PAID exactly once (QR redemption); the fee
    split is frozen onto the row at that moment.
    """
    __tablename__ = "bookings"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    rider_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    
    seats_booked = Column(Integer, nullable=False)
    
    # Custom stops (charged at the trip's pickup/dropoff fee)
    custom_pickup = Column(Boolean, default=False, nullable=False)
    custom_dropoff = Column(Boolean, default=False, nullable=False)
    pickup_location = Column(JSON, nullable=True)
    dropoff_location = Column(JSON, nullable=True)
    
    # Financials
    base_amount = Column(Numeric(12, 2), nullable=False)  # base_fare * seats
    pickup_fee = Column(Numeric(12, 2), default=0, nullable=False)
    dropoff_fee = Column(Numeric(12, 2), default=0, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)  # base + fees
    
    # Set on payment
    rider_fee = Column(Numeric(12, 2), nullable=True)
    driver_fee = Column(Numeric(12, 2), nullable=True)
    driver_amount = Column(Numeric(12, 2), nullable=True)  # total - driver_fee
    
    # Status
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    
    cancellation_reason = Column(String(255), nullable=True)
    cancelled_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    
    __table_args__ = (
        CheckConstraint('seats_booked >= 1', name='ck_bookings_seats_booked_positive'),
    )
    
    def __repr__(self):
        return f"<Booking(id={self.id}, trip_id={self.trip_id}, status='{self.status.value}', payment='{self.payment_status.value}')>"
