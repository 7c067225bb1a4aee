"""
Trip database model.

A trip is a driver-owned route offer with a fixed seat inventory.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Numeric, JSON, CheckConstraint
from sqlalchemy.sql import func
from ridepool.app.db.session import Base
from ridepool.app.models.trip_enums import TripStatus


class Trip(Base):
    """
    Trip model.
    
    seats_available is owned by the seat inventory service and must only be
    changed through its compare-and-swap operations; `version` is bumped on
    every inventory write.
    """
    __tablename__ = "trips"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Ownership
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    
    # Route: {"lat", "lng", "address"} points
    origin = Column(JSON, nullable=False)
    destination = Column(JSON, nullable=False)
    waypoints = Column(JSON, nullable=True)
    departure_time = Column(DateTime(timezone=True), nullable=True)
    
    # Seat inventory
    seats_total = Column(Integer, nullable=False)
    seats_available = Column(Integer, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    
    # Pricing (per seat base fare, flat optional stop fees)
    base_fare = Column(Numeric(12, 2), nullable=False)
    pickup_fee = Column(Numeric(12, 2), nullable=True)
    dropoff_fee = Column(Numeric(12, 2), nullable=True)
    
    # Status
    status = Column(Enum(TripStatus), default=TripStatus.ACTIVE, nullable=False, index=True)
    cancellation_reason = Column(String(255), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    
    __table_args__ = (
        CheckConstraint('seats_available >= 0', name='ck_trips_seats_available_non_negative'),
        CheckConstraint('seats_available <= seats_total', name='ck_trips_seats_available_le_total'),
        CheckConstraint('seats_total >= 1', name='ck_trips_seats_total_positive'),
    )
    
    def __repr__(self):
        return f"<Trip(id={self.id}, seats={self.seats_available}/{self.seats_total}, status='{self.status.value}')>"
