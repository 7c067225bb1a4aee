"""
Settlement database models.

Daily aggregation of a driver's paid bookings into a single payout obligation.
"""

from sqlalchemy import Column, Integer, String, Text, Date, ForeignKey, DateTime, Enum, Numeric, JSON, UniqueConstraint
from sqlalchemy.sql import func
from ridepool.app.db.session import Base
from ridepool.app.models.billing_enums import SettlementStatus, SettlementBatchStatus


class SettlementBatch(Base):
    """
    Settlement Batch model.
    
    One row per settlement date. The unique batch_date makes daily generation
    idempotent: a second run for the same date finds this row and stops.
    """
    __tablename__ = "settlement_batches"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    batch_date = Column(Date, nullable=False, unique=True, index=True)
    
    status = Column(Enum(SettlementBatchStatus), default=SettlementBatchStatus.PENDING, nullable=False)
    total_settlements = Column(Integer, default=0, nullable=False)
    total_amount = Column(Numeric(12, 2), default=0, nullable=False)  # sum of payout_amount
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    
    def __repr__(self):
        return f"<SettlementBatch(id={self.id}, date={self.batch_date}, total={self.total_amount})>"


class Settlement(Base):
    """
    Settlement model.
    
    Created once by the daily generator, then only moved along the payout
    workflow: PENDING -> APPROVED -> PROCESSING -> COMPLETED | FAILED.
    FAILED settlements may be retried; PENDING/FAILED may be CANCELLED.
    """
    __tablename__ = "settlements"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    settlement_date = Column(Date, nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey('settlement_batches.id'), nullable=False, index=True)
    
    # Payee
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    driver_name = Column(String(200), nullable=True)
    driver_phone = Column(String(30), nullable=True)
    payout_number = Column(String(30), nullable=True)  # Mobile-money account
    
    # Financials
    gross_earnings = Column(Numeric(12, 2), nullable=False)  # sum of driver_amount
    platform_fee = Column(Numeric(12, 2), nullable=False)
    payout_amount = Column(Numeric(12, 2), nullable=False)
    booking_ids = Column(JSON, nullable=False)
    booking_count = Column(Integer, nullable=False)
    
    # Status
    status = Column(Enum(SettlementStatus), default=SettlementStatus.PENDING, nullable=False, index=True)
    
    # Approval Flow
    approved_by_admin_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    
    # Payment Flow
    payment_reference = Column(String(100), nullable=True)
    payment_error = Column(Text, nullable=True)
    payment_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    attempt_count = Column(Integer, default=0, nullable=False)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('settlement_date', 'driver_id', name='uq_settlements_date_driver'),
    )
    
    def __repr__(self):
        return f"<Settlement(id={self.id}, driver={self.driver_id}, status='{self.status.value}', payout={self.payout_amount})>"
