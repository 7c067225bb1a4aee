"""
Audit Log Database Model.

Tracks money movements and admin actions for reconciliation and security monitoring.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from ridepool.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.
    
    Events logged include:
    - LOGIN_SUCCESS / LOGIN_FAILED
    - BOOKING_CONFIRMED / BOOKING_CANCELLED / TRIP_CANCELLED
    - QR_PAYMENT_REDEEMED / TOP_UP_RECORDED
    - SETTLEMENT_BATCH_GENERATED / SETTLEMENT_APPROVED / SETTLEMENT_COMPLETED / SETTLEMENT_FAILED
    - ADMIN_PIN_FAILED
    """
    __tablename__ = "audit_logs"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)
    
    # What action was performed
    action = Column(String(100), nullable=False, index=True)
    
    # Which entity the action touched
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, index=True, nullable=True)
    
    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)
    
    # IP address for login tracking
    ip_address = Column(String(50), nullable=True)
    
    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    
    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, entity={self.entity_type}:{self.entity_id})>"
