"""
Wallet database model.

One prepaid balance per user.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Numeric, CheckConstraint
from sqlalchemy.sql import func
from ridepool.app.db.session import Base


class Wallet(Base):
    """
    Wallet model.
    
    balance is only written by the wallet ledger through conditional updates,
    and always equals the sum of the wallet's COMPLETED ledger entries.
    """
    __tablename__ = "wallets"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True, index=True)
    
    balance = Column(Numeric(12, 2), default=0, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
    )
    
    def __repr__(self):
        return f"<Wallet(id={self.id}, user_id={self.user_id}, balance={self.balance})>"
