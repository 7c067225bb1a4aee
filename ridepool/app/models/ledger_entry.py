"""
Ledger Entry database model.

Immutable wallet transaction records.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Numeric, UniqueConstraint
from sqlalchemy.sql import func
from ridepool.app.db.session import Base
from ridepool.app.models.billing_enums import TransactionType, TransactionStatus


class LedgerEntry(Base):
    """
    Ledger Entry (wallet transaction) model.
    
    Immutable record of one balance change. amount is signed: debits are
    negative, credits positive. All legs of one payment event share the same
    reference, and (reference, wallet_id, type) is unique so a replayed
    posting cannot apply twice.
    NO updates or deletions allowed.
    """
    __tablename__ = "wallet_transactions"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    wallet_id = Column(Integer, ForeignKey('wallets.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    
    # Entry details
    type = Column(Enum(TransactionType), nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False)
    reference = Column(String(100), nullable=False, index=True)
    description = Column(String(255), nullable=True)
    
    # Financials
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=True)
    
    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    __table_args__ = (
        UniqueConstraint('reference', 'wallet_id', 'type', name='uq_wallet_transactions_reference_leg'),
    )
    
    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.type.value}', amount={self.amount}, ref='{self.reference}')>"
