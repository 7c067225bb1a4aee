"""
Wallet ledger and settlement enumerations.
"""

import enum


class TransactionType(str, enum.Enum):
    """Ledger entry type enumeration."""
    RIDE_PAYMENT = "RIDE_PAYMENT"  # Rider debit on QR redemption
    RIDE_EARNINGS = "RIDE_EARNINGS"  # Driver credit on QR redemption
    PLATFORM_FEE = "PLATFORM_FEE"  # Platform credit on QR redemption
    TOP_UP = "TOP_UP"  # Gateway-confirmed deposit
    PAYOUT = "PAYOUT"  # Settlement paid out to the driver
    SETTLEMENT_FEE = "SETTLEMENT_FEE"  # Settlement-level platform fee


class TransactionStatus(str, enum.Enum):
    """Ledger entry status enumeration."""
    COMPLETED = "COMPLETED"  # Applied to the balance
    FAILED = "FAILED"  # Recorded for visibility, balance untouched


class SettlementStatus(str, enum.Enum):
    """Settlement status enumeration."""
    PENDING = "PENDING"  # Created, waiting for admin approval
    APPROVED = "APPROVED"  # Approved by admin
    PROCESSING = "PROCESSING"  # Sent to payout gateway
    COMPLETED = "COMPLETED"  # Gateway confirmed payment
    FAILED = "FAILED"  # Gateway rejected payment, retryable
    CANCELLED = "CANCELLED"  # Withdrawn by admin


class SettlementBatchStatus(str, enum.Enum):
    """Settlement batch status enumeration."""
    PENDING = "PENDING"  # Has settlements awaiting payout
    COMPLETED = "COMPLETED"  # Nothing left to pay (or empty batch)


class SettlementAction(str, enum.Enum):
    """Admin actions accepted by the settlement approval endpoint."""
    APPROVE_AND_PROCESS = "approve_and_process"
    CANCEL = "cancel"
