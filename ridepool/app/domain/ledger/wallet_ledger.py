"""
Wallet Ledger (Domain Logic).

The only code allowed to change Wallet.balance. Every balance change is
paired with exactly one immutable LedgerEntry, and all legs of one payment
event share a reference that makes the posting idempotent.

A posting runs inside a SAVEPOINT of the caller's transaction: if any leg
fails (insufficient funds, constraint violation) none of its legs remain.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.config import settings
from ridepool.app.core.exceptions import InsufficientFundsError, ValidationFailedError
from ridepool.app.core.security import get_password_hash
from ridepool.app.domain.pricing.fare_calculator import money, ZERO
from ridepool.app.models.billing_enums import TransactionType, TransactionStatus
from ridepool.app.models.enums import UserRole
from ridepool.app.models.ledger_entry import LedgerEntry
from ridepool.app.models.user import User
from ridepool.app.models.wallet import Wallet

logger = logging.getLogger("ridepool.ledger")


@dataclass(frozen=True)
class LedgerLeg:
    """One side of a posting. amount is signed: negative debits, positive credits."""
    user_id: int
    amount: Decimal
    type: TransactionType
    description: Optional[str] = None


@dataclass
class PostingResult:
    reference: str
    entries: List[LedgerEntry] = field(default_factory=list)
    applied: bool = True  # False when the reference had already been posted


class WalletLedger:

    @staticmethod
    async def get_wallet(db: AsyncSession, user_id: int) -> Optional[Wallet]:
        result = await db.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_wallet(db: AsyncSession, user_id: int) -> Wallet:
        """Return the user's wallet, creating an empty one on first use."""
        wallet = await WalletLedger.get_wallet(db, user_id)
        if wallet:
            return wallet

        try:
            async with db.begin_nested():
                wallet = Wallet(user_id=user_id, balance=ZERO, version=0)
                db.add(wallet)
        except IntegrityError:
            # Created concurrently by another request
            wallet = await WalletLedger.get_wallet(db, user_id)
            if wallet is None:
                raise
        return wallet

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: int) -> Decimal:
        """Current balance read straight from the row (0 if no wallet yet)."""
        result = await db.execute(select(Wallet.balance).where(Wallet.user_id == user_id))
        balance = result.scalar_one_or_none()
        return money(balance)

    @staticmethod
    async def get_platform_user_id(db: AsyncSession) -> int:
        """
        Resolve (or lazily create) the platform account that collects fee legs.

        The account is inactive so it can never be used to log in.
        """
        result = await db.execute(
            select(User.id).where(User.username == settings.platform_account_username)
        )
        user_id = result.scalar_one_or_none()
        if user_id:
            return user_id

        try:
            async with db.begin_nested():
                platform = User(
                    email=settings.platform_account_email,
                    username=settings.platform_account_username,
                    full_name="Ridepool Platform",
                    hashed_password=get_password_hash(settings.secret_key),
                    role=UserRole.ADMIN,
                    is_active=False,
                    is_superuser=False
                )
                db.add(platform)
        except IntegrityError:
            result = await db.execute(
                select(User.id).where(User.username == settings.platform_account_username)
            )
            return result.scalar_one()
        return platform.id

    @staticmethod
    async def find_posting(db: AsyncSession, reference: str) -> List[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.reference == reference)
            .order_by(LedgerEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _apply_leg(db: AsyncSession, wallet: Wallet, leg: LedgerLeg) -> Decimal:
        """Apply one leg to its wallet row, returning the balance after."""
        amount = money(leg.amount)

        # Compare and store whole cents; stores without a native decimal
        # type (SQLite) otherwise drift a hair below the exact amount
        cents = Wallet.balance.type
        stmt = update(Wallet).where(Wallet.id == wallet.id)
        if amount < 0:
            # Guarded debit: never lets the balance go negative
            stmt = stmt.where(func.round(Wallet.balance, 2, type_=cents) >= -amount)
        stmt = stmt.values(
            balance=func.round(Wallet.balance + amount, 2, type_=cents),
            version=Wallet.version + 1
        ).execution_options(synchronize_session=False)

        result = await db.execute(stmt)
        balance_after = await WalletLedger.get_balance(db, leg.user_id)

        if result.rowcount != 1:
            raise InsufficientFundsError(leg.user_id, balance_after, -amount)

        return balance_after

    @staticmethod
    async def post_entries(
        db: AsyncSession,
        reference: str,
        legs: Iterable[LedgerLeg]
    ) -> PostingResult:
        """
        Atomically apply a set of ledger legs.

        Flow:
        1. Idempotency check: an existing posting with this reference is returned untouched
        2. Ensure every participating wallet exists
        3. Inside a SAVEPOINT: debits first, then credits, one LedgerEntry per leg
        4. A concurrent identical posting that wins the unique constraint turns
           this call into a no-op as well

        Args:
            db: Database session (commit is left to the caller)
            reference: Unique key of the logical payment event
            legs: Signed legs to apply

        Returns:
            PostingResult (applied=False if the reference was already posted)

        Raises:
            InsufficientFundsError: A debit leg exceeds its wallet balance
        """
        legs = list(legs)
        if not legs:
            raise ValidationFailedError("A posting needs at least one leg", field="legs")
        if any(money(leg.amount) == ZERO for leg in legs):
            raise ValidationFailedError("Ledger legs must move a non-zero amount", field="amount")

        existing = await WalletLedger.find_posting(db, reference)
        if existing:
            logger.info("Posting %s already applied, skipping", reference)
            return PostingResult(reference=reference, entries=existing, applied=False)

        wallets = {}
        for leg in legs:
            if leg.user_id not in wallets:
                wallets[leg.user_id] = await WalletLedger.get_or_create_wallet(db, leg.user_id)

        # Debits before credits, then by wallet id for a stable row-lock order
        ordered = sorted(legs, key=lambda leg: (money(leg.amount) > 0, wallets[leg.user_id].id))

        entries = []
        try:
            async with db.begin_nested():
                for leg in ordered:
                    wallet = wallets[leg.user_id]
                    balance_after = await WalletLedger._apply_leg(db, wallet, leg)
                    entry = LedgerEntry(
                        wallet_id=wallet.id,
                        user_id=leg.user_id,
                        type=leg.type,
                        status=TransactionStatus.COMPLETED,
                        reference=reference,
                        description=leg.description,
                        amount=money(leg.amount),
                        balance_after=balance_after
                    )
                    db.add(entry)
                    entries.append(entry)
                await db.flush()
        except IntegrityError:
            existing = await WalletLedger.find_posting(db, reference)
            if existing:
                logger.info("Posting %s applied concurrently, treating as no-op", reference)
                return PostingResult(reference=reference, entries=existing, applied=False)
            raise

        logger.info(
            "Posted %s: %s",
            reference,
            ", ".join(f"user {e.user_id} {e.type.value} {e.amount}" for e in entries)
        )
        return PostingResult(reference=reference, entries=entries, applied=True)

    @staticmethod
    async def transfer(
        db: AsyncSession,
        from_user_id: int,
        to_user_id: int,
        amount,
        type: TransactionType,
        reference: str,
        credit_type: Optional[TransactionType] = None,
        description: Optional[str] = None
    ) -> PostingResult:
        """
        Move `amount` from one wallet to another.

        Debit and credit carry the same reference so the pair can be
        reconciled; retrying with the same reference is a no-op.
        """
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationFailedError("Transfer amount must be positive", field="amount")
        if from_user_id == to_user_id:
            raise ValidationFailedError("Cannot transfer to the same wallet", field="to_user_id")

        return await WalletLedger.post_entries(db, reference, [
            LedgerLeg(from_user_id, -amount, type, description),
            LedgerLeg(to_user_id, amount, credit_type or type, description),
        ])

    @staticmethod
    async def record_top_up(
        db: AsyncSession,
        user_id: int,
        amount,
        gateway_reference: str,
        succeeded: bool,
        failure_reason: Optional[str] = None
    ) -> PostingResult:
        """
        Record a deposit once the payment gateway has reported its outcome.

        Successful top-ups credit the wallet; failed ones are journaled as
        FAILED entries that leave the balance untouched.
        """
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationFailedError("Top-up amount must be positive", field="amount")
        reference = f"topup:{gateway_reference}"

        if succeeded:
            return await WalletLedger.post_entries(db, reference, [
                LedgerLeg(user_id, amount, TransactionType.TOP_UP, "Wallet top-up")
            ])

        existing = await WalletLedger.find_posting(db, reference)
        if existing:
            return PostingResult(reference=reference, entries=existing, applied=False)

        wallet = await WalletLedger.get_or_create_wallet(db, user_id)
        entry = LedgerEntry(
            wallet_id=wallet.id,
            user_id=user_id,
            type=TransactionType.TOP_UP,
            status=TransactionStatus.FAILED,
            reference=reference,
            description=(failure_reason or "Top-up failed")[:255],
            amount=amount,
            balance_after=await WalletLedger.get_balance(db, user_id)
        )
        db.add(entry)
        await db.flush()
        logger.warning("Top-up %s for user %s failed: %s", gateway_reference, user_id, failure_reason)
        return PostingResult(reference=reference, entries=[entry], applied=False)

    @staticmethod
    async def list_transactions(
        db: AsyncSession,
        user_id: int,
        limit: int = 50,
        offset: int = 0
    ) -> List[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def replay_balance(db: AsyncSession, user_id: int) -> Decimal:
        """Recompute a balance from the ledger (sum of COMPLETED signed amounts)."""
        result = await db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.status == TransactionStatus.COMPLETED
            )
        )
        return money(result.scalar())
