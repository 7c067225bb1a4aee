"""
Fare Calculator.

All money arithmetic for bookings and QR payments. Amounts are Decimals
rounded half-up to cents, so a figure is the same no matter which order
the fees are derived in.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ridepool.app.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    """Coerce a number (or None) to a cent-rounded Decimal."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BookingQuote:
    """Price of a booking request, before any platform fees."""
    base_amount: Decimal
    pickup_fee: Decimal
    dropoff_fee: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class PaymentSplit:
    """How a booking total is split between rider, driver and platform at redemption."""
    total_amount: Decimal
    rider_fee: Decimal
    driver_fee: Decimal
    rider_charge: Decimal
    driver_receives: Decimal

    @property
    def platform_fee(self) -> Decimal:
        return self.rider_charge - self.driver_receives


class FareCalculator:
    
    @staticmethod
    def quote(
        base_fare,
        seats: int,
        trip_pickup_fee=None,
        trip_dropoff_fee=None,
        custom_pickup: bool = False,
        custom_dropoff: bool = False
    ) -> BookingQuote:
        """
        Price a booking request.
        
        total = base_fare * seats + pickup_fee (custom pickup only)
                + dropoff_fee (custom dropoff only)
        """
        base_amount = money(money(base_fare) * seats)
        pickup_fee = money(trip_pickup_fee) if custom_pickup else ZERO
        dropoff_fee = money(trip_dropoff_fee) if custom_dropoff else ZERO
        return BookingQuote(
            base_amount=base_amount,
            pickup_fee=pickup_fee,
            dropoff_fee=dropoff_fee,
            total_amount=base_amount + pickup_fee + dropoff_fee
        )
    
    @staticmethod
    def rider_fee(total_amount, rate: Optional[Decimal] = None) -> Decimal:
        rate = settings.rider_fee_rate if rate is None else rate
        return money(money(total_amount) * rate)
    
    @staticmethod
    def driver_fee(total_amount, rate: Optional[Decimal] = None) -> Decimal:
        rate = settings.driver_fee_rate if rate is None else rate
        return money(money(total_amount) * rate)
    
    @staticmethod
    def required_rider_balance(total_amount) -> Decimal:
        """Balance a rider must hold to request a booking (total plus rider fee)."""
        return money(total_amount) + FareCalculator.rider_fee(total_amount)
    
    @staticmethod
    def split(total_amount) -> PaymentSplit:
        """
        Split a booking total at QR redemption.
        
        Example: total 20.00 -> rider_fee 0.50, driver_fee 1.50,
        rider_charge 20.50, driver_receives 18.50.
        """
        total = money(total_amount)
        rider_fee = FareCalculator.rider_fee(total)
        driver_fee = FareCalculator.driver_fee(total)
        return PaymentSplit(
            total_amount=total,
            rider_fee=rider_fee,
            driver_fee=driver_fee,
            rider_charge=total + rider_fee,
            driver_receives=total - driver_fee
        )
    
    @staticmethod
    def settlement_fee(gross_earnings) -> Decimal:
        return money(money(gross_earnings) * settings.settlement_fee_rate)
