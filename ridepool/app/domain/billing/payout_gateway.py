"""
Payout gateway client.

Sends settlement payouts to the external mobile-money rail over HTTP.
Calls go through the shared circuit breaker so a failing gateway is not
hammered by every approval.
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from ridepool.app.core.config import settings
from ridepool.app.core.exceptions import GatewayFailureError
from ridepool.app.core.reliability import CircuitBreaker, CircuitOpenError, payout_circuit_breaker

logger = logging.getLogger("ridepool.gateway")


class PayoutGateway:

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        breaker: CircuitBreaker = payout_circuit_breaker,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url or settings.payout_gateway_url
        self.api_key = api_key if api_key is not None else settings.payout_gateway_api_key
        self.timeout = timeout or settings.payout_gateway_timeout_seconds
        self.breaker = breaker
        self.transport = transport

    async def _post(self, payload: dict) -> dict:
        headers = {"Idempotency-Key": payload["reference"]}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.base_url, json=payload, headers=headers)
            response.raise_for_status()
            try:
                return response.json()
            except ValueError:
                # A 2xx reply means the rail took the payout; only the receipt is unreadable
                logger.warning("Payout %s accepted with an unreadable body", payload["reference"])
                return {}

    async def send_payout(
        self,
        reference: str,
        amount: Decimal,
        payout_number: Optional[str],
        driver_id: int
    ) -> str:
        """
        Request a payout and return the gateway's transaction id.

        The settlement reference doubles as the idempotency key, so a retried
        request for the same attempt is not paid twice by the gateway.

        Raises:
            GatewayFailureError: Circuit open, transport error, non-2xx reply
        """
        if not payout_number:
            raise GatewayFailureError(f"Driver {driver_id} has no payout number", reference)

        payload = {
            "reference": reference,
            "amount": str(amount),
            "currency": "USD",
            "recipient": payout_number,
            "metadata": {"driver_id": driver_id},
        }

        try:
            body = await self.breaker.call(self._post, payload)
        except CircuitOpenError:
            logger.warning("Payout %s rejected: gateway circuit is open", reference)
            raise GatewayFailureError("Payout gateway temporarily unavailable", reference)
        except httpx.HTTPStatusError as e:
            logger.error("Payout %s failed with HTTP %s", reference, e.response.status_code)
            raise GatewayFailureError(
                f"Payout gateway returned HTTP {e.response.status_code}", reference
            )
        except httpx.HTTPError as e:
            logger.error("Payout %s failed: %s", reference, e)
            raise GatewayFailureError(f"Payout gateway unreachable: {e}", reference)

        if not isinstance(body, dict):
            body = {}
        transaction_id = body.get("transaction_id") or body.get("id") or reference
        logger.info("Payout %s of %s accepted by gateway as %s", reference, amount, transaction_id)
        return str(transaction_id)


def get_payout_gateway() -> PayoutGateway:
    """FastAPI dependency; overridden in tests."""
    return PayoutGateway()
