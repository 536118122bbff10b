"""HTTP client for the hosted payment page gateway.

Only two calls are needed: open a session for an order and ask for the
status of an existing session. Transport errors, timeouts and non-2xx
responses all surface as ExternalGatewayError.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Protocol

import httpx

from app.core.config import settings
from app.core.errors import ExternalGatewayError
from app.core.metrics import gateway_duration

logger = logging.getLogger(__name__)

# Gateway order states -> our payment_status vocabulary. Anything missing here
# (refunded, credited, unknown) is passed through and rejected on reconcile.
GATEWAY_STATUS_MAP = {
    "new": "pending",
    "prepared": "pending",
    "authorized": "authorized",
    "charged": "charged",
    "reversed": "failed",
    "rejected": "failed",
    "fraud": "failed",
    "declined": "failed",
    "chargedback": "failed",
    "error": "failed",
}


def map_gateway_status(raw_status: Optional[str]) -> str:
    if not raw_status:
        return "unknown"
    raw_status = raw_status.lower()
    return GATEWAY_STATUS_MAP.get(raw_status, raw_status)


@dataclass
class GatewaySession:
    session_id: str
    payment_url: str


@dataclass
class GatewayPaymentStatus:
    payment_status: str
    raw_status: str
    amount_charged: Decimal = Decimal("0.00")
    amount_refunded: Decimal = Decimal("0.00")
    details: dict = field(default_factory=dict)


class PaymentGatewayClient(Protocol):
    async def create_session(
        self,
        *,
        amount: Decimal,
        currency: str,
        merchant_order_id: str,
        return_url: str,
        customer: dict,
    ) -> GatewaySession: ...

    async def check_status(self, session_id: str) -> GatewayPaymentStatus: ...


class PaymentGateway:

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        timeout: float = 15.0,
        mock: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self.mock = mock
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        # one connection-level retry; business retries are counted by payment_attempts
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.api_key, self.api_secret),
            timeout=self.timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def create_session(
        self,
        *,
        amount: Decimal,
        currency: str,
        merchant_order_id: str,
        return_url: str,
        customer: dict,
    ) -> GatewaySession:
        if self.mock:
            session_id = f"mock_{merchant_order_id}_{uuid.uuid4().hex[:8]}"
            logger.info(f"Mock gateway session {session_id} for order {merchant_order_id}")
            return GatewaySession(
                session_id=session_id,
                payment_url=f"{return_url}?mock_session={session_id}",
            )

        payload = {
            "amount": str(amount),
            "currency": currency,
            "merchant_order_id": merchant_order_id,
            "description": f"Order #{merchant_order_id}",
            "client": customer,
            "options": {"return_url": return_url, "language": "en"},
        }

        start_time = time.time()
        try:
            async with self._client() as client:
                response = await client.post("/orders/create", json=payload)
        except httpx.HTTPError as e:
            gateway_duration.labels(operation="create_session").observe(time.time() - start_time)
            logger.error(f"Gateway unreachable creating session for order {merchant_order_id}: {e}")
            raise ExternalGatewayError("Payment gateway unavailable") from e
        gateway_duration.labels(operation="create_session").observe(time.time() - start_time)

        if not response.is_success:
            message = _failure_message(response)
            logger.error(
                f"Gateway rejected session for order {merchant_order_id}: "
                f"status={response.status_code} message={message}"
            )
            raise ExternalGatewayError(
                f"Payment gateway error: {message}",
                details={"status_code": response.status_code},
            )

        data = _json_or_empty(response)
        orders = data.get("orders") or [{}]
        session_id = orders[0].get("id")
        payment_url = response.headers.get("Location") or orders[0].get("payment_url")
        if not session_id or not payment_url:
            logger.error(f"Gateway response for order {merchant_order_id} lacks session id or payment url")
            raise ExternalGatewayError("Payment gateway returned an incomplete session")

        logger.info(f"Gateway session {session_id} created for order {merchant_order_id}")
        return GatewaySession(session_id=str(session_id), payment_url=payment_url)

    async def check_status(self, session_id: str) -> GatewayPaymentStatus:
        if self.mock:
            return GatewayPaymentStatus(payment_status="charged", raw_status="charged")

        start_time = time.time()
        try:
            async with self._client() as client:
                response = await client.get(f"/orders/{session_id}", params={"expand": "operations"})
        except httpx.HTTPError as e:
            gateway_duration.labels(operation="check_status").observe(time.time() - start_time)
            logger.error(f"Gateway unreachable checking session {session_id}: {e}")
            raise ExternalGatewayError("Payment gateway unavailable") from e
        gateway_duration.labels(operation="check_status").observe(time.time() - start_time)

        if not response.is_success:
            message = _failure_message(response)
            logger.error(f"Gateway status check failed for {session_id}: status={response.status_code}")
            raise ExternalGatewayError(
                f"Payment gateway error: {message}",
                details={"status_code": response.status_code},
            )

        orders = _json_or_empty(response).get("orders") or []
        if not orders:
            raise ExternalGatewayError(f"Gateway has no session {session_id}")
        order = orders[0]
        raw_status = order.get("status") or "unknown"
        return GatewayPaymentStatus(
            payment_status=map_gateway_status(raw_status),
            raw_status=raw_status,
            amount_charged=Decimal(str(order.get("amount_charged") or "0.00")),
            amount_refunded=Decimal(str(order.get("amount_refunded") or "0.00")),
            details=order,
        )


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _failure_message(response: httpx.Response) -> str:
    return _json_or_empty(response).get("failure_message") or f"HTTP {response.status_code}"


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway(
        base_url=settings.GATEWAY_BASE_URL,
        api_key=settings.GATEWAY_API_KEY,
        api_secret=settings.GATEWAY_API_SECRET,
        timeout=settings.GATEWAY_TIMEOUT,
        mock=settings.GATEWAY_MOCK,
    )
