"""Razorpay REST client.

Amounts cross the wire in the smallest currency unit (paise for INR) and are
converted to and from ``Decimal`` major units here so that the rest of the
code never sees integers of paise.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog

from internhub.core.exceptions import ExternalServiceError


if TYPE_CHECKING:
    from internhub.config.settings import Settings


logger = structlog.get_logger(__name__)

MINOR_UNITS = Decimal(100)

CAPTURED = "captured"


def to_minor_units(amount: Decimal) -> int:
    return int((amount * MINOR_UNITS).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None) -> Decimal:
    return Decimal(amount or 0) / MINOR_UNITS


@dataclass
class GatewayOrder:
    order_id: str
    amount: Decimal
    currency: str
    receipt: str | None = None


@dataclass
class GatewayPayment:
    payment_id: str
    order_id: str | None
    status: str
    method: str | None = None
    amount: Decimal = Decimal(0)
    error_description: str | None = None

    @property
    def is_captured(self) -> bool:
        return self.status == CAPTURED

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "GatewayPayment":
        return cls(
            payment_id=data.get("id", ""),
            order_id=data.get("order_id"),
            status=data.get("status", ""),
            method=data.get("method"),
            amount=from_minor_units(data.get("amount")),
            error_description=data.get("error_description"),
        )


@dataclass
class GatewayRefund:
    refund_id: str
    payment_id: str
    amount: Decimal
    status: str
    notes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "GatewayRefund":
        notes = data.get("notes")
        return cls(
            refund_id=data.get("id", ""),
            payment_id=data.get("payment_id", ""),
            amount=from_minor_units(data.get("amount")),
            status=data.get("status", ""),
            notes=notes if isinstance(notes, dict) else {},
        )


class PaymentGateway(Protocol):
    """Operations the settlement service needs from a gateway."""

    async def create_order(
        self, amount: Decimal, currency: str, receipt: str
    ) -> GatewayOrder: ...

    async def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    async def refund(
        self, payment_id: str, amount: Decimal, notes: dict[str, str] | None = None
    ) -> GatewayRefund: ...


class RazorpayGateway:
    """Async Razorpay client over httpx with HTTP basic auth."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RazorpayGateway":
        return cls(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
            timeout=settings.razorpay_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            logger.error("gateway_timeout", path=path, error=str(e))
            raise ExternalServiceError("Payment gateway timeout", "gateway_timeout") from e
        except httpx.RequestError as e:
            logger.error("gateway_request_error", path=path, error=str(e))
            raise ExternalServiceError(
                "Payment gateway unreachable", "gateway_unavailable"
            ) from e

        if response.status_code >= httpx.codes.BAD_REQUEST:
            logger.error(
                "gateway_request_failed",
                path=path,
                status_code=response.status_code,
                response_text=response.text[:500],
            )
            # 4xx means the gateway rejected the request itself
            raise ExternalServiceError(
                f"Payment gateway error: {response.status_code}",
                "gateway_error",
                retryable=response.status_code >= httpx.codes.INTERNAL_SERVER_ERROR,
            )

        return response.json()

    async def create_order(
        self, amount: Decimal, currency: str, receipt: str
    ) -> GatewayOrder:
        data = await self._request(
            "POST",
            "/orders",
            json={
                "amount": to_minor_units(amount),
                "currency": currency,
                "receipt": receipt,
                "payment_capture": 1,
            },
        )
        logger.info("gateway_order_created", order_id=data.get("id"), receipt=receipt)
        return GatewayOrder(
            order_id=data["id"],
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = await self._request("GET", f"/payments/{payment_id}")
        return GatewayPayment.from_payload(data)

    async def refund(
        self, payment_id: str, amount: Decimal, notes: dict[str, str] | None = None
    ) -> GatewayRefund:
        data = await self._request(
            "POST",
            f"/payments/{payment_id}/refund",
            json={"amount": to_minor_units(amount), "notes": notes or {}},
        )
        logger.info(
            "gateway_refund_created",
            payment_id=payment_id,
            refund_id=data.get("id"),
        )
        return GatewayRefund.from_payload(data)
