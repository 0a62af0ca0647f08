"""
Payment coordination.

charge() returns a tagged outcome:
- Immediate: settled now (account balance debit)
- Deferred: settlement arrives later through the payment webhook (PIX);
  lookup() reads the settled state back from the gateway

The session orchestrator dispatches on the outcome type in one place.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from vacuum_backend.config import config
from vacuum_backend.exceptions import PaymentGatewayError, PaymentDeclinedError, ValidationError
from vacuum_backend.models.enums import PaymentMethod, PaymentStatus
from vacuum_backend.models.user import User
from vacuum_backend.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Immediate:
    transaction_id: str
    amount: Decimal


@dataclass(frozen=True)
class Deferred:
    payment_id: str
    amount: Decimal
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None


PaymentOutcome = Union[Immediate, Deferred]


@dataclass(frozen=True)
class PaymentState:
    """The gateway's own record of a deferred payment."""
    payment_id: str
    status: PaymentStatus
    amount: Decimal

# Mercado Pago payment statuses → ours
MERCADOPAGO_STATUS_MAP = {
    "approved": PaymentStatus.APPROVED,
    "authorized": PaymentStatus.PENDING,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "in_mediation": PaymentStatus.PENDING,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.CANCELLED,
    "charged_back": PaymentStatus.CANCELLED,
}


class MercadoPagoPixGateway:
    """
    Creates PIX charges through the Mercado Pago payments API.

    Attributes:
        api_url: API base URL
        access_token: Seller access token (empty = PIX disabled)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = (api_url if api_url is not None else config.MERCADOPAGO_API_URL).rstrip("/")
        self.access_token = access_token if access_token is not None else config.MERCADOPAGO_ACCESS_TOKEN
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self, idempotency_key: Optional[str] = None) -> dict:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            return await client.request(method, f"{self.api_url}{path}", **kwargs)

    async def create_charge(
        self,
        amount: Decimal,
        description: str,
        payer_email: str,
        idempotency_key: str
    ) -> Deferred:
        """
        Create a PIX charge.

        The idempotency key makes a retried request return the same charge.

        Raises:
            PaymentGatewayError: Not configured, unreachable or unexpected response
            PaymentDeclinedError: Charge refused by the gateway
        """
        if not self.is_configured:
            raise PaymentGatewayError("PIX payments are not configured")

        payload = {
            "transaction_amount": float(amount),
            "description": description,
            "payment_method_id": "pix",
            "payer": {"email": payer_email}
        }

        try:
            response = await self._request(
                "POST", "/v1/payments", json=payload, headers=self._headers(idempotency_key)
            )
        except httpx.HTTPError as e:
            raise PaymentGatewayError("Mercado Pago unreachable", details=str(e)) from e

        if response.status_code in (400, 402):
            raise PaymentDeclinedError(f"PIX charge refused ({response.status_code})", amount=str(amount))
        if response.status_code >= 300:
            raise PaymentGatewayError(
                f"unexpected status {response.status_code}", details=response.text[:200]
            )

        body = response.json()
        transaction_data = body.get("point_of_interaction", {}).get("transaction_data", {})
        deferred = Deferred(
            payment_id=str(body["id"]),
            amount=amount,
            qr_code=transaction_data.get("qr_code"),
            qr_code_base64=transaction_data.get("qr_code_base64")
        )
        logger.info(f"PIX charge created: {deferred.payment_id} ({amount})")
        return deferred

    async def get_payment(self, payment_id: str) -> PaymentState:
        """
        Read a payment back from Mercado Pago.

        Raises:
            PaymentGatewayError: Lookup failed
        """
        if not self.is_configured:
            raise PaymentGatewayError("PIX payments are not configured")

        try:
            response = await self._request("GET", f"/v1/payments/{payment_id}", headers=self._headers())
        except httpx.HTTPError as e:
            raise PaymentGatewayError("Mercado Pago unreachable", details=str(e)) from e

        if response.status_code >= 300:
            raise PaymentGatewayError(f"unexpected status {response.status_code}", details=response.text[:200])

        body = response.json()
        return PaymentState(
            payment_id=payment_id,
            status=MERCADOPAGO_STATUS_MAP.get(body.get("status"), PaymentStatus.PENDING),
            amount=Decimal(str(body.get("transaction_amount") or 0))
        )


class PaymentService:
    """
    Charges users upfront for a session.

    Attributes:
        user_repository: Accounts for balance debits
        pix_gateway: Deferred payment gateway
    """

    def __init__(self, user_repository: UserRepository, pix_gateway: MercadoPagoPixGateway):
        self.user_repository = user_repository
        self.pix_gateway = pix_gateway

    async def charge(
        self,
        user: User,
        amount: Decimal,
        method: PaymentMethod,
        description: str
    ) -> PaymentOutcome:
        """
        Charge amount with the chosen method.

        Args:
            user: Paying user
            amount: Session cost
            method: balance or pix
            description: Shown on the PIX charge

        Returns:
            Immediate for balance, Deferred for PIX

        Raises:
            PaymentDeclinedError: Insufficient balance / refused charge
            PaymentGatewayError: PIX gateway failure
        """
        if amount <= 0:
            raise ValidationError("Charge amount must be positive", "amount", str(amount))

        if method == PaymentMethod.BALANCE:
            self.user_repository.debit(user.id, amount)
            return Immediate(transaction_id=f"bal-{uuid.uuid4()}", amount=amount)

        if method == PaymentMethod.PIX:
            return await self.pix_gateway.create_charge(
                amount=amount,
                description=description,
                payer_email=user.email,
                idempotency_key=str(uuid.uuid4())
            )

        raise ValidationError(f"Unsupported payment method: {method}", "payment_method", str(method))

    async def lookup(self, payment_id: str) -> PaymentState:
        """
        Authoritative status and amount of a deferred payment.

        Raises:
            PaymentGatewayError: Gateway unreachable or not configured
        """
        return await self.pix_gateway.get_payment(payment_id)
