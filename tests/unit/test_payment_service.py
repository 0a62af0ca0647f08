"""
Unit tests for PaymentService and MercadoPagoPixGateway.

Tests validate:
- Balance debit → Immediate outcome, insufficient balance declined
- PIX charge request shape (idempotency key, payload) → Deferred outcome
- Gateway refusals and unexpected responses
- Status mapping for payment lookups
"""
import json
from decimal import Decimal

import httpx
import pytest

from vacuum_backend.exceptions import PaymentDeclinedError, PaymentGatewayError, ValidationError
from vacuum_backend.models.enums import PaymentMethod, PaymentStatus
from vacuum_backend.models.user import User
from vacuum_backend.repositories.user_repository import UserRepository
from vacuum_backend.services.payment_service import (
    PaymentService,
    MercadoPagoPixGateway,
    Immediate,
    Deferred,
    PaymentState
)


def make_gateway(handler, token="TEST-token"):
    return MercadoPagoPixGateway(
        api_url="https://mp.test",
        access_token=token,
        transport=httpx.MockTransport(handler)
    )


@pytest.fixture
def users():
    return UserRepository()


@pytest.fixture
def user(users):
    return users.add(User(email="cliente@example.com", account_balance=Decimal("20.00")))


class TestBalance:

    @pytest.mark.asyncio
    async def test_balance_debit_is_immediate(self, users, user):
        service = PaymentService(users, make_gateway(lambda request: httpx.Response(500)))

        outcome = await service.charge(user, Decimal("12.50"), PaymentMethod.BALANCE, "Vacuum VAC-001 - 10 min")

        assert isinstance(outcome, Immediate)
        assert outcome.transaction_id.startswith("bal-")
        assert outcome.amount == Decimal("12.50")
        assert users.get(user.id).account_balance == Decimal("7.50")

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, users, user):
        service = PaymentService(users, make_gateway(lambda request: httpx.Response(500)))

        with pytest.raises(PaymentDeclinedError) as exc_info:
            await service.charge(user, Decimal("20.01"), PaymentMethod.BALANCE, "x")

        assert exc_info.value.data["reason"] == "insufficient balance"
        assert users.get(user.id).account_balance == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, users, user):
        service = PaymentService(users, make_gateway(lambda request: httpx.Response(500)))

        with pytest.raises(ValidationError):
            await service.charge(user, Decimal("0"), PaymentMethod.BALANCE, "x")


class TestPix:

    @pytest.mark.asyncio
    async def test_pix_charge_is_deferred(self, users, user):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                201,
                json={
                    "id": 1234567890,
                    "status": "pending",
                    "point_of_interaction": {
                        "transaction_data": {"qr_code": "00020126PIX", "qr_code_base64": "iVBORw0KGgo="}
                    }
                }
            )

        service = PaymentService(users, make_gateway(handler))

        outcome = await service.charge(user, Decimal("10.00"), PaymentMethod.PIX, "Vacuum VAC-001 - 10 min")

        assert isinstance(outcome, Deferred)
        assert outcome.payment_id == "1234567890"
        assert outcome.qr_code == "00020126PIX"
        assert outcome.qr_code_base64 == "iVBORw0KGgo="
        assert captured["url"] == "https://mp.test/v1/payments"
        assert captured["headers"]["Authorization"] == "Bearer TEST-token"
        assert captured["headers"]["X-Idempotency-Key"]
        assert captured["body"]["payment_method_id"] == "pix"
        assert captured["body"]["transaction_amount"] == 10.0
        assert captured["body"]["payer"]["email"] == "cliente@example.com"
        # Balance untouched for deferred payments
        assert users.get(user.id).account_balance == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_pix_refused(self, users, user):
        service = PaymentService(users, make_gateway(lambda request: httpx.Response(400, json={"message": "bad"})))

        with pytest.raises(PaymentDeclinedError):
            await service.charge(user, Decimal("10.00"), PaymentMethod.PIX, "x")

    @pytest.mark.asyncio
    async def test_pix_gateway_error(self, users, user):
        service = PaymentService(users, make_gateway(lambda request: httpx.Response(503, text="maintenance")))

        with pytest.raises(PaymentGatewayError) as exc_info:
            await service.charge(user, Decimal("10.00"), PaymentMethod.PIX, "x")

        assert exc_info.value.data["details"] == "maintenance"

    @pytest.mark.asyncio
    async def test_pix_not_configured(self, users, user):
        service = PaymentService(users, make_gateway(lambda request: httpx.Response(201), token=""))

        with pytest.raises(PaymentGatewayError):
            await service.charge(user, Decimal("10.00"), PaymentMethod.PIX, "x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("remote,expected", [
        ("approved", PaymentStatus.APPROVED),
        ("in_process", PaymentStatus.PENDING),
        ("rejected", PaymentStatus.REJECTED),
        ("refunded", PaymentStatus.CANCELLED),
        ("something_new", PaymentStatus.PENDING),
    ])
    async def test_get_payment_status_mapping(self, remote, expected):
        gateway = make_gateway(lambda request: httpx.Response(200, json={"id": 1, "status": remote}))

        assert (await gateway.get_payment("1")).status == expected

    @pytest.mark.asyncio
    async def test_lookup_reads_status_and_amount_from_gateway(self, users):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"id": 42, "status": "approved", "transaction_amount": 12.5})

        service = PaymentService(users, make_gateway(handler))

        state = await service.lookup("42")

        assert state == PaymentState(payment_id="42", status=PaymentStatus.APPROVED, amount=Decimal("12.5"))
        assert seen == [("GET", "/v1/payments/42")]

    @pytest.mark.asyncio
    async def test_lookup_gateway_error(self, users):
        service = PaymentService(users, make_gateway(lambda request: httpx.Response(404, json={"message": "not found"})))

        with pytest.raises(PaymentGatewayError):
            await service.lookup("404")
