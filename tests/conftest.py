"""Shared fixtures: gateway settings, customer input and a fake Pagsmile API."""

import json

import httpx
import pytest

from cardpay.common.config import GatewaySettings
from cardpay.services.checkout.gateway import PagsmileClient
from cardpay.services.checkout.schemas import CreatePaymentInput, CustomerInfo


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        app_id="app_123",
        security_key="sec_456",
        public_key="pub_789",
        environment="sandbox",
        api_base_url="https://gateway.test",
    )


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(
        name="Maria Silva",
        email="maria@example.com",
        phone="11987654321",
        cpf="12345678901",
        zipCode="01310100",
        state="SP",
        city="São Paulo",
        address="Av. Paulista 1000",
    )


@pytest.fixture
def payment(customer: CustomerInfo) -> CreatePaymentInput:
    return CreatePaymentInput(amount="100.00", customer_info=customer, user_agent="pytest", ip_address="10.0.0.1")


class FakeGateway:
    """Records requests and answers from per-endpoint queues of JSON bodies."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, list[tuple[int, dict]]] = {}

    def queue(self, path: str, body: dict, status_code: int = 200) -> None:
        self.responses.setdefault(path, []).append((status_code, body))

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(req.content) for req in self.requests if req.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queued = self.responses.get(request.url.path) or [(404, {"msg": "not found"})]
        status_code, body = queued.pop(0) if len(queued) > 1 else queued[0]
        return httpx.Response(status_code, json=body)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def pagsmile_client(gateway_settings: GatewaySettings, fake_gateway: FakeGateway) -> PagsmileClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_gateway.handler))
    return PagsmileClient(gateway_settings, http_client=http_client)


def query_body(trade_no: str = "T1", status: str = "PROCESSING", **extra) -> dict:
    body = {
        "code": "10000",
        "msg": "Success",
        "trade_no": trade_no,
        "out_trade_no": "O1",
        "method": "CreditCard",
        "trade_status": status,
        "order_currency": "BRL",
        "order_amount": 100,
        "customer": {"identification": {"number": "12345678901", "type": "CPF"}, "email": "maria@example.com"},
        "create_time": "2024-01-01 10:00:00",
        "update_time": "2024-01-01 10:00:05",
    }
    body.update(extra)
    return body


@pytest.fixture
def make_query_body():
    return query_body
