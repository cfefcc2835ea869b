"""Order creation: payload builder and the `/trade/create` call."""

import re
import time
from datetime import datetime
from uuid import uuid4

import pydantic

from cardpay.common.config import GatewaySettings
from cardpay.common.errors import RemoteError
from cardpay.common.logging import logger, out_trade_no_ctx, trade_no_ctx
from cardpay.common.metrics import orders_created_total
from cardpay.services.checkout.gateway import (
    INVALID_RESPONSE_CODE,
    PagsmileClient,
    ensure_success,
    format_timestamp,
)
from cardpay.services.checkout.schemas import (
    Address,
    CreateOrderResponse,
    CreatePaymentInput,
    Customer,
    CustomerIdentification,
    DeviceInfo,
    OrderRequest,
)
from cardpay.services.checkout.validation import validate_payment_input


ORDER_SUBJECT = "Pagamento de Produto"
ORDER_CONTENT = "Pagamento via cartão de crédito"
ORDER_TIMEOUT_EXPRESS = "1d"
DEFAULT_STREET_NUMBER = "1"

_DIGITS = re.compile(r"[0-9]+")


def generate_out_trade_no() -> str:
    """Merchant order reference: millisecond prefix plus a random suffix."""

    return f"ORDER_{int(time.time() * 1000)}_{uuid4().hex[:12]}"


def extract_street_number(address: str) -> str:
    """First run of digits in a free-text address.

    Falls back to a placeholder when the address has no digits; the gateway
    requires the field even though the storefront does not collect it.
    """

    match = _DIGITS.search(address)
    return match.group(0) if match else DEFAULT_STREET_NUMBER


def build_order_request(
    payment: CreatePaymentInput,
    gateway: GatewaySettings,
    now: datetime | None = None,
) -> OrderRequest:
    """Map validated checkout input onto the gateway order payload."""

    info = payment.customer_info
    return OrderRequest(
        app_id=gateway.app_id,
        out_trade_no=generate_out_trade_no(),
        order_amount=payment.amount,
        subject=ORDER_SUBJECT,
        content=ORDER_CONTENT,
        timestamp=format_timestamp(now),
        notify_url=gateway.notify_url,
        return_url=gateway.return_url,
        timeout_express=ORDER_TIMEOUT_EXPRESS,
        buyer_id=info.email,
        customer=Customer(
            identify=CustomerIdentification(type="CPF", number=info.cpf),
            name=info.name,
            email=info.email,
            phone=info.phone,
        ),
        address=Address(
            zip_code=info.zip_code,
            state=info.state,
            city=info.city,
            street_name=info.address,
            street_number=extract_street_number(info.address),
        ),
        device_info=DeviceInfo(user_agent=payment.user_agent, ip_address=payment.ip_address),
    )


class OrderService:
    """Validates checkout input and creates the order on the gateway."""

    def __init__(self, client: PagsmileClient, gateway: GatewaySettings) -> None:
        self.client = client
        self.gateway = gateway

    async def create_order(self, payment: CreatePaymentInput) -> CreateOrderResponse:
        validate_payment_input(payment)
        order = build_order_request(payment, self.gateway)
        out_trade_no_ctx.set(order.out_trade_no)
        logger.info("create_order out_trade_no=%s amount=%s", order.out_trade_no, order.order_amount)

        payload = await self.client.post("/trade/create", order.model_dump(exclude_none=True))
        try:
            response = CreateOrderResponse.model_validate(ensure_success(payload))
        except pydantic.ValidationError as exc:
            raise RemoteError(INVALID_RESPONSE_CODE, "unexpected create order response") from exc
        if not response.out_trade_no:
            response.out_trade_no = order.out_trade_no
        trade_no_ctx.set(response.trade_no)
        orders_created_total.inc()
        logger.info("order_created out_trade_no=%s trade_no=%s", response.out_trade_no, response.trade_no)
        return response
