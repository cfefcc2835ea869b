"""Checkout request/response schemas and the gateway wire models.

Gateway models keep Pagsmile's snake_case field names; client-facing input
uses the camelCase names the storefront sends.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cardpay.common.state_machine import TradeStatus


def _as_text(value):
    if value is None:
        return ""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


class CustomerInfo(BaseModel):
    """Buyer details collected by the checkout form.

    Fields default to empty strings so that missing values are reported by
    `validate_customer_info` together with every other failing rule.
    Nulls and bare numbers are read as text for the same reason.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    email: str = ""
    phone: str = ""
    cpf: str = ""
    zip_code: str = Field(default="", alias="zipCode")
    state: str = ""
    city: str = ""
    address: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def scalars_as_text(cls, value):
        return _as_text(value)


class CreatePaymentInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: str
    customer_info: CustomerInfo = Field(alias="customerInfo")
    user_agent: str | None = Field(default=None, alias="userAgent")
    ip_address: str | None = Field(default=None, alias="ipAddress")


class CreateOrderBody(BaseModel):
    """Raw `POST /api/create-order` body; presence is checked by the route."""

    amount: str | None = None
    customerInfo: CustomerInfo | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def numeric_amount_as_text(cls, value):
        return None if value is None else _as_text(value)


class CustomerIdentification(BaseModel):
    type: Literal["CPF", "CNPJ"] = "CPF"
    number: str


class Customer(BaseModel):
    identify: CustomerIdentification
    name: str
    email: str
    phone: str


class Address(BaseModel):
    zip_code: str
    state: str
    city: str
    street_name: str
    street_number: str


class DeviceInfo(BaseModel):
    user_agent: str | None = None
    ip_address: str | None = None


class OrderRequest(BaseModel):
    """`/trade/create` payload."""

    app_id: str
    out_trade_no: str
    method: Literal["CreditCard"] = "CreditCard"
    order_amount: str
    order_currency: Literal["BRL"] = "BRL"
    subject: str
    content: str
    trade_type: Literal["API"] = "API"
    timestamp: str
    notify_url: str
    return_url: str
    timeout_express: str
    version: Literal["2.0"] = "2.0"
    buyer_id: str
    customer: Customer
    address: Address
    device_info: DeviceInfo


class CreateOrderResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str
    msg: str = ""
    trade_no: str = ""
    out_trade_no: str = ""
    prepay_id: str = ""


class TransactionRecord(BaseModel):
    """Normalized `/trade/query` result; unknown gateway fields are kept."""

    model_config = ConfigDict(extra="allow")

    code: str
    msg: str = ""
    trade_no: str
    out_trade_no: str = ""
    method: str | None = None
    trade_status: TradeStatus
    order_currency: str | None = None
    order_amount: Decimal | None = None
    customer: dict[str, Any] | None = None
    create_time: str | None = None
    update_time: str | None = None

    def to_event(self) -> "WebhookEvent":
        return WebhookEvent(
            trade_no=self.trade_no,
            out_trade_no=self.out_trade_no,
            status=self.trade_status,
            amount=self.order_amount,
            currency=self.order_currency,
            method=self.method,
        )


class WebhookEvent(BaseModel):
    """Gateway-independent projection of one payment notification."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    trade_no: str
    out_trade_no: str
    status: TradeStatus
    amount: Decimal | None = None
    currency: str | None = None
    method: str | None = None


class SdkConfig(BaseModel):
    """Public values the browser needs to start the hosted card SDK."""

    app_id: str
    public_key: str
    env: str
    region_code: Literal["BRA"] = "BRA"


class PollOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    ABORTED = "ABORTED"


class PollResult(BaseModel):
    outcome: PollOutcome
    attempts: int
    record: TransactionRecord | None = None
