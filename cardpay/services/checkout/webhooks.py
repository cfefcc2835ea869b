"""Inbound payment notifications: authenticity, shape, mapping, dispatch."""

import hashlib
import hmac
from typing import Any

from cardpay.common.errors import InvalidPayload, InvalidSignature
from cardpay.common.logging import logger, out_trade_no_ctx, trade_no_ctx
from cardpay.common.state_machine import TradeStatus
from cardpay.services.checkout.dispatch import PaymentEventDispatcher
from cardpay.services.checkout.schemas import WebhookEvent


SIGNATURE_HEADER = "X-Pagsmile-Signature"
REQUIRED_FIELDS = ("trade_no", "out_trade_no", "trade_status")
KNOWN_STATUSES = tuple(status.value for status in TradeStatus)


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""

    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> None:
    if not signature:
        raise InvalidSignature("Missing webhook signature")
    if not hmac.compare_digest(sign_payload(raw_body, secret), signature.strip().lower()):
        raise InvalidSignature("Webhook signature mismatch")


def validate_webhook_payload(payload: Any) -> None:
    """Raise `InvalidPayload` listing every missing or unusable field."""

    if not isinstance(payload, dict):
        raise InvalidPayload(["payload must be a JSON object"])

    errors = [f"{field} is required" for field in REQUIRED_FIELDS if not payload.get(field)]
    status = payload.get("trade_status")
    if status and status not in KNOWN_STATUSES:
        errors.append(f"trade_status must be one of {', '.join(KNOWN_STATUSES)}")
    if errors:
        raise InvalidPayload(errors)


def map_payload_to_event(payload: dict[str, Any]) -> WebhookEvent:
    try:
        return WebhookEvent(
            trade_no=payload["trade_no"],
            out_trade_no=payload["out_trade_no"],
            status=TradeStatus(payload["trade_status"]),
            amount=payload.get("order_amount"),
            currency=payload.get("order_currency"),
            method=payload.get("method"),
        )
    except ValueError as exc:
        # pydantic's ValidationError subclasses ValueError (bad amount/field types).
        raise InvalidPayload([str(exc)]) from exc


class WebhookProcessor:
    """Validate, normalize and dispatch one webhook delivery."""

    def __init__(self, dispatcher: PaymentEventDispatcher) -> None:
        self.dispatcher = dispatcher

    async def process(self, payload: Any) -> WebhookEvent:
        validate_webhook_payload(payload)
        event = map_payload_to_event(payload)
        trade_no_ctx.set(event.trade_no)
        out_trade_no_ctx.set(event.out_trade_no)
        logger.info("webhook_received trade_no=%s trade_status=%s", event.trade_no, event.status.value)

        await self.dispatcher.dispatch(event, source="webhook")
        return event
