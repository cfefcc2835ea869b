"""Transaction status lookups against `/trade/query`."""

import pydantic

from cardpay.common.config import GatewaySettings
from cardpay.common.errors import InvalidArgument, RemoteError
from cardpay.common.logging import logger
from cardpay.services.checkout.gateway import (
    INVALID_RESPONSE_CODE,
    PagsmileClient,
    ensure_success,
    format_timestamp,
)
from cardpay.services.checkout.schemas import TransactionRecord


class TransactionService:
    """Issues one fresh query per call; status can change between calls."""

    def __init__(self, client: PagsmileClient, gateway: GatewaySettings) -> None:
        self.client = client
        self.gateway = gateway

    async def query(self, trade_no: str) -> TransactionRecord:
        if not trade_no or not trade_no.strip():
            raise InvalidArgument("Trade number is required")

        body = {
            "app_id": self.gateway.app_id,
            "timestamp": format_timestamp(),
            "trade_no": trade_no,
        }
        payload = ensure_success(await self.client.post("/trade/query", body))
        try:
            record = TransactionRecord.model_validate(payload)
        except pydantic.ValidationError as exc:
            # e.g. a trade_status outside the known set, such as REFUNDED
            fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
            logger.error("unexpected query response trade_no=%s fields=%s", trade_no, fields)
            raise RemoteError(INVALID_RESPONSE_CODE, f"unexpected query response fields: {fields}") from exc
        logger.info("transaction_queried trade_no=%s trade_status=%s", trade_no, record.trade_status.value)
        return record
