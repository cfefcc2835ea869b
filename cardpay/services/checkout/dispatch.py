"""Terminal payment event dispatch.

Webhooks and the polling loop both end here, so a trade number triggers at
most one business callback no matter which path observes the outcome first.
The dedup record lives in a `DispatchLedger` supplied by the embedding
application.
"""

from typing import Awaitable, Callable, Protocol
from uuid import uuid4

from redis import asyncio as aioredis

from cardpay.common.errors import CallbackError
from cardpay.common.events import (
    PAYMENT_FAILED_TOPIC,
    PAYMENT_SUCCEEDED_TOPIC,
    EventEnvelope,
    KafkaBus,
)
from cardpay.common.logging import logger, trace_id_ctx
from cardpay.common.metrics import duplicate_events_skipped_total, terminal_events_dispatched_total
from cardpay.common.state_machine import TradeStatus, is_terminal
from cardpay.services.checkout.schemas import WebhookEvent


PaymentEventCallback = Callable[[WebhookEvent], Awaitable[None]]


class PaymentEventHandlers(Protocol):
    async def on_success(self, event: WebhookEvent) -> None: ...

    async def on_failure(self, event: WebhookEvent) -> None: ...


class LoggingEventHandlers:
    """Default handlers: record the outcome and do nothing else."""

    async def on_success(self, event: WebhookEvent) -> None:
        logger.info(
            "payment succeeded out_trade_no=%s amount=%s currency=%s",
            event.out_trade_no,
            event.amount,
            event.currency,
        )

    async def on_failure(self, event: WebhookEvent) -> None:
        logger.info("payment failed out_trade_no=%s status=%s", event.out_trade_no, event.status.value)


class CallbackHandlers(LoggingEventHandlers):
    """Adapt two optional coroutine functions; an empty slot only logs."""

    def __init__(
        self,
        on_success: PaymentEventCallback | None = None,
        on_failure: PaymentEventCallback | None = None,
    ) -> None:
        self._on_success = on_success
        self._on_failure = on_failure

    async def on_success(self, event: WebhookEvent) -> None:
        if self._on_success is None:
            await super().on_success(event)
        else:
            await self._on_success(event)

    async def on_failure(self, event: WebhookEvent) -> None:
        if self._on_failure is None:
            await super().on_failure(event)
        else:
            await self._on_failure(event)


class KafkaEventHandlers:
    """Publish terminal outcomes for downstream consumers."""

    def __init__(self, kafka: KafkaBus) -> None:
        self.kafka = kafka

    def _envelope(self, event_type: str, event: WebhookEvent) -> EventEnvelope:
        return EventEnvelope(
            event_type=event_type,
            aggregate_id=event.trade_no,
            trace_id=trace_id_ctx.get() or str(uuid4()),
            payload=event.model_dump(mode="json", by_alias=True),
        )

    async def on_success(self, event: WebhookEvent) -> None:
        await self.kafka.publish(PAYMENT_SUCCEEDED_TOPIC, self._envelope(PAYMENT_SUCCEEDED_TOPIC, event))

    async def on_failure(self, event: WebhookEvent) -> None:
        await self.kafka.publish(PAYMENT_FAILED_TOPIC, self._envelope(PAYMENT_FAILED_TOPIC, event))


class DispatchLedger(Protocol):
    """First-writer-wins record of which trades already had a terminal dispatch.

    A claim is provisional until `confirm` runs after the handler succeeds, so
    a claim whose `release` was lost lapses on its own.
    """

    async def claim(self, trade_no: str, status: TradeStatus) -> bool: ...

    async def confirm(self, trade_no: str) -> None: ...

    async def get(self, trade_no: str) -> str | None: ...

    async def release(self, trade_no: str) -> None: ...


class InMemoryDispatchLedger:
    """Process-local ledger for single-worker deployments and tests."""

    def __init__(self) -> None:
        self._claims: dict[str, str] = {}

    async def claim(self, trade_no: str, status: TradeStatus) -> bool:
        if trade_no in self._claims:
            return False
        self._claims[trade_no] = status.value
        return True

    async def confirm(self, trade_no: str) -> None:
        return None

    async def get(self, trade_no: str) -> str | None:
        return self._claims.get(trade_no)

    async def release(self, trade_no: str) -> None:
        self._claims.pop(trade_no, None)


class RedisDispatchLedger:
    """Shared ledger backed by Redis `SET NX`.

    New claims expire after `pending_ttl_seconds`; `confirm` extends them to
    the full retention `ttl_seconds`.
    """

    def __init__(
        self,
        rdb: aioredis.Redis,
        ttl_seconds: int,
        pending_ttl_seconds: int = 300,
        prefix: str = "dispatch:terminal",
    ) -> None:
        self.rdb = rdb
        self.ttl_seconds = ttl_seconds
        self.pending_ttl_seconds = min(pending_ttl_seconds, ttl_seconds)
        self.prefix = prefix

    def _key(self, trade_no: str) -> str:
        return f"{self.prefix}:{trade_no}"

    async def claim(self, trade_no: str, status: TradeStatus) -> bool:
        created = await self.rdb.set(self._key(trade_no), status.value, nx=True, ex=self.pending_ttl_seconds)
        return bool(created)

    async def confirm(self, trade_no: str) -> None:
        await self.rdb.expire(self._key(trade_no), self.ttl_seconds)

    async def get(self, trade_no: str) -> str | None:
        value = await self.rdb.get(self._key(trade_no))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def release(self, trade_no: str) -> None:
        await self.rdb.delete(self._key(trade_no))


class PaymentEventDispatcher:
    """Route terminal events to handlers once per trade number."""

    def __init__(self, handlers: PaymentEventHandlers | None = None, ledger: DispatchLedger | None = None) -> None:
        self.handlers = handlers or LoggingEventHandlers()
        self.ledger = ledger

    async def _claim(self, event: WebhookEvent, source: str) -> bool:
        if self.ledger is None:
            return True
        try:
            if await self.ledger.claim(event.trade_no, event.status):
                return True
            previous = await self.ledger.get(event.trade_no)
        except Exception as exc:
            raise CallbackError(event, exc) from exc

        if previous is not None and previous != event.status.value:
            logger.warning(
                "conflicting terminal status ignored trade_no=%s dispatched=%s observed=%s source=%s",
                event.trade_no,
                previous,
                event.status.value,
                source,
            )
        else:
            logger.info("duplicate terminal event skipped trade_no=%s source=%s", event.trade_no, source)
        duplicate_events_skipped_total.labels(source=source).inc()
        return False

    async def dispatch(self, event: WebhookEvent, source: str = "webhook") -> bool:
        """Invoke the matching handler; return whether a handler actually ran.

        A failing handler releases the ledger claim so a redelivery of the
        same event can try again, then surfaces as `CallbackError`. If the
        release itself fails the provisional claim still expires.
        """

        if not is_terminal(event.status):
            return False
        if not await self._claim(event, source):
            return False

        try:
            if event.status == TradeStatus.SUCCESS:
                await self.handlers.on_success(event)
            else:
                await self.handlers.on_failure(event)
        except Exception as exc:
            logger.exception("payment event handler failed trade_no=%s source=%s", event.trade_no, source)
            if self.ledger is not None:
                try:
                    await self.ledger.release(event.trade_no)
                except Exception:
                    logger.exception("dispatch claim release failed trade_no=%s", event.trade_no)
            raise CallbackError(event, exc) from exc

        if self.ledger is not None:
            try:
                await self.ledger.confirm(event.trade_no)
            except Exception:
                logger.exception("dispatch claim confirm failed trade_no=%s", event.trade_no)
        terminal_events_dispatched_total.labels(status=event.status.value, source=source).inc()
        return True
