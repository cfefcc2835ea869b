"""Terminal event dedup across webhook and poll observations."""

import json

import pytest

from cardpay.common.errors import CallbackError
from cardpay.common.events import PAYMENT_FAILED_TOPIC, PAYMENT_SUCCEEDED_TOPIC
from cardpay.common.state_machine import TradeStatus
from cardpay.services.checkout.dispatch import (
    InMemoryDispatchLedger,
    KafkaEventHandlers,
    PaymentEventDispatcher,
    RedisDispatchLedger,
)
from cardpay.services.checkout.schemas import WebhookEvent


def make_event(status: TradeStatus = TradeStatus.SUCCESS, trade_no: str = "T1") -> WebhookEvent:
    return WebhookEvent(trade_no=trade_no, out_trade_no="O1", status=status, amount=100, currency="BRL")


class CountingHandlers:
    def __init__(self, failures_before_success: int = 0) -> None:
        self.calls = []
        self.failures_left = failures_before_success

    async def on_success(self, event):
        self.calls.append(("success", event.trade_no))
        if self.failures_left:
            self.failures_left -= 1
            raise RuntimeError("boom")

    async def on_failure(self, event):
        self.calls.append(("failure", event.trade_no))


class FakeRedis:
    """Implements the handful of async redis calls the ledger uses."""

    def __init__(self) -> None:
        self.store = {}
        self.ttls = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, key):
        self.store.pop(key, None)

    async def expire(self, key, seconds):
        if key in self.store:
            self.ttls[key] = seconds


class BrokenLedger:
    async def claim(self, trade_no, status):
        raise ConnectionError("redis down")

    async def get(self, trade_no):
        return None

    async def release(self, trade_no):
        return None


class UnreleasableLedger(InMemoryDispatchLedger):
    """Claims work but deleting one fails, as during a Redis blip."""

    async def release(self, trade_no):
        raise ConnectionError("redis down")


class FakeKafka:
    def __init__(self) -> None:
        self.published = []

    async def publish(self, topic, envelope):
        self.published.append((topic, envelope))


@pytest.mark.asyncio
async def test_poll_then_webhook_dispatches_once():
    handlers = CountingHandlers()
    dispatcher = PaymentEventDispatcher(handlers, ledger=InMemoryDispatchLedger())

    assert await dispatcher.dispatch(make_event(), source="poll") is True
    assert await dispatcher.dispatch(make_event(), source="webhook") is False

    assert handlers.calls == [("success", "T1")]


@pytest.mark.asyncio
async def test_conflicting_terminal_status_is_ignored():
    handlers = CountingHandlers()
    dispatcher = PaymentEventDispatcher(handlers, ledger=InMemoryDispatchLedger())

    await dispatcher.dispatch(make_event(TradeStatus.SUCCESS))
    dispatched = await dispatcher.dispatch(make_event(TradeStatus.FAILED))

    assert dispatched is False
    assert handlers.calls == [("success", "T1")]


@pytest.mark.asyncio
async def test_failed_handler_releases_claim_for_redelivery():
    handlers = CountingHandlers(failures_before_success=1)
    dispatcher = PaymentEventDispatcher(handlers, ledger=InMemoryDispatchLedger())

    with pytest.raises(CallbackError):
        await dispatcher.dispatch(make_event())
    assert await dispatcher.dispatch(make_event()) is True

    assert handlers.calls == [("success", "T1"), ("success", "T1")]


@pytest.mark.asyncio
async def test_ledger_outage_surfaces_as_callback_error():
    handlers = CountingHandlers()
    dispatcher = PaymentEventDispatcher(handlers, ledger=BrokenLedger())

    with pytest.raises(CallbackError):
        await dispatcher.dispatch(make_event())

    assert handlers.calls == []


@pytest.mark.asyncio
async def test_non_terminal_event_skips_ledger():
    ledger = InMemoryDispatchLedger()
    dispatcher = PaymentEventDispatcher(CountingHandlers(), ledger=ledger)

    assert await dispatcher.dispatch(make_event(TradeStatus.PROCESSING)) is False
    assert await ledger.get("T1") is None


@pytest.mark.asyncio
async def test_redis_ledger_first_writer_wins():
    rdb = FakeRedis()
    ledger = RedisDispatchLedger(rdb, ttl_seconds=60)

    assert await ledger.claim("T1", TradeStatus.SUCCESS) is True
    assert await ledger.claim("T1", TradeStatus.FAILED) is False
    assert await ledger.get("T1") == "SUCCESS"
    assert rdb.ttls["dispatch:terminal:T1"] == 60

    await ledger.release("T1")
    assert await ledger.claim("T1", TradeStatus.FAILED) is True


@pytest.mark.asyncio
async def test_kafka_handlers_publish_camel_case_payload():
    kafka = FakeKafka()
    dispatcher = PaymentEventDispatcher(KafkaEventHandlers(kafka))

    await dispatcher.dispatch(make_event(TradeStatus.SUCCESS, trade_no="T1"))
    await dispatcher.dispatch(make_event(TradeStatus.CANCELLED, trade_no="T2"))

    topics = [topic for topic, _ in kafka.published]
    assert topics == [PAYMENT_SUCCEEDED_TOPIC, PAYMENT_FAILED_TOPIC]
    envelope = kafka.published[0][1]
    assert envelope.aggregate_id == "T1"
    assert envelope.payload["tradeNo"] == "T1"
    assert envelope.payload["status"] == "SUCCESS"
    json.dumps(envelope.model_dump())


@pytest.mark.asyncio
async def test_failed_release_still_raises_callback_error():
    handlers = CountingHandlers(failures_before_success=1)
    dispatcher = PaymentEventDispatcher(handlers, ledger=UnreleasableLedger())

    with pytest.raises(CallbackError) as exc_info:
        await dispatcher.dispatch(make_event())

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert handlers.calls == [("success", "T1")]


@pytest.mark.asyncio
async def test_redis_claim_is_provisional_until_confirmed():
    rdb = FakeRedis()
    ledger = RedisDispatchLedger(rdb, ttl_seconds=7 * 86400, pending_ttl_seconds=300)
    dispatcher = PaymentEventDispatcher(CountingHandlers(), ledger=ledger)

    await ledger.claim("T2", TradeStatus.SUCCESS)
    assert rdb.ttls["dispatch:terminal:T2"] == 300

    assert await dispatcher.dispatch(make_event(trade_no="T1")) is True
    assert rdb.ttls["dispatch:terminal:T1"] == 7 * 86400


@pytest.mark.asyncio
async def test_failed_handler_leaves_only_short_lived_claim_when_release_fails():
    rdb = FakeRedis()

    async def broken_delete(key):
        raise ConnectionError("redis down")

    rdb.delete = broken_delete
    ledger = RedisDispatchLedger(rdb, ttl_seconds=7 * 86400, pending_ttl_seconds=300)
    dispatcher = PaymentEventDispatcher(CountingHandlers(failures_before_success=1), ledger=ledger)

    with pytest.raises(CallbackError):
        await dispatcher.dispatch(make_event())

    assert rdb.ttls["dispatch:terminal:T1"] == 300
