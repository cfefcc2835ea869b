"""Checkout service entrypoint (`uvicorn cardpay.services.checkout.main:app`)."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis import asyncio as aioredis

from cardpay.common.config import load_gateway_settings, settings
from cardpay.common.events import KafkaBus
from cardpay.common.logging import configure_logging
from cardpay.common.startup import log_startup_config
from cardpay.common.tracing import instrument_app, setup_tracing
from cardpay.services.checkout.api import CheckoutDependencies, create_app
from cardpay.services.checkout.dispatch import (
    InMemoryDispatchLedger,
    KafkaEventHandlers,
    LoggingEventHandlers,
    PaymentEventDispatcher,
    RedisDispatchLedger,
)
from cardpay.services.checkout.gateway import PagsmileClient
from cardpay.services.checkout.orders import OrderService
from cardpay.services.checkout.polling import TransactionPoller
from cardpay.services.checkout.transactions import TransactionService
from cardpay.services.checkout.webhooks import WebhookProcessor

configure_logging()
gateway = load_gateway_settings()
setup_tracing(settings.service_name)
log_startup_config(settings.service_name, settings, gateway)

client = PagsmileClient(gateway, timeout_seconds=settings.gateway_timeout_seconds)
rdb = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
kafka = KafkaBus() if settings.event_publishing_enabled else None

if settings.dispatch_ledger == "redis":
    ledger = RedisDispatchLedger(
        rdb,
        ttl_seconds=settings.dispatch_ledger_ttl_seconds,
        pending_ttl_seconds=settings.dispatch_ledger_pending_ttl_seconds,
    )
else:
    ledger = InMemoryDispatchLedger()
dispatcher = PaymentEventDispatcher(
    handlers=KafkaEventHandlers(kafka) if kafka is not None else LoggingEventHandlers(),
    ledger=ledger,
)
transactions = TransactionService(client, gateway)

deps = CheckoutDependencies(
    gateway=gateway,
    orders=OrderService(client, gateway),
    transactions=transactions,
    webhooks=WebhookProcessor(dispatcher),
    poller=TransactionPoller(transactions, dispatcher),
    dispatcher=dispatcher,
    service_name=settings.service_name,
    poll_max_attempts=settings.poll_max_attempts,
    poll_interval_ms=settings.poll_interval_ms,
    poll_deadline_seconds=settings.poll_deadline_seconds,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Close outbound clients with the app lifecycle."""

    yield
    await client.aclose()
    await rdb.aclose()
    if kafka is not None:
        await kafka.close()


app = create_app(deps, lifespan=lifespan)
instrument_app(app)
