"""HTTP surface for the checkout flow.

`create_app` only wires routes onto already-built services so tests can drive
it with fakes; `main.py` owns configuration and resource lifetimes.
"""

import asyncio
import contextlib
import json
from dataclasses import dataclass
from time import perf_counter
from uuid import uuid4

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cardpay.common.config import GatewaySettings
from cardpay.common.errors import (
    CallbackError,
    GatewayHTTPError,
    InvalidArgument,
    InvalidPayload,
    InvalidSignature,
    PaymentError,
    RemoteError,
    ValidationError,
)
from cardpay.common.logging import logger, trace_id_ctx, trade_no_ctx
from cardpay.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    webhooks_received_total,
)
from cardpay.services.checkout.dispatch import PaymentEventDispatcher
from cardpay.services.checkout.orders import OrderService
from cardpay.services.checkout.polling import DEFAULT_INTERVAL_MS, DEFAULT_MAX_ATTEMPTS, TransactionPoller
from cardpay.services.checkout.schemas import CreateOrderBody, CreatePaymentInput, SdkConfig
from cardpay.services.checkout.transactions import TransactionService
from cardpay.services.checkout.webhooks import SIGNATURE_HEADER, WebhookProcessor, verify_signature


DISCONNECT_CHECK_SECONDS = 0.5


@dataclass
class CheckoutDependencies:
    gateway: GatewaySettings
    orders: OrderService
    transactions: TransactionService
    webhooks: WebhookProcessor
    poller: TransactionPoller
    dispatcher: PaymentEventDispatcher
    service_name: str = "checkout-api"
    poll_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    poll_interval_ms: int = DEFAULT_INTERVAL_MS
    poll_deadline_seconds: float | None = None


def error_response(exc: PaymentError | str, status_code: int) -> JSONResponse:
    body = {"success": False}
    if isinstance(exc, PaymentError):
        body.update(exc.to_dict())
    else:
        body["error"] = exc
    return JSONResponse(body, status_code=status_code)


def status_for(exc: Exception) -> int:
    """Map core errors onto HTTP classes: client faults 4xx, gateway faults 502."""

    if isinstance(exc, (ValidationError, InvalidArgument)):
        return 400
    if isinstance(exc, (RemoteError, GatewayHTTPError, httpx.HTTPError)):
        return 502
    if isinstance(exc, CallbackError):
        return 503
    return 500


def failure_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, PaymentError):
        return error_response(exc, status_for(exc))
    return error_response(f"Pagsmile request failed: {exc}", status_for(exc))


def request_error_messages(exc: RequestValidationError) -> list[str]:
    """Flatten FastAPI's validation details into `field: problem` strings."""

    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:]) or "body"
        messages.append(f"{field}: {err.get('msg', 'invalid value')}")
    return messages


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def build_router(deps: CheckoutDependencies) -> APIRouter:
    router = APIRouter()

    @router.get("/api/config")
    def get_config():
        """Public SDK settings for the browser card form."""

        return SdkConfig(
            app_id=deps.gateway.app_id,
            public_key=deps.gateway.public_key,
            env=deps.gateway.environment,
        ).model_dump()

    @router.post("/api/create-order")
    async def create_order(body: CreateOrderBody, request: Request):
        if not body.amount or body.customerInfo is None:
            return error_response("Missing required fields: amount and customerInfo", 400)

        payment = CreatePaymentInput(
            amount=body.amount,
            customer_info=body.customerInfo,
            user_agent=request.headers.get("user-agent"),
            ip_address=client_ip(request),
        )
        try:
            result = await deps.orders.create_order(payment)
        except (PaymentError, httpx.HTTPError) as exc:
            logger.error("create order error: %s", exc)
            return failure_response(exc)

        return {
            "success": True,
            "prepay_id": result.prepay_id,
            "trade_no": result.trade_no,
            "out_trade_no": result.out_trade_no,
        }

    @router.get("/api/query-transaction/{trade_no}")
    async def query_transaction(trade_no: str):
        """Fresh gateway lookup; terminal results are reconciled like webhooks."""

        trade_no_ctx.set(trade_no)
        try:
            record = await deps.transactions.query(trade_no)
        except (PaymentError, httpx.HTTPError) as exc:
            logger.error("query transaction error: %s", exc)
            return failure_response(exc)

        try:
            await deps.dispatcher.dispatch(record.to_event(), source="query")
        except CallbackError:
            # The lookup itself succeeded and the claim was released, so the
            # next webhook or poll retries the handler.
            logger.exception("terminal reconciliation failed during query trade_no=%s", trade_no)
        return record.model_dump(mode="json")

    @router.get("/api/poll-transaction/{trade_no}")
    async def poll_transaction(
        trade_no: str,
        request: Request,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
    ):
        """Server-side polling loop; stops early when the client disconnects."""

        trade_no_ctx.set(trade_no)
        cancel_event = asyncio.Event()

        async def watch_disconnect() -> None:
            while not cancel_event.is_set():
                if await request.is_disconnected():
                    logger.info("client disconnected during poll trade_no=%s", trade_no)
                    cancel_event.set()
                    return
                await asyncio.sleep(DISCONNECT_CHECK_SECONDS)

        watcher = asyncio.create_task(watch_disconnect())
        try:
            result = await deps.poller.poll(
                trade_no,
                max_attempts=max_attempts if max_attempts is not None else deps.poll_max_attempts,
                interval_ms=interval_ms if interval_ms is not None else deps.poll_interval_ms,
                cancel_event=cancel_event,
                deadline_seconds=deps.poll_deadline_seconds,
            )
        except (PaymentError, httpx.HTTPError) as exc:
            logger.error("poll transaction error: %s", exc)
            return failure_response(exc)
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        return {
            "outcome": result.outcome.value,
            "attempts": result.attempts,
            "trade_status": result.record.trade_status.value if result.record else None,
        }

    @router.post("/api/webhook/payment")
    async def handle_webhook(request: Request):
        """Acknowledge permanent failures with 200; ask for redelivery on transient ones."""

        raw_body = await request.body()
        try:
            if deps.gateway.webhook_secret:
                verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER), deps.gateway.webhook_secret)
            try:
                payload = json.loads(raw_body or b"null")
            except ValueError as exc:
                raise InvalidPayload(["payload must be valid JSON"]) from exc
            await deps.webhooks.process(payload)
        except InvalidSignature as exc:
            logger.warning("webhook rejected: %s", exc)
            webhooks_received_total.labels(result="invalid_signature").inc()
            return JSONResponse({"result": "error", "message": exc.message}, status_code=401)
        except InvalidPayload as exc:
            logger.warning("webhook error: %s", exc)
            webhooks_received_total.labels(result="invalid_payload").inc()
            return JSONResponse({"result": "error", "message": exc.message}, status_code=200)
        except CallbackError as exc:
            webhooks_received_total.labels(result="callback_error").inc()
            return JSONResponse({"result": "error", "message": exc.message}, status_code=503)

        webhooks_received_total.labels(result="success").inc()
        return {"result": "success"}

    @router.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @router.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return router


def create_app(deps: CheckoutDependencies, lifespan=None) -> FastAPI:
    app = FastAPI(title="CardPay Checkout", lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed requests get the same `{success: false}` body as validator errors."""

        logger.warning("request rejected path=%s errors=%s", request.url.path, exc.errors())
        return error_response(ValidationError(request_error_messages(exc)), 400)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency; bind a trace id for log lines."""

        trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=deps.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=deps.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    app.include_router(build_router(deps))
    return app
