"""Signed JSON transport to the Pagsmile gateway.

Each call is fire-once: transport errors propagate unchanged and nothing is
retried here.
"""

import base64
from datetime import datetime
from time import perf_counter
from typing import Any

import httpx

from cardpay.common.config import GatewaySettings
from cardpay.common.errors import GatewayHTTPError, RemoteError
from cardpay.common.logging import logger
from cardpay.common.metrics import gateway_request_duration_seconds, gateway_requests_total
from cardpay.common.tracing import gateway_span


SUCCESS_CODE = "10000"
INVALID_RESPONSE_CODE = "INVALID_RESPONSE"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(now: datetime | None = None) -> str:
    """Canonical request timestamp, `YYYY-MM-DD HH:MM:SS` in local time."""

    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def build_auth_header(app_id: str, security_key: str) -> str:
    encoded = base64.b64encode(f"{app_id}:{security_key}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def ensure_success(response: dict[str, Any]) -> dict[str, Any]:
    """Raise `RemoteError` unless the gateway reported business success."""

    code = str(response.get("code", ""))
    if code != SUCCESS_CODE:
        raise RemoteError(code, str(response.get("msg", "")))
    return {**response, "code": code}


class PagsmileClient:
    """Thin async wrapper adding auth, JSON encoding and metrics."""

    def __init__(
        self,
        gateway: GatewaySettings,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.gateway = gateway
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": build_auth_header(gateway.app_id, gateway.security_key),
        }

    async def post(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", endpoint, body)

    async def get(self, endpoint: str) -> dict[str, Any]:
        return await self._request("GET", endpoint, None)

    async def _request(self, method: str, endpoint: str, body: dict[str, Any] | None) -> dict[str, Any]:
        url = f"{self.gateway.api_base_url.rstrip('/')}{endpoint}"
        outcome = "error"
        start = perf_counter()
        with gateway_span(method, endpoint):
            try:
                resp = await self._client.request(method, url, headers=self._headers, json=body)
                if resp.status_code >= 400:
                    logger.error(
                        "gateway http error endpoint=%s status_code=%s", endpoint, resp.status_code
                    )
                    outcome = f"http_{resp.status_code}"
                    raise GatewayHTTPError(resp.status_code, resp.text)
                try:
                    payload = resp.json()
                except ValueError as exc:
                    outcome = "invalid_response"
                    raise RemoteError(INVALID_RESPONSE_CODE, "response body is not JSON") from exc
                if not isinstance(payload, dict):
                    outcome = "invalid_response"
                    raise RemoteError(INVALID_RESPONSE_CODE, "response body is not a JSON object")
                outcome = "ok" if str(payload.get("code", "")) == SUCCESS_CODE else "business_error"
                return payload
            finally:
                gateway_request_duration_seconds.labels(endpoint=endpoint).observe(
                    max(0.0, perf_counter() - start)
                )
                gateway_requests_total.labels(endpoint=endpoint, outcome=outcome).inc()

    async def aclose(self) -> None:
        await self._client.aclose()
