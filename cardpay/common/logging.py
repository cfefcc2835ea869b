"""Structured JSON logging with request/transaction context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from cardpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
trade_no_ctx: ContextVar[str] = ContextVar("trade_no", default="")
out_trade_no_ctx: ContextVar[str] = ContextVar("out_trade_no", default="")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.trade_no = trade_no_ctx.get()
        record.out_trade_no = out_trade_no_ctx.get()
        return True


def configure_logging() -> None:
    """Configure root logger once per service process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(trade_no)s %(out_trade_no)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("cardpay")
