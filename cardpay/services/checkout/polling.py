"""Client-facing status reconciliation loop.

Bridges the gap between order creation and webhook arrival. Terminal
observations go through the same dispatcher as webhooks.
"""

import asyncio
from typing import Protocol

from cardpay.common.errors import InvalidArgument
from cardpay.common.logging import logger
from cardpay.common.metrics import poll_attempts_total, poll_outcomes_total
from cardpay.common.state_machine import TradeStatus, is_terminal, validate_transition
from cardpay.services.checkout.dispatch import PaymentEventDispatcher
from cardpay.services.checkout.schemas import PollOutcome, PollResult, TransactionRecord


DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_INTERVAL_MS = 2000

_TERMINAL_OUTCOMES = {
    TradeStatus.SUCCESS: PollOutcome.SUCCESS,
    TradeStatus.FAILED: PollOutcome.FAILED,
    TradeStatus.CANCELLED: PollOutcome.CANCELLED,
}


class TransactionQuery(Protocol):
    async def query(self, trade_no: str) -> TransactionRecord: ...


class TransactionPoller:
    def __init__(self, transactions: TransactionQuery, dispatcher: PaymentEventDispatcher | None = None) -> None:
        self.transactions = transactions
        self.dispatcher = dispatcher

    async def poll(
        self,
        trade_no: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        cancel_event: asyncio.Event | None = None,
        deadline_seconds: float | None = None,
    ) -> PollResult:
        """Query until a terminal status, attempts run out, or the caller gives up.

        `TIMEOUT` means still pending after `max_attempts` queries. `ABORTED`
        means `cancel_event` was set or `deadline_seconds` elapsed first. Query
        errors propagate to the caller.
        """

        if max_attempts < 1:
            raise InvalidArgument("max_attempts must be at least 1")
        if interval_ms < 0:
            raise InvalidArgument("interval_ms must not be negative")

        loop = asyncio.get_running_loop()
        deadline = None if deadline_seconds is None else loop.time() + deadline_seconds
        previous: TradeStatus | None = None
        record: TransactionRecord | None = None

        for attempt in range(1, max_attempts + 1):
            if self._aborted(cancel_event, deadline, loop):
                return self._finish(PollOutcome.ABORTED, attempt - 1, record, trade_no)

            poll_attempts_total.inc()
            record = await self.transactions.query(trade_no)
            status = record.trade_status
            self._check_progress(trade_no, previous, status)
            previous = status

            if is_terminal(status):
                if self.dispatcher is not None:
                    await self.dispatcher.dispatch(record.to_event(), source="poll")
                return self._finish(_TERMINAL_OUTCOMES[status], attempt, record, trade_no)

            if attempt < max_attempts and await self._wait(interval_ms, cancel_event, deadline, loop):
                return self._finish(PollOutcome.ABORTED, attempt, record, trade_no)

        return self._finish(PollOutcome.TIMEOUT, max_attempts, record, trade_no)

    @staticmethod
    def _aborted(cancel_event: asyncio.Event | None, deadline: float | None, loop: asyncio.AbstractEventLoop) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and loop.time() >= deadline

    async def _wait(
        self,
        interval_ms: int,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
        loop: asyncio.AbstractEventLoop,
    ) -> bool:
        """Sleep one interval; return True if the caller aborted meanwhile."""

        delay = interval_ms / 1000
        if deadline is not None:
            remaining = deadline - loop.time()
            if remaining <= delay:
                await asyncio.sleep(max(0.0, remaining))
                return True
        if cancel_event is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    def _check_progress(trade_no: str, previous: TradeStatus | None, current: TradeStatus) -> None:
        if previous is None or previous == current:
            return
        try:
            validate_transition(previous, current)
        except ValueError:
            logger.warning(
                "status regression observed trade_no=%s previous=%s current=%s",
                trade_no,
                previous.value,
                current.value,
            )

    @staticmethod
    def _finish(outcome: PollOutcome, attempts: int, record: TransactionRecord | None, trade_no: str) -> PollResult:
        poll_outcomes_total.labels(outcome=outcome.value).inc()
        logger.info("poll_finished trade_no=%s outcome=%s attempts=%s", trade_no, outcome.value, attempts)
        return PollResult(outcome=outcome, attempts=attempts, record=record)
