"""Gateway trade status progression.

Webhook and polling observations can race, so callers use these helpers to
spot regressions rather than to reject them.
"""

from enum import Enum


class TradeStatus(str, Enum):
    INITIAL = "INITIAL"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({TradeStatus.SUCCESS, TradeStatus.FAILED, TradeStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[TradeStatus, set[TradeStatus]] = {
    TradeStatus.INITIAL: {TradeStatus.PROCESSING, TradeStatus.SUCCESS, TradeStatus.FAILED, TradeStatus.CANCELLED},
    TradeStatus.PROCESSING: {TradeStatus.SUCCESS, TradeStatus.FAILED, TradeStatus.CANCELLED},
    TradeStatus.SUCCESS: set(),
    TradeStatus.FAILED: set(),
    TradeStatus.CANCELLED: set(),
}


def is_terminal(status: TradeStatus) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(current: TradeStatus, new: TradeStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current.value} -> {new.value}")
