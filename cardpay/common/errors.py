"""Error taxonomy shared by the checkout core and its HTTP boundary."""

from typing import Any


class PaymentError(Exception):
    """Base class for every error raised by the checkout core."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class ConfigurationError(PaymentError):
    """Startup configuration is missing or invalid."""


class ValidationError(PaymentError):
    """Client input failed one or more field rules.

    `messages` lists every failing rule so the caller can show them together.
    """

    def __init__(self, messages: list[str]) -> None:
        self.messages = list(messages)
        super().__init__(f"Validation errors: {', '.join(self.messages)}")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "messages": self.messages}


class InvalidArgument(PaymentError):
    """A precondition on an operation argument was not met."""


class RemoteError(PaymentError):
    """The gateway answered with a non-success business code."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.remote_message = message
        super().__init__(f"Pagsmile error: {code} - {message}")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code}


class GatewayHTTPError(PaymentError):
    """The gateway answered with a non-2xx HTTP status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Pagsmile API error: {status_code} - {body}")


class InvalidPayload(PaymentError):
    """Webhook payload can never be processed; redelivery will not help."""

    def __init__(self, messages: list[str]) -> None:
        self.messages = list(messages)
        super().__init__(f"Invalid webhook payload: {', '.join(self.messages)}")


class InvalidSignature(PaymentError):
    """Webhook signature header is missing or does not match the body."""


class CallbackError(PaymentError):
    """A terminal-event handler failed while processing a valid event."""

    def __init__(self, event: Any, cause: BaseException) -> None:
        self.event = event
        self.cause = cause
        super().__init__(f"Payment event handler failed for trade {event.trade_no}: {cause}")
