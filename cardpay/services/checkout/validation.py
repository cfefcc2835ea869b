"""Field-shape checks run before any gateway call."""

import re
from decimal import Decimal

from cardpay.common.errors import ValidationError
from cardpay.services.checkout.schemas import CreatePaymentInput, CustomerInfo


CPF_PATTERN = re.compile(r"[0-9]{11}")
ZIP_PATTERN = re.compile(r"[0-9]{8}")
STATE_PATTERN = re.compile(r"[A-Za-z]{2}")
AMOUNT_PATTERN = re.compile(r"[0-9]+(\.[0-9]{1,2})?")


def customer_info_errors(info: CustomerInfo) -> list[str]:
    """Return one message per failing rule, in form order."""

    errors: list[str] = []
    if len(info.name.strip()) < 3:
        errors.append("Name must have at least 3 characters")
    if "@" not in info.email:
        errors.append("Invalid email format")
    if not CPF_PATTERN.fullmatch(info.cpf):
        errors.append("CPF must have 11 digits")
    # Formatting characters such as "(11) 9..." are allowed; only digits count.
    if sum(ch.isdigit() for ch in info.phone) < 10:
        errors.append("Phone must have at least 10 digits")
    if not ZIP_PATTERN.fullmatch(info.zip_code):
        errors.append("ZIP code must have 8 digits")
    if not STATE_PATTERN.fullmatch(info.state):
        errors.append("State must be a 2-letter code")
    if len(info.city.strip()) < 2:
        errors.append("City is required")
    if len(info.address.strip()) < 5:
        errors.append("Address must have at least 5 characters")
    return errors


def amount_errors(amount: str) -> list[str]:
    if AMOUNT_PATTERN.fullmatch(amount or "") and Decimal(amount) > 0:
        return []
    return ["Amount must be a positive decimal with up to 2 places"]


def validate_customer_info(info: CustomerInfo) -> None:
    """Raise `ValidationError` listing every violated customer rule."""

    errors = customer_info_errors(info)
    if errors:
        raise ValidationError(errors)


def validate_payment_input(payment: CreatePaymentInput) -> None:
    """Validate amount and customer together so all problems surface at once."""

    errors = amount_errors(payment.amount) + customer_info_errors(payment.customer_info)
    if errors:
        raise ValidationError(errors)
