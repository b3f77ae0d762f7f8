"""Payment validation package."""

from thinkpay.validation.validator import PaymentValidator, parse_amount

__all__ = ["PaymentValidator", "parse_amount"]
