"""Mock payment processor used at checkout. No money moves anywhere."""

import random
import string
import time
from dataclasses import dataclass
from typing import Any, Optional

from logging_config import get_logger

log = get_logger("payment")

TEST_CARD_NUMBER = "4111111111111111"
DECLINE_RATE = 0.1
CURRENCY = "USD"

_BASE36 = string.digits + string.ascii_lowercase


@dataclass
class PaymentResult:
    success: bool
    amount: float
    currency: str = CURRENCY
    transaction_id: Optional[str] = None
    error: Optional[str] = None


def _field(payment_method: Any, name: str) -> Optional[str]:
    if payment_method is None:
        return None
    if isinstance(payment_method, dict):
        return payment_method.get(name)
    return getattr(payment_method, name, None)


class PaymentProcessor:
    """Simulated card payments.

    The test card always succeeds; any other card is declined with a 10%
    chance drawn from the injected random generator.
    """

    def __init__(self, rng: Optional[random.Random] = None, decline_rate: float = DECLINE_RATE):
        self.rng = rng or random.Random()
        self.decline_rate = decline_rate

    def _transaction_id(self) -> str:
        suffix = "".join(self.rng.choice(_BASE36) for _ in range(7))
        return f"txn_{int(time.time() * 1000)}_{suffix}"

    def process(self, amount: float, payment_method: Any) -> PaymentResult:
        card_number = _field(payment_method, "card_number")
        expiry_date = _field(payment_method, "expiry_date")
        cvv = _field(payment_method, "cvv")
        if not card_number or not expiry_date or not cvv:
            return PaymentResult(success=False, amount=amount, error="Invalid payment method details")

        if "".join(card_number.split()) == TEST_CARD_NUMBER:
            return PaymentResult(success=True, amount=amount, transaction_id=self._transaction_id())

        if self.rng.random() < self.decline_rate:
            log.info("Mock payment of %.2f %s declined", amount, CURRENCY)
            return PaymentResult(success=False, amount=amount, error="Payment declined by bank")

        return PaymentResult(success=True, amount=amount, transaction_id=self._transaction_id())
