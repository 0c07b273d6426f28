import re
from typing import Dict

import anyio

from ..core.errors import PaymentFailed, ValidationFailed
from ..core.logging import get_logger
from ..core.settings import Settings
from ..models.transaction import PaymentDetails
from .records import generate_id, now_ms, to_clean_string

logger = get_logger("payments")

METHOD_LABELS = {
  "mtn": "MTN Mobile Money",
  "orange": "Orange Money",
  "card": "Card",
}


def validate_payment(details: PaymentDetails) -> None:
  if details.method in ("mtn", "orange"):
    if not to_clean_string(details.phone):
      raise ValidationFailed("Please enter your mobile money number.")
    return
  required = (details.cardNumber, details.cardName, details.cardExpiry, details.cardCvv)
  if not all(to_clean_string(value) for value in required):
    raise ValidationFailed("Please fill in all card details.")
  digits = re.sub(r"\D", "", details.cardNumber or "")
  if not 12 <= len(digits) <= 19:
    raise ValidationFailed("Card number is invalid.")


def mask_reference(details: PaymentDetails) -> str:
  if details.method == "card":
    digits = re.sub(r"\D", "", details.cardNumber or "")
    return f"**** {digits[-4:]}"
  phone = re.sub(r"\D", "", details.phone or "")
  return f"***{phone[-3:]}"


async def charge(settings: Settings, details: PaymentDetails, amount: int, description: str) -> Dict[str, object]:
  """Simulate a payment; no money moves and no gateway is contacted."""
  validate_payment(details)
  if amount < 0:
    raise PaymentFailed("Amount cannot be negative.")
  if settings.mock_payment_delay_seconds > 0:
    await anyio.sleep(settings.mock_payment_delay_seconds)
  receipt = {
    "reference": generate_id("pay"),
    "paymentMethod": METHOD_LABELS[details.method],
    "payer": mask_reference(details),
    "amount": amount,
    "paidAt": now_ms(),
  }
  logger.info("mock payment %s: %s via %s (%s)", receipt["reference"], amount, details.method, description)
  return receipt
