"""
Client for the payment provider's hosted checkout links.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

import config
from errors import PaymentLinkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentLink:
    checkout_url: str
    amount: int
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "checkout_url": self.checkout_url, "amount": self.amount}


class PaymentLinkClient:
    def __init__(self, secret_key: str = config.PAYMONGO_SECRET_KEY, url: str = config.PAYMONGO_LINKS_URL,
                 currency: str = config.PAYMENT_CURRENCY, success_url: str = config.PAYMENT_SUCCESS_URL,
                 failed_url: str = config.PAYMENT_FAILED_URL, client: Optional[httpx.Client] = None):
        self.secret_key = secret_key
        self.url = url
        self.currency = currency
        self.success_url = success_url
        self.failed_url = failed_url
        self.client = client or httpx.Client(timeout=config.PAYMENT_TIMEOUT)

    def create_link(self, amount: int, description: str) -> PaymentLink:
        """Create a checkout link for `amount` centavos."""
        if not self.secret_key:
            logger.error("Payment link requested but PAYMONGO_SECRET_KEY is not set")
            raise PaymentLinkError("Payments are not configured.")
        if amount <= 0:
            raise PaymentLinkError("Nothing to pay for.")

        body = {
            "amount": amount,
            "currency": self.currency,
            "description": description,
            "redirect": {"success": self.success_url, "failed": self.failed_url},
        }
        try:
            res = self.client.post(
                self.url,
                json=body,
                auth=httpx.BasicAuth(self.secret_key, ""),
                headers={"accept": "application/json"},
            )
            data = res.json()
            if not isinstance(data, dict):
                raise ValueError("unexpected payment response")
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("Error creating payment link")
            raise PaymentLinkError("Failed to initiate payment.") from e

        errors = data.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) else errors
            detail = (first.get("detail") if isinstance(first, dict) else None) or "Payment was rejected."
            logger.error("Payment provider rejected link (%s): %s", res.status_code, detail)
            raise PaymentLinkError(detail)

        payload = data.get("data") or {}
        checkout_url = (payload.get("attributes") or {}).get("checkout_url")
        if not checkout_url:
            logger.error("Payment provider response had no checkout url (%s)", res.status_code)
            raise PaymentLinkError("Checkout URL not available.")
        logger.info("Created payment link %s for %d", payload.get("id"), amount)
        return PaymentLink(checkout_url=checkout_url, amount=amount, id=payload.get("id"))
