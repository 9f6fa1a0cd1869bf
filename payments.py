"""
Payment initiation through the Stripe SDK.
"""

import logging
from typing import Optional

import stripe

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    pass


class StripeGateway:
    """
    Create payment intents; the client confirms them with the returned secret
    """

    def __init__(self, secret_key: Optional[str]):
        self.secret_key = secret_key

    def create_payment_intent(self, amount: int, currency: str) -> str:
        if not self.secret_key:
            raise PaymentError("Payment provider is not configured")

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.secret_key,
                amount=amount,
                currency=currency.lower(),
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            raise PaymentError(e.user_message or str(e)) from e

        client_secret = getattr(intent, "client_secret", None)
        if not client_secret:
            raise PaymentError("Payment provider returned no client secret")
        logger.info("Created payment intent %s", getattr(intent, "id", None))
        return client_secret
