import json
import logging
from typing import Optional, Dict, Any

import stripe

from core.entities.user import User
from core.services.payment_provider import PaymentProvider, PaymentIntent, Refund, Subscription
from core.use_cases.errors import PaymentProviderError, WebhookSignatureError

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


def verify_event(payload: bytes, signature: Optional[str], secret: str,
                 tolerance: int = SIGNATURE_TOLERANCE_SECONDS) -> Dict[str, Any]:
    """Checks the ``Stripe-Signature`` header before the payload is trusted."""
    if not signature:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, signature, secret, tolerance)
        event = json.loads(text)
    except stripe.SignatureVerificationError:
        raise WebhookSignatureError("Invalid webhook signature")
    except (UnicodeDecodeError, ValueError):
        raise WebhookSignatureError("Malformed webhook payload")
    if not isinstance(event, dict):
        raise WebhookSignatureError("Malformed webhook payload")
    return event


class StripePaymentProvider(PaymentProvider):
    """stripe-python client; the API key is passed on every call, nothing global."""

    def __init__(self, api_key: str, webhook_secret: str):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def ensure_customer(self, user: User) -> str:
        if user.stripe_customer_id:
            return user.stripe_customer_id
        try:
            customer = stripe.Customer.create(
                api_key=self.api_key,
                email=user.email,
                name=user.full_name or None,
                metadata={"user_id": str(user.id)},
            )
        except stripe.StripeError as e:
            logger.exception("Stripe customer creation failed for user %s", user.id)
            raise PaymentProviderError("Payment provider error") from e
        return customer.id

    def create_payment_intent(self, amount_minor: int, currency: str, customer_id: Optional[str],
                              metadata: Dict[str, str]) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=int(amount_minor),
                currency=currency,
                customer=customer_id,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.exception("Stripe payment intent creation failed (%s)", metadata)
            raise PaymentProviderError("Payment provider error") from e
        return PaymentIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount_minor=intent.amount,
            currency=intent.currency,
            customer_id=customer_id,
            status=intent.status,
        )

    def create_refund(self, payment_intent_id: str, amount_minor: Optional[int] = None,
                      reason: Optional[str] = None, idempotency_key: Optional[str] = None) -> Refund:
        params: Dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "reason": "requested_by_customer",
        }
        if amount_minor is not None:
            params["amount"] = int(amount_minor)
        if reason:
            params["metadata"] = {"reason": reason[:500]}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            refund = stripe.Refund.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.exception("Stripe refund failed for %s", payment_intent_id)
            raise PaymentProviderError("Payment provider error") from e
        return Refund(id=refund.id, amount_minor=refund.amount, currency=refund.currency, status=refund.status)

    def create_subscription(self, customer_id: str, price_id: str,
                            metadata: Dict[str, str]) -> Subscription:
        try:
            subscription = stripe.Subscription.create(
                api_key=self.api_key,
                customer=customer_id,
                items=[{"price": price_id}],
                payment_behavior="default_incomplete",
                payment_settings={"save_default_payment_method": "on_subscription"},
                metadata=metadata,
                expand=["latest_invoice.confirmation_secret"],
            )
        except stripe.StripeError as e:
            logger.exception("Stripe subscription failed for customer %s", customer_id)
            raise PaymentProviderError("Payment provider error") from e
        return Subscription(
            id=subscription.id,
            status=subscription.status,
            client_secret=_invoice_client_secret(getattr(subscription, "latest_invoice", None)),
        )

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        return verify_event(payload, signature, self.webhook_secret)


def _invoice_client_secret(invoice) -> Optional[str]:
    if not invoice or isinstance(invoice, str):
        return None
    secret = getattr(invoice, "confirmation_secret", None)
    return getattr(secret, "client_secret", None) if secret else None
