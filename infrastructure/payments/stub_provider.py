import logging
from typing import Optional, Dict, Any, List
from uuid import uuid4

from core.entities.user import User
from core.services.payment_provider import PaymentProvider, PaymentIntent, Refund, Subscription
from infrastructure.payments.stripe_provider import verify_event

logger = logging.getLogger(__name__)


class StubPaymentProvider(PaymentProvider):
    """Класс-заглушка вместо Stripe - всегда успех, вызовы запоминаются.

    Webhook signatures are still checked, with the same scheme as Stripe.
    """

    def __init__(self, webhook_secret: str = "whsec_dev"):
        self.webhook_secret = webhook_secret
        self.payment_intents: List[PaymentIntent] = []
        self.refunds: List[Refund] = []
        self.refunds_by_key: Dict[str, Refund] = {}
        self.subscriptions: List[Subscription] = []

    def ensure_customer(self, user: User) -> str:
        return user.stripe_customer_id or f"stub-cus-{user.id}"

    def create_payment_intent(self, amount_minor: int, currency: str, customer_id: Optional[str],
                              metadata: Dict[str, str]) -> PaymentIntent:
        intent_id = f"stub-pi-{uuid4()}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            amount_minor=int(amount_minor),
            currency=currency,
            customer_id=customer_id,
            status="requires_payment_method",
        )
        self.payment_intents.append(intent)
        logger.info("Stub payment intent %s for %s %s", intent.id, amount_minor, currency)
        return intent

    def create_refund(self, payment_intent_id: str, amount_minor: Optional[int] = None,
                      reason: Optional[str] = None, idempotency_key: Optional[str] = None) -> Refund:
        # как в Stripe: повтор с тем же ключом возвращает тот же возврат
        if idempotency_key and idempotency_key in self.refunds_by_key:
            return self.refunds_by_key[idempotency_key]
        refund = Refund(id=f"stub-re-{uuid4()}", amount_minor=int(amount_minor or 0), currency="usd",
                        status="succeeded")
        self.refunds.append(refund)
        if idempotency_key:
            self.refunds_by_key[idempotency_key] = refund
        return refund

    def create_subscription(self, customer_id: str, price_id: str,
                            metadata: Dict[str, str]) -> Subscription:
        subscription = Subscription(id=f"stub-sub-{uuid4()}", status="incomplete",
                                    client_secret=f"stub-seti-{uuid4()}_secret")
        self.subscriptions.append(subscription)
        return subscription

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        return verify_event(payload, signature, self.webhook_secret)
