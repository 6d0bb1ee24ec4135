"""
Payment provider client.

The rest of the engine talks to ``PaymentProvider``; ``StripePaymentProvider``
is the production implementation on top of the stripe SDK.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import stripe

from eventhub.core import config
from eventhub.core.errors import InvalidWebhookSignatureError, PaymentProviderError
from eventhub.db.models.plan import SubscriptionPlan

logger = logging.getLogger(__name__)

MODE_SUBSCRIPTION = "subscription"
MODE_PAYMENT = "payment"


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str
    mode: str


class PaymentProvider(Protocol):
    def create_checkout_session(
        self,
        plan: SubscriptionPlan,
        customer_email: str,
        customer_name: str,
        user_id: int,
        mode: str,
    ) -> CheckoutSession:
        ...

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """Return the decoded event dict, or raise InvalidWebhookSignatureError."""
        ...

    def cancel_subscription(self, provider_subscription_id: str) -> None:
        ...


class StripePaymentProvider:
    """Stripe Checkout and webhook verification."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        currency: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        environment: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ):
        self.secret_key = secret_key or config.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or config.STRIPE_WEBHOOK_SECRET
        self.currency = (currency or config.STRIPE_CURRENCY).lower()
        self.success_url = success_url or config.STRIPE_SUCCESS_URL
        self.cancel_url = cancel_url or config.STRIPE_CANCEL_URL
        self.environment = environment or config.STRIPE_ENVIRONMENT
        timeout = timeout_seconds or config.STRIPE_TIMEOUT_SECONDS

        if self.secret_key:
            stripe.api_key = self.secret_key
        else:
            logger.warning("STRIPE_SECRET_KEY not configured - checkout disabled")
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    def _line_item(self, plan: SubscriptionPlan, mode: str) -> dict:
        if plan.stripe_price_id:
            return {"price": plan.stripe_price_id, "quantity": 1}

        price_data = {
            "currency": (plan.currency or self.currency).lower(),
            "unit_amount": int(round((plan.price or 0) * 100)),
            "product_data": {
                "name": plan.display_name or plan.name,
                "description": plan.description or plan.display_name or plan.name,
                "metadata": {"plan_id": str(plan.id), "plan_type": plan.type},
            },
        }
        if mode == MODE_SUBSCRIPTION:
            interval = "week" if plan.billing_cycle == "weekly" else "month"
            price_data["recurring"] = {"interval": interval}
        return {"price_data": price_data, "quantity": 1}

    def create_checkout_session(
        self,
        plan: SubscriptionPlan,
        customer_email: str,
        customer_name: str,
        user_id: int,
        mode: str,
    ) -> CheckoutSession:
        """
        Create a Stripe Checkout session for a plan purchase.

        Args:
            plan: Plan being purchased
            customer_email: Prefilled customer email
            customer_name: Customer name, recorded in metadata
            user_id: Purchasing user, echoed back in webhook metadata
            mode: "subscription" for recurring plans, "payment" for packages

        Returns:
            CheckoutSession with the provider session id and redirect URL

        Raises:
            PaymentProviderError: If Stripe is not configured or rejects the request
        """
        if not self.secret_key:
            raise PaymentProviderError("Stripe not configured - STRIPE_SECRET_KEY required")

        metadata = {
            "user_id": str(user_id),
            "plan_id": str(plan.id),
            "type": plan.type,
            "customer_name": customer_name or "",
        }
        params = {
            "customer_email": customer_email,
            "payment_method_types": ["card"],
            "line_items": [self._line_item(plan, mode)],
            "mode": mode,
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "metadata": metadata,
        }
        if mode == MODE_SUBSCRIPTION:
            params["subscription_data"] = {"metadata": metadata}
        else:
            params["payment_intent_data"] = {"metadata": metadata}

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session: user_id={user_id}, plan_id={plan.id}, error={e}")
            raise PaymentProviderError(f"Failed to create checkout session: {e}")

        logger.info(
            f"Created checkout session: session_id={session.id}, user_id={user_id}, plan={plan.name}, mode={mode}"
        )
        return CheckoutSession(session_id=session.id, url=session.url, mode=mode)

    def cancel_subscription(self, provider_subscription_id: str) -> None:
        """Stop recurring billing; Stripe follows up with customer.subscription.deleted."""
        if not self.secret_key:
            raise PaymentProviderError("Stripe not configured - STRIPE_SECRET_KEY required")
        try:
            stripe.Subscription.cancel(provider_subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe error cancelling subscription: subscription_id={provider_subscription_id}, error={e}")
            raise PaymentProviderError(f"Failed to cancel subscription: {e}")
        logger.info(f"Cancelled provider subscription: subscription_id={provider_subscription_id}")

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify a webhook's Stripe-Signature header and decode the event.

        In the development environment verification is skipped so events
        can be replayed by hand.

        Raises:
            InvalidWebhookSignatureError: Bad signature, missing secret or malformed payload
        """
        if self.environment == "development":
            logger.warning("Skipping webhook signature verification in development mode")
        else:
            if not self.webhook_secret:
                raise InvalidWebhookSignatureError("STRIPE_WEBHOOK_SECRET not configured")
            if not signature:
                logger.warning("Webhook rejected: missing Stripe-Signature header")
                raise InvalidWebhookSignatureError("Missing signature")
            try:
                stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            except stripe.SignatureVerificationError as e:
                logger.warning(f"Webhook signature verification failed: {e}")
                raise InvalidWebhookSignatureError("Invalid signature")
            except ValueError as e:
                logger.warning(f"Invalid webhook payload: {e}")
                raise InvalidWebhookSignatureError("Invalid payload")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise InvalidWebhookSignatureError(f"Invalid payload: {e}")
        if not isinstance(event, dict):
            raise InvalidWebhookSignatureError("Invalid payload: expected a JSON object")

        logger.info(f"Verified webhook event: type={event.get('type')}, id={event.get('id')}")
        return event
