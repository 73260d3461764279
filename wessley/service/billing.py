from __future__ import annotations

import json
from typing import Any, Dict, Optional

import stripe

from wessley.logging import get_logger

logger = get_logger(__name__)

SUBSCRIPTION_TIERS = ("free", "insiders", "pro", "enterprise")
PAID_TIERS = ("insiders", "pro", "enterprise")
SUBSCRIPTION_STATUSES = ("active", "inactive", "expired", "past_due", "trial")

PRICING_INFO: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Free",
        "price": 0,
        "interval": None,
        "features": [
            "View demo projects",
            "Limited AI chat (5 messages/day)",
            "Basic 3D viewer",
        ],
    },
    "insiders": {
        "name": "Insiders",
        "price": 9.99,
        "interval": "month",
        "features": [
            "Unlimited AI chat",
            "Up to 5 vehicles",
            "3D schematic viewer",
            "Basic exports (PDF)",
            "Email support",
        ],
    },
    "pro": {
        "name": "Pro",
        "price": 29.99,
        "interval": "month",
        "features": [
            "Everything in Insiders",
            "Unlimited vehicles",
            "ML schematic analysis",
            "Advanced exports (CAD, Mermaid)",
            "API access",
            "Priority support",
        ],
    },
    "enterprise": {
        "name": "Enterprise",
        # contact sales
        "price": None,
        "interval": None,
        "features": [
            "Everything in Pro",
            "Custom integrations",
            "Fleet management",
            "Dedicated account manager",
            "SLA guarantees",
            "On-premise option",
        ],
    },
}


class BillingNotConfiguredError(RuntimeError):
    """Raised when Stripe credentials are missing."""


def get_price_id(tier: Optional[str], settings) -> Optional[str]:
    """Return the Stripe price for ``tier``; ``None`` for free or unpriced tiers."""
    prices = {
        "insiders": settings.stripe_price_insiders,
        "pro": settings.stripe_price_pro,
        "enterprise": settings.stripe_price_enterprise,
    }
    return prices.get(tier or "") or None


class BillingService:
    """Stripe customer, checkout and portal operations.

    The stripe SDK is synchronous; callers on the event loop run these
    methods through ``asyncio.to_thread``.
    """

    def __init__(self, *, secret_key: Optional[str], app_url: str) -> None:
        self.secret_key = secret_key
        self.app_url = app_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _require_key(self) -> str:
        if not self.secret_key:
            raise BillingNotConfiguredError(
                "STRIPE_SECRET_KEY is not set. Please add it to your environment variables."
            )
        return self.secret_key

    def create_customer(
        self, email: Optional[str], name: Optional[str], user_id: str
    ) -> str:
        customer = stripe.Customer.create(
            api_key=self._require_key(),
            email=email,
            name=name or None,
            metadata={"supabase_user_id": user_id},
        )
        logger.info("stripe_customer_created", user_id=user_id, customer_id=customer.id)
        return customer.id

    def create_checkout_session(
        self, customer_id: str, price_id: str, user_id: str, tier: str
    ) -> str:
        metadata = {"supabase_user_id": user_id, "tier": tier}
        session = stripe.checkout.Session.create(
            api_key=self._require_key(),
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{self.app_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.app_url}/checkout/cancel",
            allow_promotion_codes=True,
            billing_address_collection="auto",
            automatic_tax={"enabled": True},
            subscription_data={"metadata": metadata},
            metadata=metadata,
        )
        logger.info("stripe_checkout_created", user_id=user_id, tier=tier)
        return session.url

    def create_portal_session(self, customer_id: str) -> str:
        session = stripe.billing_portal.Session.create(
            api_key=self._require_key(),
            customer=customer_id,
            return_url=f"{self.app_url}/dashboard",
        )
        return session.url

    @staticmethod
    def construct_event(payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        """Verify a webhook signature and return the event as plain JSON.

        Raises ``stripe.SignatureVerificationError`` for a bad signature and
        ``ValueError`` for an unparseable payload.
        """

        stripe.Webhook.construct_event(payload, signature, secret)
        return json.loads(payload)
