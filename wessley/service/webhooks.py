from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import stripe

from wessley.logging import get_logger
from wessley.service.billing import BillingNotConfiguredError, BillingService
from wessley.service.email import EmailService
from wessley.storage.models import Profile

logger = get_logger(__name__)

WEBHOOK_IDEMPOTENCY_SCOPE = "stripe_event"
WEBHOOK_IDEMPOTENCY_TTL_SECONDS = 7 * 24 * 60 * 60

# Stripe subscription status -> stored subscription_status
_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "canceled": "inactive",
    "unpaid": "inactive",
}


def map_subscription_status(stripe_status: Optional[str]) -> str:
    return _STATUS_MAP.get(stripe_status or "", "inactive")


def _from_epoch(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _period_end(subscription: Dict[str, Any]) -> Optional[int]:
    # Newer API versions carry the period on the subscription items
    if subscription.get("current_period_end"):
        return subscription["current_period_end"]
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return items[0].get("current_period_end")
    return None


def _customer_name(profile: Profile) -> Optional[str]:
    return profile.display_name or profile.full_name or None


class StripeWebhookHandler:
    """Apply Stripe subscription lifecycle events to user profiles.

    Deliveries are deduplicated on ``event.id``: the first delivery claims a
    slot (Redis SET NX, or a lock-guarded dict without Redis) for seven days
    and a redelivery is acknowledged without touching the store. A failing
    handler releases its slot so Stripe's retry runs it again.
    """

    def __init__(
        self,
        store,
        *,
        cache=None,
        email: Optional[EmailService] = None,
        billing: Optional[BillingService] = None,
        app_url: str = "https://wessley.ai",
    ) -> None:
        self.store = store
        self.cache = cache
        self.email = email
        self.billing = billing
        self.app_url = app_url.rstrip("/")
        self._local_slots: Dict[str, Tuple[dict, datetime]] = {}
        self._local_lock = asyncio.Lock()

    # Idempotency --------------------------------------------------------

    async def _acquire_slot(self, event_id: str) -> Tuple[bool, Optional[dict]]:
        record = {"status": "in_progress", "started_at": datetime.utcnow().isoformat()}
        if self.cache:
            return await self.cache.acquire_idempotency_slot(
                WEBHOOK_IDEMPOTENCY_SCOPE,
                event_id,
                record,
                WEBHOOK_IDEMPOTENCY_TTL_SECONDS,
            )
        now = datetime.utcnow()
        async with self._local_lock:
            existing = self._local_slots.get(event_id)
            if existing and existing[1] > now:
                return (False, existing[0])
            self._local_slots[event_id] = (
                record,
                now + timedelta(seconds=WEBHOOK_IDEMPOTENCY_TTL_SECONDS),
            )
            return (True, None)

    async def _complete_slot(self, event_id: str) -> None:
        record = {"status": "completed", "completed_at": datetime.utcnow().isoformat()}
        if self.cache:
            await self.cache.set_idempotency_record(
                WEBHOOK_IDEMPOTENCY_SCOPE,
                event_id,
                record,
                WEBHOOK_IDEMPOTENCY_TTL_SECONDS,
            )
            return
        async with self._local_lock:
            self._local_slots[event_id] = (
                record,
                datetime.utcnow() + timedelta(seconds=WEBHOOK_IDEMPOTENCY_TTL_SECONDS),
            )

    async def _release_slot(self, event_id: str) -> None:
        if self.cache:
            await self.cache.release_idempotency_slot(WEBHOOK_IDEMPOTENCY_SCOPE, event_id)
            return
        async with self._local_lock:
            self._local_slots.pop(event_id, None)

    async def process(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Handle ``event`` once, returning the acknowledgement body."""

        event_id = event.get("id")
        if not event_id:
            await self.handle(event)
            return {"received": True}

        acquired, existing = await self._acquire_slot(event_id)
        if not acquired:
            logger.info(
                "stripe_webhook_duplicate",
                event_id=event_id,
                event_type=event.get("type"),
                previous_status=(existing or {}).get("status"),
            )
            return {"received": True, "duplicate": True}

        try:
            await self.handle(event)
        except Exception:
            await self._release_slot(event_id)
            raise
        await self._complete_slot(event_id)
        return {"received": True}

    # Event handlers -----------------------------------------------------

    async def handle(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        handler = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_failed": self._payment_failed,
        }.get(event_type)
        if handler is None:
            logger.info("stripe_webhook_unhandled", event_type=event_type, event_id=event.get("id"))
            return
        logger.info("stripe_webhook_received", event_type=event_type, event_id=event.get("id"))
        await handler(obj)

    def _profile_for_customer(self, customer_id: Optional[str]) -> Optional[Profile]:
        profile = self.store.get_profile_by_customer(customer_id) if customer_id else None
        if not profile:
            logger.error("stripe_webhook_unknown_customer", customer_id=customer_id)
        return profile

    async def _checkout_completed(self, session: Dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("supabase_user_id")
        if not user_id:
            logger.error("stripe_checkout_missing_user", session_id=session.get("id"))
            return
        tier = metadata.get("tier") or "pro"
        self.store.upsert_profile(
            user_id,
            subscription_tier=tier,
            subscription_status="active",
            subscription_started_at=datetime.utcnow(),
            stripe_subscription_id=session.get("subscription"),
            stripe_customer_id=session.get("customer"),
        )
        logger.info("subscription_activated", user_id=user_id, tier=tier)

    async def _subscription_updated(self, subscription: Dict[str, Any]) -> None:
        profile = self._profile_for_customer(subscription.get("customer"))
        if not profile:
            return
        updates: Dict[str, Any] = {
            "subscription_status": map_subscription_status(subscription.get("status")),
            "stripe_subscription_id": subscription.get("id"),
        }
        tier = (subscription.get("metadata") or {}).get("tier")
        if tier:
            updates["subscription_tier"] = tier
        period_end = _period_end(subscription)
        if subscription.get("cancel_at_period_end") and period_end:
            updates["subscription_expires_at"] = _from_epoch(period_end)
        else:
            updates["subscription_expires_at"] = None
        self.store.update_profile(profile.user_id, **updates)
        logger.info(
            "subscription_updated",
            user_id=profile.user_id,
            status=updates["subscription_status"],
            tier=tier,
        )

    async def _subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        profile = self._profile_for_customer(subscription.get("customer"))
        if not profile:
            return
        self.store.update_profile(
            profile.user_id,
            subscription_tier="free",
            subscription_status="inactive",
            stripe_subscription_id=None,
            subscription_expires_at=None,
        )
        logger.info("subscription_cancelled", user_id=profile.user_id)
        if self.email and profile.email:
            await asyncio.to_thread(
                self.email.send_subscription_cancelled_email,
                profile.email,
                customer_name=_customer_name(profile),
                reactivate_url=f"{self.app_url}/pricing",
                reason="user_cancelled",
            )

    async def _payment_failed(self, invoice: Dict[str, Any]) -> None:
        customer_id = invoice.get("customer")
        profile = self._profile_for_customer(customer_id)
        if not profile:
            return
        self.store.update_profile(profile.user_id, subscription_status="past_due")
        logger.info("subscription_past_due", user_id=profile.user_id)
        if self.email and profile.email:
            await asyncio.to_thread(
                self.email.send_payment_failed_email,
                profile.email,
                customer_name=_customer_name(profile),
                next_retry_date=_from_epoch(invoice.get("next_payment_attempt")),
                update_payment_url=await self._update_payment_url(customer_id),
            )

    async def _update_payment_url(self, customer_id: str) -> str:
        if self.billing is None:
            return f"{self.app_url}/dashboard"
        try:
            return await asyncio.to_thread(self.billing.create_portal_session, customer_id)
        except (BillingNotConfiguredError, stripe.StripeError) as exc:
            logger.warning(
                "stripe_portal_link_failed",
                customer_id=customer_id,
                error_type=type(exc).__name__,
            )
            return f"{self.app_url}/dashboard"
