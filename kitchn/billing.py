"""Subscriptions through Stripe: checkout, customer portal and webhooks."""
import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

import stripe
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import AuthContext
from .config import Settings
from .entitlements import entitlements_for, is_premium
from .errors import ConfigurationError, ExternalServiceError, NotFound, ValidationFailed

logger = logging.getLogger(__name__)


class StripeGateway:
    """Thin wrapper over the Stripe SDK returning plain dictionaries."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(settings.stripe_secret_key, settings.stripe_webhook_secret)

    def _key(self) -> str:
        if not self.secret_key:
            raise ConfigurationError("Missing Stripe configuration")
        return self.secret_key

    def create_customer(self, email: str, metadata: dict) -> str:
        try:
            customer = stripe.Customer.create(
                api_key=self._key(), email=email, metadata=metadata
            )
        except stripe.StripeError as exc:
            raise ExternalServiceError(str(exc)) from exc
        return customer.id

    def create_checkout_session(self, **params) -> dict:
        try:
            session = stripe.checkout.Session.create(api_key=self._key(), **params)
        except stripe.StripeError as exc:
            raise ExternalServiceError(str(exc)) from exc
        return {"id": session.id, "url": session.url}

    def create_portal_session(self, customer: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self._key(), customer=customer, return_url=return_url
            )
        except stripe.StripeError as exc:
            raise ExternalServiceError(str(exc)) from exc
        return session.url

    def retrieve_subscription(self, subscription_id: str) -> dict:
        try:
            subscription = stripe.Subscription.retrieve(
                subscription_id, api_key=self._key()
            )
        except stripe.StripeError as exc:
            raise ExternalServiceError(str(exc)) from exc
        return subscription.to_dict()

    def construct_event(self, payload: bytes, signature: str) -> dict:
        if not self.secret_key or not self.webhook_secret:
            raise ConfigurationError("Missing Stripe configuration")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise ValidationFailed(f"Invalid webhook: {exc}") from exc
        # handlers work on the verified JSON body
        return json.loads(payload)


def _ts(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period(subscription: dict, field: str):
    # newer API versions report the period on the subscription items
    if subscription.get(field) is not None:
        return subscription[field]
    items = (subscription.get("items") or {}).get("data") or []
    return items[0].get(field) if items else None


def _restaurant_of(ctx: AuthContext) -> str:
    ctx.require_user()
    if not ctx.restaurant_id:
        raise ValidationFailed("User has no restaurant")
    return ctx.restaurant_id


def _subscription_row(db: Session, restaurant_id: str) -> Optional[models.Subscription]:
    return (
        db.query(models.Subscription)
        .filter(models.Subscription.restaurant_id == restaurant_id)
        .first()
    )


def list_plans(db: Session) -> List[models.SubscriptionPlan]:
    return db.query(models.SubscriptionPlan).order_by(models.SubscriptionPlan.price_cents).all()


def create_checkout(
    db: Session,
    ctx: AuthContext,
    gateway: StripeGateway,
    data: schemas.CheckoutIn,
    origin: str = "",
) -> dict:
    restaurant_id = _restaurant_of(ctx)
    plan = db.get(models.SubscriptionPlan, data.plan_id)
    if plan is None:
        raise NotFound("Invalid plan")
    if not plan.stripe_price_id:
        raise ValidationFailed("Plan has no Stripe price ID configured")

    existing = _subscription_row(db, restaurant_id)
    if existing is not None and existing.stripe_customer_id:
        customer_id = existing.stripe_customer_id
    else:
        customer_id = gateway.create_customer(
            ctx.user.email,
            {"restaurant_id": restaurant_id, "user_id": ctx.user_id},
        )

    metadata = {"restaurant_id": restaurant_id, "plan_id": plan.id}
    session = gateway.create_checkout_session(
        customer=customer_id,
        mode="subscription",
        payment_method_types=["card"],
        line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
        success_url=data.success_url or f"{origin}/subscription/success",
        cancel_url=data.cancel_url or f"{origin}/subscription/cancel",
        metadata=dict(metadata, user_id=ctx.user_id),
        subscription_data={"metadata": metadata},
    )
    logger.info("checkout session %s for restaurant %s", session["id"], restaurant_id)
    return {"session_id": session["id"], "url": session["url"]}


def create_portal(
    db: Session,
    ctx: AuthContext,
    gateway: StripeGateway,
    return_url: Optional[str] = None,
    origin: str = "",
) -> dict:
    restaurant_id = _restaurant_of(ctx)
    subscription = _subscription_row(db, restaurant_id)
    if subscription is None or not subscription.stripe_customer_id:
        raise NotFound("No active subscription found")
    url = gateway.create_portal_session(
        subscription.stripe_customer_id, return_url or f"{origin}/subscription"
    )
    return {"url": url}


def subscription_status(
    db: Session, settings: Settings, ctx: AuthContext
) -> schemas.SubscriptionStatus:
    ctx.require_user()
    ent = entitlements_for(db, settings, ctx)
    subscription = _subscription_row(db, ctx.restaurant_id) if ctx.restaurant_id else None
    return schemas.SubscriptionStatus(
        is_premium=is_premium(db, ctx.restaurant_id),
        status=subscription.status if subscription else None,
        plan_id=subscription.plan_id if subscription else None,
        current_period_end=subscription.current_period_end if subscription else None,
        cancel_at_period_end=bool(subscription and subscription.cancel_at_period_end),
        max_groups=ent.max_groups,
        max_members_per_group=ent.max_members_per_group,
    )


# ---------- webhooks ----------

def _set_current_plan(db: Session, restaurant_id: str, plan_id: Optional[str]) -> None:
    restaurant = db.get(models.Restaurant, restaurant_id)
    if restaurant is not None:
        restaurant.current_plan_id = plan_id


def _on_checkout_completed(db: Session, gateway: StripeGateway, session: dict) -> None:
    if session.get("mode") != "subscription" or not session.get("subscription"):
        return
    metadata = session.get("metadata") or {}
    restaurant_id = metadata.get("restaurant_id")
    plan_id = metadata.get("plan_id")
    if not restaurant_id:
        raise ValidationFailed("Missing restaurant_id in session metadata")
    if not plan_id:
        raise ValidationFailed("Missing plan_id in session metadata")

    remote = gateway.retrieve_subscription(session["subscription"])
    row = _subscription_row(db, restaurant_id)
    if row is None:
        row = models.Subscription(restaurant_id=restaurant_id)
        db.add(row)
    row.stripe_customer_id = remote.get("customer")
    row.stripe_subscription_id = remote.get("id")
    row.plan_id = plan_id
    row.status = remote.get("status")
    row.current_period_start = _ts(_period(remote, "current_period_start"))
    row.current_period_end = _ts(_period(remote, "current_period_end"))
    row.cancel_at_period_end = bool(remote.get("cancel_at_period_end"))
    _set_current_plan(db, restaurant_id, plan_id)
    logger.info("subscription %s created for restaurant %s", row.stripe_subscription_id, restaurant_id)


def _by_stripe_id(db: Session, subscription_id: Optional[str]):
    return db.query(models.Subscription).filter(
        models.Subscription.stripe_subscription_id == subscription_id
    )


def _on_subscription_updated(db: Session, subscription: dict) -> None:
    _by_stripe_id(db, subscription.get("id")).update(
        {
            "status": subscription.get("status"),
            "current_period_start": _ts(_period(subscription, "current_period_start")),
            "current_period_end": _ts(_period(subscription, "current_period_end")),
            "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        },
        synchronize_session=False,
    )


def _on_subscription_deleted(db: Session, subscription: dict) -> None:
    for row in _by_stripe_id(db, subscription.get("id")).all():
        _set_current_plan(db, row.restaurant_id, None)
        db.delete(row)


def _invoice_subscription(invoice: dict) -> Optional[str]:
    if invoice.get("subscription"):
        return invoice["subscription"]
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return details.get("subscription")


def _set_status(db: Session, invoice: dict, status: str) -> None:
    subscription_id = _invoice_subscription(invoice)
    if subscription_id:
        _by_stripe_id(db, subscription_id).update(
            {"status": status}, synchronize_session=False
        )


def handle_webhook(
    db: Session, gateway: StripeGateway, payload: bytes, signature: Optional[str]
) -> dict:
    if not signature:
        raise ValidationFailed("Missing stripe-signature header")
    event = gateway.construct_event(payload, signature)
    kind = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("webhook event received: %s", kind)

    if kind == "checkout.session.completed":
        _on_checkout_completed(db, gateway, obj)
    elif kind == "customer.subscription.updated":
        _on_subscription_updated(db, obj)
    elif kind == "customer.subscription.deleted":
        _on_subscription_deleted(db, obj)
    elif kind in ("invoice.paid", "invoice.payment_succeeded"):
        _set_status(db, obj, "active")
    elif kind == "invoice.payment_failed":
        _set_status(db, obj, "past_due")
    else:
        logger.info("unhandled event type: %s", kind)
        return {"received": True}

    db.commit()
    return {"received": True}
