from marketplace.models.account import AccountPF, AccountPJ, load_profile, profile_model_for
from marketplace.models.store import Store
from marketplace.models.product import Product
from marketplace.models.cart import CartLine
from marketplace.models.order import Order, OrderLine, OrderTransition
from marketplace.models.payment import ProcessedPayment, WebhookEvent
from marketplace.models.shipping import ShippingOAuthState, ShippingToken
from marketplace.models.subscription import Subscription, SubscriptionPlan
from marketplace.models.idempotency_key import IdempotencyKey
from marketplace.models.platform_event import PlatformEvent
from marketplace.models.job_run import JobRun

__all__ = [
    "AccountPF",
    "AccountPJ",
    "load_profile",
    "profile_model_for",
    "Store",
    "Product",
    "CartLine",
    "Order",
    "OrderLine",
    "OrderTransition",
    "ProcessedPayment",
    "WebhookEvent",
    "ShippingOAuthState",
    "ShippingToken",
    "Subscription",
    "SubscriptionPlan",
    "IdempotencyKey",
    "PlatformEvent",
    "JobRun",
]
