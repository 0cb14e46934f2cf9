from __future__ import annotations

import logging
import os
import time
import uuid
from decimal import Decimal, InvalidOperation

from marketplace.integrations.common import ProviderError
from marketplace.integrations.payments.base import PaymentsProvider
from marketplace.models import load_profile
from marketplace.services import cart_service, payment_ledger_service as ledger
from marketplace.services.checkout_service import parse_quantity, partition_by_store
from marketplace.services.errors import MarketplaceError, OrderCreationError
from marketplace.services.fulfillment_service import run_fulfillment
from marketplace.services.order_service import OrderStatus
from marketplace.services.payment_reconciliation_service import DIRECT_CHARGE_FLOW
from marketplace.utils.request_context import AccountKind, RequestContext

logger = logging.getLogger(__name__)

SANDBOX_DOCUMENTS = {"CPF": "12345678909", "CNPJ": "11222333000181"}


class PaymentIntentError(MarketplaceError):
    def __init__(self, code: str, message: str, http_status: int = 400):
        self.code = code
        self.http_status = http_status
        super().__init__(message)


def _is_production() -> bool:
    return (os.getenv("MARKETPLACE_ENV") or "dev").strip().lower() in ("prod", "production")


def _url_ok(url: str) -> bool:
    if _is_production():
        return url.lower().startswith("https://")
    return url.lower().startswith(("https://", "http://"))


def back_urls() -> dict:
    result_url = (os.getenv("MP_RESULT_URL") or "").strip()
    urls = {
        "success": (os.getenv("MP_SUCCESS_URL") or result_url).strip(),
        "pending": (os.getenv("MP_PENDING_URL") or result_url).strip(),
        "failure": (os.getenv("MP_FAILURE_URL") or result_url).strip(),
    }
    for name, url in urls.items():
        if not url or not _url_ok(url):
            raise PaymentIntentError(
                "PAYMENT_CONFIG_INVALID",
                f"{name} return URL must be an absolute HTTPS URL (set MP_RESULT_URL)",
                500,
            )
    return urls


def build_payer(ctx: RequestContext, client_payer: dict | None, *, environment: str) -> dict:
    """Payer block for the provider; stored profile values win over client ones."""
    client_payer = client_payer if isinstance(client_payer, dict) else {}
    profile = load_profile(ctx.party)
    doc_type = "CNPJ" if ctx.party.kind == AccountKind.PJ else "CPF"

    identification = {"type": doc_type, "number": ""}
    if profile is not None:
        identification = profile.identification()
    if not identification["number"]:
        client_ident = client_payer.get("identification") or {}
        if isinstance(client_ident, dict):
            identification["number"] = "".join(ch for ch in str(client_ident.get("number") or "") if ch.isdigit())
    if not identification["number"] and environment != "production":
        identification["number"] = SANDBOX_DOCUMENTS[identification["type"]]

    email = (getattr(profile, "email", None) or ctx.email or client_payer.get("email") or "").strip()
    name = (getattr(profile, "display_name", None) or ctx.name or client_payer.get("name") or "Cliente").strip()
    payer = {"name": name, "email": email, "identification": identification}

    if profile is not None:
        addr = profile.address_dict()
        if addr["postal_code"]:
            payer["address"] = {
                "zip_code": addr["postal_code"],
                "street_name": addr["address"],
                "street_number": addr["number"],
            }
    elif isinstance(client_payer.get("address"), dict):
        payer["address"] = client_payer["address"]
    return payer


def _metadata(ctx: RequestContext, provider: PaymentsProvider, flow: str) -> dict:
    return {
        "buyer_id": ctx.party.id,
        "buyer_type": ctx.party.kind,
        "mp_env": provider.environment,
        "checkout_flow": flow,
    }


def preference_items(snapshot) -> list[dict]:
    items = []
    for line in snapshot:
        product = line.product
        if product is None or not product.store_id:
            continue
        price = Decimal(product.price or 0)
        if price <= 0:
            continue
        item = {
            "id": str(product.id),
            "title": (product.name or f"Produto {product.id}")[:250],
            "quantity": parse_quantity(line.quantity),
            "unit_price": float(price.quantize(Decimal("0.01"))),
            "currency_id": "BRL",
        }
        if product.image_url:
            item["picture_url"] = product.image_url
        items.append(item)
    return items


def create_checkout_preference(ctx: RequestContext, provider: PaymentsProvider, client_payer: dict | None = None) -> dict:
    snapshot = cart_service.load_cart_snapshot(ctx.party)
    if not snapshot:
        raise PaymentIntentError("CART_EMPTY", "Cart is empty", 400)
    items = preference_items(snapshot)
    if not items:
        raise PaymentIntentError("NO_VALID_ITEMS", "No purchasable items in cart", 400)

    urls = back_urls()
    notification_url = (os.getenv("MP_WEBHOOK_URL") or "").strip()
    payer = build_payer(ctx, client_payer, environment=provider.environment)
    try:
        pref = provider.create_preference(
            items=items,
            payer=payer,
            back_urls=urls,
            notification_url=notification_url,
            metadata=_metadata(ctx, provider, "redirect"),
            external_reference=f"CART-{ctx.party.kind}-{ctx.party.id}-{int(time.time())}",
        )
    except ProviderError as exc:
        logger.warning("preference_create_failed buyer=%s status=%s err=%s", ctx.party.key, exc.status, exc.message)
        raise PaymentIntentError("PROVIDER_ERROR", exc.message, 500) from exc
    if not pref.redirect_url:
        raise PaymentIntentError("PROVIDER_ERROR", "Preference created without a redirect URL", 500)
    logger.info("preference_created buyer=%s preference_id=%s items=%s", ctx.party.key, pref.preference_id, len(items))
    return {"redirect_url": pref.redirect_url, "init_point": pref.redirect_url, "preference_id": pref.preference_id}


def _decimal(value) -> Decimal | None:
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return None


def process_direct_charge(
    ctx: RequestContext,
    provider: PaymentsProvider,
    form: dict,
    *,
    idempotency_key: str | None = None,
) -> tuple[dict, int]:
    """Charge a tokenized card and, when approved, fulfil the cart inline."""
    form = form if isinstance(form, dict) else {}
    token = str(form.get("token") or "").strip()
    method = str(form.get("payment_method_id") or "").strip()
    amount = _decimal(form.get("transaction_amount"))
    shipping = _decimal(form.get("shipping_amount") or 0) or Decimal("0.00")
    if not token or not method or amount is None or amount <= 0:
        raise PaymentIntentError("INVALID_PAYMENT_FORM", "token, payment_method_id and transaction_amount are required", 400)
    installments = max(1, parse_quantity(form.get("installments") or 1))

    snapshot = cart_service.load_cart_snapshot(ctx.party)
    if not snapshot:
        raise PaymentIntentError("CART_EMPTY", "Cart is empty", 400)
    groups = partition_by_store(snapshot)
    if not groups:
        raise PaymentIntentError("NO_VALID_ITEMS", "No purchasable items in cart", 400)
    cart_total = sum(
        (item.unit_price * item.quantity for items in groups.values() for item in items),
        Decimal("0"),
    ).quantize(Decimal("0.01"))
    if amount != cart_total + shipping:
        raise PaymentIntentError(
            "AMOUNT_MISMATCH",
            f"transaction_amount {amount} does not match cart total {cart_total + shipping}",
            400,
        )

    payer = build_payer(ctx, form.get("payer"), environment=provider.environment)
    try:
        payment = provider.create_direct_payment(
            token=token,
            amount=amount,
            payment_method_id=method,
            installments=installments,
            payer=payer,
            metadata=_metadata(ctx, provider, DIRECT_CHARGE_FLOW),
            issuer_id=str(form.get("issuer_id") or "").strip() or None,
            idempotency_key=idempotency_key or uuid.uuid4().hex,
        )
    except ProviderError as exc:
        logger.warning("direct_charge_failed buyer=%s status=%s err=%s", ctx.party.key, exc.status, exc.message)
        raise PaymentIntentError("PROVIDER_ERROR", exc.message, 500) from exc

    body = {
        "ok": True,
        "payment_id": payment.id,
        "status": payment.status,
        "status_detail": payment.status_detail,
        "orders": [],
    }
    if not payment.approved:
        logger.info("direct_charge_not_approved payment_id=%s status=%s", payment.id, payment.status)
        return body, 200

    claim = ledger.claim_payment(payment.id, provider=provider.name, source=DIRECT_CHARGE_FLOW)
    if not claim.acquired:
        body["duplicate"] = True
        body["order_ids"] = claim.row.order_id_list() if claim.row is not None else []
        return body, 200

    try:
        result = run_fulfillment(ctx.party, OrderStatus.PAID, payment_id=payment.id)
    except OrderCreationError as exc:
        ledger.mark_failed(claim.row, exc.message, [o.order_id for o in exc.created])
        body.update({"ok": False, "error": exc.code, "message": exc.message, "orders": [o.to_dict() for o in exc.created]})
        return body, 500
    except MarketplaceError as exc:
        ledger.mark_failed(claim.row, exc.message)
        body.update({"ok": False, "error": exc.code, "message": exc.message})
        return body, 500

    ledger.mark_completed(claim.row, result.order_ids)
    body.update(result.to_dict())
    return body, 200
