from __future__ import annotations

import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from marketplace.extensions import db
from marketplace.integrations.shipping.base import ShippingProvider, TokenGrant
from marketplace.models import ShippingOAuthState, ShippingToken, Store
from marketplace.services.errors import OAuthStateError, ShippingTokenMissingError
from marketplace.utils.request_context import PartyRef

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(minutes=5)
STATE_TTL = timedelta(minutes=10)


def _apply_grant(row: ShippingToken, grant: TokenGrant, now: datetime) -> None:
    row.access_token = grant.access_token
    if grant.refresh_token:
        row.refresh_token = grant.refresh_token
    row.token_type = grant.token_type or row.token_type
    row.scope = grant.scope or row.scope
    row.expires_in = int(grant.expires_in or 0)
    row.created_at = now
    row.expires_at = now + timedelta(seconds=int(grant.expires_in or 0))
    row.updated_at = now


def upsert_token(store_id: str, grant: TokenGrant, *, now: datetime | None = None) -> ShippingToken:
    """Write the store's token row; concurrent writers resolve as last-write-wins."""
    now = now or datetime.utcnow()
    row = ShippingToken.query.filter_by(store_id=store_id).first()
    if row is None:
        row = ShippingToken(store_id=store_id)
        _apply_grant(row, grant, now)
        db.session.add(row)
        try:
            db.session.commit()
            return row
        except IntegrityError:
            db.session.rollback()
            row = ShippingToken.query.filter_by(store_id=store_id).first()
            if row is None:
                raise
    _apply_grant(row, grant, now)
    db.session.add(row)
    db.session.commit()
    return row


def get_valid_access_token(store_id: str, provider: ShippingProvider, *, now: datetime | None = None) -> str:
    """Return a usable access token for the store, refreshing when it is within five minutes of expiry."""
    now = now or datetime.utcnow()
    row = ShippingToken.query.filter_by(store_id=store_id).first()
    if row is None or not row.access_token:
        raise ShippingTokenMissingError(store_id)

    remaining = row.seconds_remaining(now)
    if remaining > REFRESH_MARGIN.total_seconds():
        return row.access_token
    if not row.refresh_token:
        if remaining <= 0:
            logger.warning("shipping_token_expired_no_refresh store_id=%s", store_id)
            raise ShippingTokenMissingError(store_id, "Shipping token expired; reconnect the shipping account")
        return row.access_token

    logger.info("shipping_token_refresh store_id=%s remaining_s=%s", store_id, int(remaining))
    grant = provider.refresh(row.refresh_token)
    row = upsert_token(store_id, grant, now=now)
    return row.access_token


def store_owned_by(owner: PartyRef, store_id: str | None = None) -> Store | None:
    query = Store.query.filter_by(owner_id=owner.id, owner_type=owner.kind)
    if store_id:
        query = query.filter_by(id=store_id)
    return query.order_by(Store.created_at.asc()).first()


def begin_oauth(store: Store, owner: PartyRef, provider: ShippingProvider, *, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    state = f"{store.id}:{int(time.time() * 1000)}:{secrets.token_urlsafe(12)}"
    db.session.add(
        ShippingOAuthState(
            state=state,
            store_id=store.id,
            owner_key=owner.key,
            expires_at=now + STATE_TTL,
            created_at=now,
        )
    )
    db.session.commit()
    return provider.authorize_url(state)


def _consume_state(state: str, owner: PartyRef, now: datetime) -> ShippingOAuthState:
    if not state:
        raise OAuthStateError("Missing OAuth state")
    store_id = state.split(":", 1)[0]
    candidates = ShippingOAuthState.query.filter_by(store_id=store_id, owner_key=owner.key, consumed_at=None).all()
    match = None
    for candidate in candidates:
        if hmac.compare_digest(candidate.state.encode("utf-8"), state.encode("utf-8")):
            match = candidate
            break
    if match is None:
        raise OAuthStateError("OAuth state does not match this session")
    if match.expires_at < now:
        raise OAuthStateError("OAuth state expired")
    result = db.session.execute(
        update(ShippingOAuthState)
        .where(ShippingOAuthState.id == match.id)
        .where(ShippingOAuthState.consumed_at.is_(None))
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if result.rowcount != 1:
        raise OAuthStateError("OAuth state already used")
    return match


def complete_oauth(
    *,
    code: str,
    state: str,
    owner: PartyRef,
    provider: ShippingProvider,
    now: datetime | None = None,
) -> ShippingToken:
    """Validate the callback state and only then exchange the code."""
    now = now or datetime.utcnow()
    if not code:
        raise OAuthStateError("Missing authorization code")
    match = _consume_state(state, owner, now)
    grant = provider.exchange_code(code)
    row = upsert_token(match.store_id, grant, now=now)
    logger.info("shipping_oauth_connected store_id=%s expires_in=%s", match.store_id, grant.expires_in)
    return row
