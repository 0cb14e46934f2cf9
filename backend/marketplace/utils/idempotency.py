from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime
from typing import Any

from flask import has_request_context, request

from marketplace.extensions import db
from marketplace.models import IdempotencyKey


def idempotency_enforced() -> bool:
    raw = (os.getenv("ENABLE_IDEMPOTENCY_ENFORCEMENT") or "").strip().lower()
    return raw in ("1", "true", "yes", "on")


def _canonical_json(payload: Any) -> str:
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(payload)


def _request_method() -> str:
    if has_request_context():
        return str(request.method or "").strip().upper() or "POST"
    return "POST"


def _hash_request(*, method: str, scope: str, subject: str, payload: Any) -> str:
    canonical = _canonical_json(payload)
    raw = f"{method.strip().upper()}|{scope.strip()}|{subject}|{canonical}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    if not has_request_context():
        return None
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128] or None


def _required_key_response(scope: str) -> tuple[str, dict, int]:
    return (
        "required",
        {
            "ok": False,
            "error": "IDEMPOTENCY_KEY_REQUIRED",
            "message": f"Idempotency-Key header is required for {scope or 'this operation'}.",
        },
        400,
    )


def _reuse_conflict_response() -> tuple[str, dict, int]:
    return (
        "conflict",
        {
            "ok": False,
            "error": "IDEMPOTENCY_KEY_REUSE",
            "message": "This Idempotency-Key was already used with a different request payload.",
        },
        409,
    )


def lookup_response(
    subject: str | None,
    scope: str,
    payload: Any,
    *,
    idempotency_key: str | None = None,
    require_header: bool | None = None,
):
    """Check a keyed request against earlier attempts.

    Returns None when the caller sent no key (or ("required", body, 400) when
    keys are enforced), ("hit", body, status) for a replay,
    ("conflict", body, 409) when the key was used with another payload, and
    ("miss", row, 0) after reserving the key for this attempt.
    """
    k = (idempotency_key or get_idempotency_key() or "").strip()[:128]
    if not k:
        should_require = idempotency_enforced() if require_header is None else bool(require_header)
        if should_require:
            return _required_key_response(scope)
        return None

    subject_key = str(subject or "")[:80]
    req_hash = _hash_request(method=_request_method(), scope=scope, subject=subject_key, payload=payload)
    row = IdempotencyKey.query.filter_by(scope=scope, key=k).first()
    if row:
        if (row.request_hash or "").strip() and str(row.request_hash).strip() != req_hash:
            return _reuse_conflict_response()
        if row.response_json:
            try:
                return ("hit", json.loads(row.response_json), int(row.status_code or 200))
            except ValueError:
                return ("hit", {"ok": True}, int(row.status_code or 200))
        return (
            "conflict",
            {"ok": False, "error": "IDEMPOTENCY_IN_PROGRESS", "message": "A request with this key is still running."},
            409,
        )

    row = IdempotencyKey(
        key=k,
        scope=scope,
        subject=subject_key or None,
        request_hash=req_hash,
        response_json=None,
        status_code=200,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.session.add(row)
    db.session.commit()
    return ("miss", row, 0)


def store_response(row: IdempotencyKey, response_json: Any, status_code: int):
    try:
        row.response_json = json.dumps(response_json, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        row.response_json = json.dumps({"ok": True})
    row.status_code = int(status_code or 200)
    row.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()


def release_key(row: IdempotencyKey) -> None:
    """Forget a reservation whose attempt failed, so the client may retry with the same key."""
    try:
        db.session.delete(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
