from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import jsonify, request

from marketplace.utils.jwt_utils import decode_token, get_bearer_token
from marketplace.utils.observability import get_request_id


class AccountKind:
    PF = "pf"
    PJ = "pj"

    ALL = (PF, PJ)

    @staticmethod
    def parse(value) -> str:
        kind = str(value or "").strip().lower()
        if kind not in AccountKind.ALL:
            raise ValueError(f"invalid_account_kind {value!r}")
        return kind


@dataclass(frozen=True)
class PartyRef:
    """A buyer or seller identity: an individual (PF) or a business (PJ) account."""

    kind: str
    id: str

    def __post_init__(self):
        object.__setattr__(self, "kind", AccountKind.parse(self.kind))
        ident = str(self.id or "").strip()
        if not ident:
            raise ValueError("party id required")
        object.__setattr__(self, "id", ident)

    def slots(self) -> tuple[str | None, str | None]:
        """Return (pf_id, pj_id) with exactly one side set."""
        if self.kind == AccountKind.PF:
            return self.id, None
        if self.kind == AccountKind.PJ:
            return None, self.id
        raise ValueError(f"invalid_account_kind {self.kind!r}")

    @classmethod
    def from_slots(cls, pf_id, pj_id) -> PartyRef | None:
        if pf_id and pj_id:
            raise ValueError("party has both pf and pj ids")
        if pf_id:
            return cls(AccountKind.PF, str(pf_id))
        if pj_id:
            return cls(AccountKind.PJ, str(pj_id))
        return None

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"


BuyerRef = PartyRef


@dataclass(frozen=True)
class RequestContext:
    party: PartyRef
    email: str = ""
    name: str = ""
    request_id: str = ""


def _token_from_request() -> str | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if token:
        return token
    cookie = (request.cookies.get("access_token") or "").strip()
    return cookie or None


def resolve_request_context() -> RequestContext | None:
    token = _token_from_request()
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        party = PartyRef(payload.get("kind"), payload.get("sub"))
    except ValueError:
        return None
    return RequestContext(
        party=party,
        email=str(payload.get("email") or "").strip(),
        name=str(payload.get("name") or "").strip(),
        request_id=get_request_id(),
    )


def requires_context(view):
    """Resolve the caller and pass it as the first positional argument."""

    @wraps(view)
    def _wrapped(*args, **kwargs):
        ctx = resolve_request_context()
        if ctx is None:
            return jsonify({"ok": False, "error": "UNAUTHORIZED", "message": "Valid session required"}), 401
        return view(ctx, *args, **kwargs)

    return _wrapped
