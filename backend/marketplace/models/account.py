from __future__ import annotations

import re
from datetime import datetime

from marketplace.extensions import db
from marketplace.utils.request_context import AccountKind, PartyRef


def only_digits(value) -> str:
    return re.sub(r"\D+", "", str(value or ""))


class _ContactAddressColumns:
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    postal_code = db.Column(db.String(16), nullable=True)
    street = db.Column(db.String(160), nullable=True)
    number = db.Column(db.String(16), nullable=True)
    complement = db.Column(db.String(80), nullable=True)
    district = db.Column(db.String(80), nullable=True)
    city = db.Column(db.String(80), nullable=True)
    state_abbr = db.Column(db.String(2), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def address_dict(self) -> dict:
        return {
            "postal_code": only_digits(self.postal_code),
            "address": self.street or "",
            "number": self.number or "",
            "complement": self.complement or "",
            "district": self.district or "",
            "city": self.city or "",
            "state_abbr": (self.state_abbr or "").upper(),
        }


class AccountPF(_ContactAddressColumns, db.Model):
    """Individual person account (CPF)."""

    __tablename__ = "accounts_pf"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(160), nullable=False, default="")
    cpf = db.Column(db.String(20), nullable=True)

    @property
    def party(self) -> PartyRef:
        return PartyRef(AccountKind.PF, self.id)

    @property
    def display_name(self) -> str:
        return self.name or ""

    def identification(self) -> dict:
        return {"type": "CPF", "number": only_digits(self.cpf)}


class AccountPJ(_ContactAddressColumns, db.Model):
    """Business account (CNPJ)."""

    __tablename__ = "accounts_pj"

    id = db.Column(db.String(64), primary_key=True)
    company_name = db.Column(db.String(160), nullable=False, default="")
    trade_name = db.Column(db.String(160), nullable=True)
    cnpj = db.Column(db.String(20), nullable=True)
    state_register = db.Column(db.String(32), nullable=True)

    @property
    def party(self) -> PartyRef:
        return PartyRef(AccountKind.PJ, self.id)

    @property
    def display_name(self) -> str:
        return self.trade_name or self.company_name or ""

    def identification(self) -> dict:
        return {"type": "CNPJ", "number": only_digits(self.cnpj)}


def profile_model_for(kind: str):
    kind = AccountKind.parse(kind)
    if kind == AccountKind.PF:
        return AccountPF
    if kind == AccountKind.PJ:
        return AccountPJ
    raise ValueError(f"invalid_account_kind {kind!r}")


def load_profile(party: PartyRef | None):
    if party is None:
        return None
    return db.session.get(profile_model_for(party.kind), party.id)
