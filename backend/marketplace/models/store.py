from __future__ import annotations

import uuid
from datetime import datetime

from marketplace.extensions import db
from marketplace.utils.request_context import PartyRef


class Store(db.Model):
    __tablename__ = "stores"

    id = db.Column(db.String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    owner_type = db.Column(db.String(2), nullable=False)
    name = db.Column(db.String(160), nullable=False, default="")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def owner(self) -> PartyRef:
        return PartyRef(self.owner_type, self.owner_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name or "",
            "owner_id": self.owner_id,
            "owner_type": self.owner_type,
        }
