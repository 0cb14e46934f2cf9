from __future__ import annotations

import uuid

from marketplace.integrations.common import ProviderError
from marketplace.integrations.payments.base import (
    PaymentSnapshot,
    PaymentsProvider,
    PreapprovalResult,
    PreferenceResult,
)


class MockPaymentsProvider(PaymentsProvider):
    """In-process provider for dev and tests.

    Payments are scripted through `payments`; unknown ids raise a 404 ProviderError.
    """

    name = "mock"
    environment = "sandbox"

    def __init__(self, payments: dict | None = None, *, direct_status: str = "approved"):
        self.payments: dict[str, PaymentSnapshot] = dict(payments or {})
        self.preapprovals: dict[str, PreapprovalResult] = {}
        self.direct_status = direct_status
        self.calls: list[tuple[str, dict]] = []

    def script_payment(self, payment_id: str, status: str, metadata: dict | None = None, status_detail: str = "") -> PaymentSnapshot:
        snap = PaymentSnapshot(
            id=str(payment_id),
            status=status,
            status_detail=status_detail or status,
            metadata=dict(metadata or {}),
        )
        self.payments[str(payment_id)] = snap
        return snap

    def create_preference(self, *, items, payer, back_urls, notification_url, metadata, external_reference=""):
        pref_id = f"pref_{uuid.uuid4().hex[:12]}"
        self.calls.append(
            (
                "create_preference",
                {
                    "items": items,
                    "payer": payer,
                    "back_urls": back_urls,
                    "notification_url": notification_url,
                    "metadata": metadata,
                    "external_reference": external_reference,
                },
            )
        )
        return PreferenceResult(
            redirect_url=f"https://example.com/mock/checkout?pref_id={pref_id}",
            preference_id=pref_id,
            provider=self.name,
            raw={"id": pref_id},
        )

    def get_payment(self, payment_id):
        self.calls.append(("get_payment", {"payment_id": payment_id}))
        snap = self.payments.get(str(payment_id))
        if snap is None:
            raise ProviderError(self.name, 404, "payment not found")
        return snap

    def create_direct_payment(self, *, token, amount, payment_method_id, installments, payer, metadata, issuer_id=None, idempotency_key=None):
        payment_id = f"mock_{uuid.uuid4().hex[:10]}"
        self.calls.append(
            (
                "create_direct_payment",
                {
                    "token": token,
                    "amount": amount,
                    "payment_method_id": payment_method_id,
                    "installments": installments,
                    "payer": payer,
                    "metadata": metadata,
                    "idempotency_key": idempotency_key,
                },
            )
        )
        return self.script_payment(payment_id, self.direct_status, metadata)

    def create_preapproval(self, *, reason, payer_email, card_token_id, amount, frequency, frequency_type, external_reference="", back_url=""):
        pre_id = f"pre_{uuid.uuid4().hex[:10]}"
        self.calls.append(
            (
                "create_preapproval",
                {
                    "reason": reason,
                    "payer_email": payer_email,
                    "amount": amount,
                    "frequency": frequency,
                    "frequency_type": frequency_type,
                    "external_reference": external_reference,
                },
            )
        )
        result = PreapprovalResult(id=pre_id, status="authorized", init_point=f"https://example.com/mock/preapproval/{pre_id}")
        self.preapprovals[pre_id] = result
        return result

    def get_preapproval(self, preapproval_id):
        self.calls.append(("get_preapproval", {"preapproval_id": preapproval_id}))
        result = self.preapprovals.get(str(preapproval_id))
        if result is None:
            raise ProviderError(self.name, 404, "preapproval not found")
        return result
