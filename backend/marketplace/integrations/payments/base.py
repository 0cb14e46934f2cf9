from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PreferenceResult:
    redirect_url: str
    preference_id: str
    provider: str
    raw: dict | None = None


@dataclass
class PaymentSnapshot:
    id: str
    status: str
    status_detail: str = ""
    metadata: dict = field(default_factory=dict)
    external_reference: str = ""
    raw: dict | None = None

    @property
    def approved(self) -> bool:
        return self.status == "approved"


@dataclass
class PreapprovalResult:
    id: str
    status: str
    init_point: str = ""
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"
    environment = "sandbox"

    def create_preference(
        self,
        *,
        items: list[dict],
        payer: dict,
        back_urls: dict,
        notification_url: str,
        metadata: dict,
        external_reference: str = "",
    ) -> PreferenceResult:
        raise NotImplementedError

    def get_payment(self, payment_id: str) -> PaymentSnapshot:
        raise NotImplementedError

    def create_direct_payment(
        self,
        *,
        token: str,
        amount,
        payment_method_id: str,
        installments: int,
        payer: dict,
        metadata: dict,
        issuer_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentSnapshot:
        raise NotImplementedError

    def create_preapproval(
        self,
        *,
        reason: str,
        payer_email: str,
        card_token_id: str,
        amount,
        frequency: int,
        frequency_type: str,
        external_reference: str = "",
        back_url: str = "",
    ) -> PreapprovalResult:
        raise NotImplementedError

    def get_preapproval(self, preapproval_id: str) -> PreapprovalResult:
        raise NotImplementedError
