from __future__ import annotations

import os
from decimal import Decimal

from marketplace import create_app
from marketplace.extensions import db
from marketplace.models import AccountPF, AccountPJ, CartLine, Product, Store
from marketplace.utils.jwt_utils import create_access_token
from marketplace.utils.request_context import PartyRef

BUYER = PartyRef("pf", "buyer-1")
SELLER_ONE = PartyRef("pf", "seller-1")
SELLER_TWO = PartyRef("pj", "seller-2")

STORE_ONE = "abcd-1234-efgh"
STORE_TWO = "wxyz-5678-ijkl"

_ENV_KEYS = (
    "SQLALCHEMY_DATABASE_URI",
    "DATABASE_URL",
    "MARKETPLACE_ENV",
    "PAYMENTS_PROVIDER",
    "SHIPPING_PROVIDER",
    "MP_WEBHOOK_SECRET",
    "MP_RESULT_URL",
    "MP_WEBHOOK_URL",
    "PAYMENT_WEBHOOK_QUEUE",
    "ENABLE_IDEMPOTENCY_ENFORCEMENT",
    "REQUIRE_SELLER_SUBSCRIPTION",
)


class AppTestMixin:
    """Builds one app per test class on in-memory SQLite and resets the schema per test."""

    @classmethod
    def setUpClass(cls):
        cls._saved_env = {key: os.getenv(key) for key in _ENV_KEYS}
        db_uri = "sqlite:///:memory:"
        os.environ["SQLALCHEMY_DATABASE_URI"] = db_uri
        os.environ["DATABASE_URL"] = db_uri
        os.environ["MARKETPLACE_ENV"] = "test"
        os.environ["PAYMENTS_PROVIDER"] = "mock"
        os.environ["SHIPPING_PROVIDER"] = "mock"
        os.environ["MP_RESULT_URL"] = "https://shop.example.com/checkout/result"
        os.environ["MP_WEBHOOK_URL"] = "https://shop.example.com/api/payments/webhook"
        for key in ("MP_WEBHOOK_SECRET", "PAYMENT_WEBHOOK_QUEUE", "ENABLE_IDEMPOTENCY_ENFORCEMENT", "REQUIRE_SELLER_SUBSCRIPTION"):
            os.environ.pop(key, None)
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.session.remove()
        db.drop_all()
        db.create_all()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def auth_headers(self, party: PartyRef = BUYER) -> dict:
        return {"Authorization": f"Bearer {create_access_token(party, email=f'{party.id}@example.com')}"}


def seed_accounts():
    db.session.add(
        AccountPF(
            id=BUYER.id,
            name="Ana Compradora",
            cpf="529.982.247-25",
            email="ana@example.com",
            phone="11999990000",
            postal_code="01310-100",
            street="Av. Paulista",
            number="1000",
            district="Bela Vista",
            city="Sao Paulo",
            state_abbr="SP",
        )
    )
    db.session.add(
        AccountPF(
            id=SELLER_ONE.id,
            name="Bruno Vendedor",
            cpf="111.444.777-35",
            email="bruno@example.com",
            postal_code="20040-002",
            street="Rua da Quitanda",
            number="50",
            district="Centro",
            city="Rio de Janeiro",
            state_abbr="RJ",
        )
    )
    db.session.add(
        AccountPJ(
            id=SELLER_TWO.id,
            company_name="Casa Verde Ltda",
            trade_name="Casa Verde",
            cnpj="11.222.333/0001-81",
            state_register="123456789",
            email="contato@casaverde.example.com",
            postal_code="30130-010",
            street="Av. Afonso Pena",
            number="200",
            district="Centro",
            city="Belo Horizonte",
            state_abbr="MG",
        )
    )
    db.session.commit()


def seed_catalog(*, stock_a=5, stock_b=3) -> tuple[int, int]:
    """Two stores with one product each: A (50.00) in store one, B (30.00) in store two."""
    db.session.add(Store(id=STORE_ONE, owner_id=SELLER_ONE.id, owner_type=SELLER_ONE.kind, name="Loja Um"))
    db.session.add(Store(id=STORE_TWO, owner_id=SELLER_TWO.id, owner_type=SELLER_TWO.kind, name="Loja Dois"))
    db.session.flush()
    product_a = Product(
        name="Produto A",
        price=Decimal("50.00"),
        stock_quantity=stock_a,
        owner_id=SELLER_ONE.id,
        owner_type=SELLER_ONE.kind,
        store_id=STORE_ONE,
        image_urls="https://cdn.example.com/a.jpg,https://cdn.example.com/a2.jpg",
        weight_kg=0.5,
    )
    product_b = Product(
        name="Produto B",
        price=Decimal("30.00"),
        stock_quantity=stock_b,
        owner_id=SELLER_TWO.id,
        owner_type=SELLER_TWO.kind,
        store_id=STORE_TWO,
    )
    db.session.add_all([product_a, product_b])
    db.session.commit()
    return int(product_a.id), int(product_b.id)


def fill_cart(buyer: PartyRef, lines: list[tuple[int, int]]):
    for product_id, quantity in lines:
        db.session.add(CartLine(buyer_id=buyer.id, buyer_type=buyer.kind, product_id=product_id, quantity=quantity))
    db.session.commit()


def seed_standard_cart() -> tuple[int, int]:
    seed_accounts()
    product_a, product_b = seed_catalog()
    fill_cart(BUYER, [(product_a, 2), (product_b, 1)])
    return product_a, product_b


def buyer_metadata(buyer: PartyRef = BUYER) -> dict:
    return {"buyer_id": buyer.id, "buyer_type": buyer.kind, "mp_env": "sandbox"}
