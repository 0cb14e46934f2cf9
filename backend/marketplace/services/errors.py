from __future__ import annotations


class MarketplaceError(Exception):
    code = "MARKETPLACE_ERROR"
    http_status = 400

    def __init__(self, message: str = ""):
        self.message = message or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message}


class CartLoadError(MarketplaceError):
    code = "CART_LOAD_FAILED"
    http_status = 500


class InsufficientStockError(MarketplaceError):
    code = "INSUFFICIENT_STOCK"
    http_status = 400

    def __init__(self, product_id, message: str = ""):
        self.product_id = product_id
        super().__init__(message or f"Insufficient stock for product {product_id}")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["product_id"] = self.product_id
        return out


class NothingToCheckoutError(MarketplaceError):
    code = "NOTHING_TO_CHECKOUT"
    http_status = 400


class PostalCodeRequiredError(MarketplaceError):
    code = "POSTAL_CODE_REQUIRED"
    http_status = 400


class OrderCreationError(MarketplaceError):
    code = "ORDER_CREATION_FAILED"
    http_status = 500

    def __init__(self, store_id, message: str = "", *, created=None):
        self.store_id = store_id
        self.created = list(created or [])
        super().__init__(message or f"Could not create order for store {store_id}")


class InvalidTransitionError(MarketplaceError):
    code = "INVALID_TRANSITION"
    http_status = 409


class ShippingTokenMissingError(MarketplaceError):
    code = "SHIPPING_NOT_CONNECTED"
    http_status = 400

    def __init__(self, store_id, message: str = ""):
        self.store_id = store_id
        super().__init__(message or f"Store {store_id} has no shipping account connected")


class OAuthStateError(MarketplaceError):
    code = "INVALID_OAUTH_STATE"
    http_status = 400


class LabelPipelineError(MarketplaceError):
    code = "LABEL_PIPELINE_FAILED"
    http_status = 502

    def __init__(self, step: str, message: str = ""):
        self.step = step
        super().__init__(message or f"Label pipeline failed at {step}")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["step"] = self.step
        return out
