# storefront/domain/errors.py
"""
Bledy domenowe storefrontu.

Walidacja zamowienia (MissingFields, InvalidPaymentMethod, ProofRequired,
ProductNotFound, InsufficientStock) jest zglaszana przed jakimkolwiek zapisem,
routery mapuja je na kody HTTP.
"""


class StorefrontError(Exception):
    pass


class OrderValidationError(StorefrontError):
    pass


class MissingFields(OrderValidationError):
    def __init__(self, details: dict):
        self.details = details
        super().__init__("Missing required fields")


class InvalidPaymentMethod(OrderValidationError):
    def __init__(self, payment_method):
        self.payment_method = payment_method
        super().__init__(f"Unsupported payment method: {payment_method}")


class ProofRequired(OrderValidationError):
    def __init__(self):
        super().__init__("Slip image is required for bank transfer")


class ProductNotFound(StorefrontError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class InsufficientStock(OrderValidationError):
    def __init__(self, product_id: str, available: int, requested: int, name: str | None = None):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for product {name or product_id}")


class CheckoutInProgress(StorefrontError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Another checkout for user {user_id} is in progress")


class OrderNotFound(StorefrontError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class OrderAccessDenied(StorefrontError, PermissionError):
    pass


class IllegalStatusTransition(StorefrontError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")


class StatusConflict(StorefrontError):
    pass


class CartAccessDenied(StorefrontError, PermissionError):
    pass


class CartLineNotFound(StorefrontError):
    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__("Cart item not found")


class CartConflict(StorefrontError):
    def __init__(self):
        super().__init__("Cart was modified by another operation")


class PersistenceFailure(StorefrontError):
    pass
