class CartSyncError(Exception):
    """Mutacja koszyka nie zostala potwierdzona przez backend."""


class TransportFailure(CartSyncError):
    pass


class LocalStorageFailure(CartSyncError):
    pass


class LineNotFound(CartSyncError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Item not found in cart")
