from storefront.client.backends import (
    CartBackend,
    LocalCartBackend,
    ServerCartBackend,
    select_backend,
)
from storefront.client.cart_store import CartStore
from storefront.client.errors import CartSyncError, LineNotFound, LocalStorageFailure, TransportFailure
from storefront.client.storage import LocalStorage

__all__ = [
    "CartBackend",
    "CartStore",
    "CartSyncError",
    "LineNotFound",
    "LocalCartBackend",
    "LocalStorage",
    "LocalStorageFailure",
    "ServerCartBackend",
    "TransportFailure",
    "select_backend",
]
