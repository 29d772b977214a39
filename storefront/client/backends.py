# storefront/client/backends.py
import json
from abc import ABC, abstractmethod
from typing import Sequence

import httpx
from pydantic import TypeAdapter, ValidationError

from storefront.client.errors import LocalStorageFailure, TransportFailure
from storefront.client.storage import LocalStorage
from storefront.domain.schemas import CartLine, CartOut, ProductSnapshot
from storefront.domain.session import SessionIdentity
from storefront.utils.retry import http_retry
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

CART_KEY = "cart"

_lines_adapter = TypeAdapter(list[CartLine])


class CartBackend(ABC):
    """
    Miejsce przechowywania koszyka. Kazda mutacja dostaje juz zastosowana
    (optymistyczna) liste pozycji oraz intencje i zwraca potwierdzona liste.
    """

    mode: str

    @abstractmethod
    async def load(self) -> list[CartLine]: ...

    @abstractmethod
    async def add_item(
        self,
        lines: Sequence[CartLine],
        product: ProductSnapshot,
        quantity: int,
        selected_color: str | None,
    ) -> list[CartLine]: ...

    @abstractmethod
    async def update_quantity(
        self, lines: Sequence[CartLine], line: CartLine, quantity: int
    ) -> list[CartLine]: ...

    @abstractmethod
    async def remove_item(
        self,
        lines: Sequence[CartLine],
        product_id: str,
        selected_color: str | None,
        line_id: str | None,
    ) -> list[CartLine]: ...

    @abstractmethod
    async def clear(self) -> None: ...


class LocalCartBackend(CartBackend):
    """Koszyk anonimowy, tylko w lokalnym magazynie urzadzenia."""

    mode = "anonymous"

    def __init__(self, storage: LocalStorage, key: str = CART_KEY):
        self.storage = storage
        self.key = key

    async def load(self) -> list[CartLine]:
        try:
            raw = self.storage.get_item(self.key)
            if raw is None:
                return []
            return _lines_adapter.validate_json(raw)
        except (UnicodeDecodeError, ValidationError) as e:
            logger.error(f"Error parsing cart from local storage, discarding it: {e}")
            self._discard()
            return []
        except OSError as e:
            raise LocalStorageFailure(str(e)) from e

    def _discard(self) -> None:
        try:
            self.storage.remove_item(self.key)
        except OSError as e:
            raise LocalStorageFailure(str(e)) from e

    def save(self, lines: Sequence[CartLine]) -> list[CartLine]:
        data = [line.model_dump(mode="json") for line in lines]
        try:
            self.storage.set_item(self.key, json.dumps(data))
        except OSError as e:
            raise LocalStorageFailure(str(e)) from e
        return list(lines)

    async def add_item(self, lines, product, quantity, selected_color):
        return self.save(lines)

    async def update_quantity(self, lines, line, quantity):
        return self.save(lines)

    async def remove_item(self, lines, product_id, selected_color, line_id):
        return self.save(lines)

    async def clear(self) -> None:
        self._discard()


class ServerCartBackend(CartBackend):
    """Koszyk przypisany do uzytkownika, odpowiedz serwera jest zrodlem prawdy."""

    mode = "bound"

    def __init__(self, client: httpx.AsyncClient, user_id: str, role: str | None = None):
        self.client = client
        self.user_id = user_id
        self.headers = {"X-User-Id": user_id}
        if role:
            self.headers["X-User-Role"] = role

    @property
    def cart_url(self) -> str:
        return f"/carts/{self.user_id}"

    @http_retry()
    async def _get_cart(self) -> httpx.Response:
        return await self.client.get(self.cart_url, headers=self.headers)

    async def load(self) -> list[CartLine]:
        try:
            resp = await self._get_cart()
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportFailure(f"Failed to fetch cart: {e}") from e
        return self._parse(resp).items

    async def add_item(self, lines, product, quantity, selected_color):
        resp = await self._send(
            "POST",
            f"{self.cart_url}/items",
            {"product_id": product.id, "quantity": quantity, "selected_color": selected_color},
        )
        return self._parse(resp).items

    async def update_quantity(self, lines, line, quantity):
        resp = await self._send("PUT", f"{self.cart_url}/items/{line.line_id}", {"quantity": quantity})
        return self._parse(resp).items

    async def remove_item(self, lines, product_id, selected_color, line_id):
        resp = await self._send(
            "DELETE",
            f"{self.cart_url}/items/{product_id}",
            {"selected_color": selected_color, "line_id": line_id},
        )
        return self._parse(resp).items

    async def clear(self) -> None:
        await self._send("DELETE", self.cart_url)

    async def _send(self, method: str, url: str, body: dict | None = None) -> httpx.Response:
        # mutacje bez automatycznego retry
        logger.info(f"Cart {method} {url}")
        try:
            resp = await self.client.request(method, url, json=body, headers=self.headers)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportFailure(f"Cart {method} {url} failed: {e}") from e
        return resp

    @staticmethod
    def _parse(resp: httpx.Response) -> CartOut:
        try:
            return CartOut.model_validate(resp.json())
        except ValueError as e:
            raise TransportFailure("Invalid response from server") from e


def select_backend(
    identity: SessionIdentity,
    storage: LocalStorage,
    client: httpx.AsyncClient,
) -> CartBackend:
    """Wybor backendu raz, na starcie sesji."""
    if not identity.is_authenticated:
        return LocalCartBackend(storage)
    return ServerCartBackend(client, identity.user_id, identity.role)
