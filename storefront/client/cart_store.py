# storefront/client/cart_store.py
from decimal import Decimal
from typing import Awaitable, Callable, Sequence

from storefront.client import lines as cart_lines
from storefront.client.backends import CartBackend, LocalCartBackend
from storefront.client.errors import CartSyncError, LineNotFound
from storefront.client.lines import CartSnapshot
from storefront.domain.schemas import CartLine, ProductSnapshot
from storefront.utils.settings import SHIPPING_FEE
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartStore:
    """
    Koszyk po stronie klienta, niezalezny od backendu (anonimowy / bound).

    Kazda mutacja: snapshot -> optimistic apply -> potwierdzenie backendu ->
    (potwierdzona lista | przywrocenie snapshotu + error). Bez automatycznego retry.
    Rownolegle, nieczekane mutacje: last write wins.
    """

    def __init__(self, backend: CartBackend):
        self.backend = backend
        self.items: list[CartLine] = []
        self.loading = False
        self.error: str | None = None

    @property
    def mode(self) -> str:
        return self.backend.mode

    @property
    def total_items(self) -> int:
        return cart_lines.total_items(self.items)

    @property
    def total_price(self) -> Decimal:
        return cart_lines.total_price(self.items)

    @property
    def checkout_total(self) -> Decimal:
        if not self.items:
            return Decimal("0.00")
        return self.total_price + SHIPPING_FEE

    async def load(self) -> list[CartLine]:
        self.loading = True
        self.error = None
        try:
            self.items = await self.backend.load()
        except CartSyncError as e:
            logger.error(f"Error fetching cart: {e}")
            self.items = []
            self.error = str(e)
            raise
        finally:
            self.loading = False
        return self.items

    async def add_item(
        self,
        product: ProductSnapshot,
        quantity: int = 1,
        selected_color: str | None = None,
    ) -> list[CartLine]:
        return await self._mutate(
            "add item",
            lambda current: cart_lines.add_line(current, product, quantity, selected_color),
            lambda optimistic: self.backend.add_item(optimistic, product, quantity, selected_color),
            resync=True,
        )

    async def update_quantity(self, product_id: str, quantity: int) -> list[CartLine]:
        # dolna granica (>= 1) to odpowiedzialnosc wywolujacego, store tylko przekazuje
        line = cart_lines.find_line(self.items, product_id, any_color=True)
        if line is None:
            self.error = "Item not found in cart"
            raise LineNotFound(product_id)

        return await self._mutate(
            "update quantity",
            lambda current: cart_lines.set_quantity(current, product_id, quantity),
            lambda optimistic: self.backend.update_quantity(optimistic, line, quantity),
        )

    async def remove_item(
        self,
        product_id: str,
        selected_color: str | None = None,
        line_id: str | None = None,
    ) -> list[CartLine]:
        return await self._mutate(
            "remove item",
            lambda current: cart_lines.remove_lines(current, product_id, selected_color, line_id),
            lambda optimistic: self.backend.remove_item(optimistic, product_id, selected_color, line_id),
        )

    async def clear_cart(self) -> list[CartLine]:
        async def confirm(optimistic):
            await self.backend.clear()
            return []

        return await self._mutate("clear cart", lambda current: [], confirm)

    async def adopt(self, backend: CartBackend) -> list[CartLine]:
        """
        Zmiana backendu w trakcie sesji (logowanie / wylogowanie).
        Przy przejsciu anonim -> bound pozycje anonimowe sa dokladane do koszyka
        na serwerze (serwer laczy po (produkt, kolor)), potem lokalny klucz jest usuwany.
        Przy bledzie zostaje stary backend i jego pozycje.
        """
        merging = isinstance(self.backend, LocalCartBackend) and not isinstance(backend, LocalCartBackend)
        pending = list(self.items) if merging else []

        self.loading = True
        self.error = None
        try:
            confirmed = await backend.load()
            while pending:
                line = pending[0]
                confirmed = await backend.add_item(confirmed, line.product, line.quantity, line.selected_color)
                pending.pop(0)
                # to co juz jest na serwerze nie moze zostac w lokalnym koszyku
                self.items = self.backend.save(pending)
            if merging:
                await self.backend.clear()
        except CartSyncError as e:
            logger.error(f"Switching cart to {backend.mode} failed: {e}")
            self.error = str(e)
            raise
        finally:
            self.loading = False

        logger.info(f"Cart switched {self.backend.mode} -> {backend.mode}, {len(confirmed)} line(s)")
        self.backend = backend
        self.items = confirmed
        return self.items

    async def _mutate(
        self,
        action: str,
        apply: Callable[[Sequence[CartLine]], list[CartLine]],
        confirm: Callable[[list[CartLine]], Awaitable[list[CartLine]]],
        resync: bool = False,
    ) -> list[CartLine]:
        snapshot = CartSnapshot.capture(self.items)

        self.loading = True
        self.error = None
        self.items = apply(snapshot.lines)
        try:
            confirmed = await confirm(self.items)
        except CartSyncError as e:
            logger.error(f"Cart {action} failed, reverting: {e}")
            self.items = snapshot.restore()
            self.error = str(e)
            if resync:
                await self._resync()
            raise
        finally:
            self.loading = False

        self.items = confirmed
        return self.items

    async def _resync(self) -> None:
        # ostatni potwierdzony stan backendu; jak sie nie uda zostaje snapshot
        try:
            self.items = await self.backend.load()
        except CartSyncError as e:
            logger.warning(f"Cart resync failed, keeping previous state: {e}")
