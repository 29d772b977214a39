from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import (
    CartAccessDenied,
    CartConflict,
    CartLineNotFound,
    ProductNotFound,
)
from storefront.repos.cart_repo import CartRepo
from storefront.repos.catalog_repo import CatalogRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartService:
    """
    Koszyk przypisany do uzytkownika (tryb bound).
    query (get_cart) tylko odczyt, commands (add, update, remove, clear) modyfikuja stan
    i podbijaja wersje koszyka (optimistic locking).
    """

    def __init__(self, db: Session):
        self.repo = CartRepo(db)
        self.catalog = CatalogRepo(db)

    #query - odczyt
    def get_cart(self, user_id: str) -> Dict[str, Any]:
        cart = self._get_or_create(user_id)
        return self._materialize(cart)

    #commands
    def add_item(
        self,
        user_id: str,
        product_id: str,
        quantity: int = 1,
        selected_color: str | None = None,
    ) -> Dict[str, Any]:
        if quantity <= 0:
            raise ValueError("Quantity must be greater than 0")

        product = self.catalog.get_product(product_id)
        if not product:
            raise ProductNotFound(product_id)

        cart = self._get_or_create(user_id)
        now = datetime.now(timezone.utc)

        existing_item = self.repo.find_cart_item(cart.id, product_id, selected_color)

        if existing_item:
            logger.info(
                f"Product {product_id} ({selected_color}) already in cart {cart.id}, "
                f"quantity {existing_item.quantity} -> {existing_item.quantity + quantity}"
            )
            existing_item.quantity += quantity
            existing_item.updated_at = now
        else:
            logger.info(f"Adding product {product_id} ({selected_color}) to cart {cart.id}")
            self.repo.add_cart_item(
                CartItemModel(
                    cart_id=cart.id,
                    product_id=product_id,
                    selected_color=selected_color,
                    quantity=quantity,
                    created_at=now,
                    updated_at=now,
                )
            )

        self._bump_version(cart, now)
        return self._materialize(cart)

    def update_item_quantity(self, user_id: str, line_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")

        item = self.repo.get_cart_item(line_id)
        if not item:
            raise CartLineNotFound(line_id)

        if item.cart.user_id != user_id:
            raise CartAccessDenied("Cart item does not belong to this user")

        cart = item.cart
        now = datetime.now(timezone.utc)

        logger.info(f"Cart {cart.id}: line {line_id} quantity {item.quantity} -> {quantity}")
        item.quantity = quantity
        item.updated_at = now

        self._bump_version(cart, now)
        return self._materialize(cart)

    def remove_item(
        self,
        user_id: str,
        product_id: str,
        selected_color: str | None = None,
        line_id: str | None = None,
    ) -> Dict[str, Any]:
        cart = self._get_or_create(user_id)
        now = datetime.now(timezone.utc)

        #line_id ma pierwszenstwo przed (product_id, selected_color)
        if line_id:
            item = self.repo.get_cart_item(line_id)
            if item and item.cart_id != cart.id:
                raise CartAccessDenied("Cart item does not belong to this user")
            if item:
                logger.info(f"Removing line {line_id} from cart {cart.id}")
                self.repo.delete_cart_item(item)
        else:
            removed = self.repo.delete_matching_items(cart.id, product_id, selected_color)
            logger.info(
                f"Removed {removed} line(s) of product {product_id} ({selected_color}) from cart {cart.id}"
            )

        self._bump_version(cart, now)
        return self._materialize(cart)

    def clear_cart(self, user_id: str) -> None:
        cart = self.repo.get_cart_by_user(user_id)
        if not cart:
            return

        removed = self.repo.delete_all_items(cart.id)
        self._bump_version(cart, datetime.now(timezone.utc))
        logger.info(f"Cart {cart.id} cleared, {removed} line(s) removed")

    def _get_or_create(self, user_id: str) -> CartModel:
        cart = self.repo.get_cart_by_user(user_id)
        if cart:
            return cart

        try:
            created = self.repo.create_cart(CartModel(user_id=user_id, version=1))
        except IntegrityError:
            # rownolegly request zalozyl koszyk pierwszy (unique user_id)
            self.repo.rollback()
            logger.info(f"Cart for user {user_id} created concurrently, reusing it")
            return self.repo.get_cart_by_user(user_id)

        logger.info(f"Created cart {created.id} for user {user_id}")
        return created

    def _bump_version(self, cart: CartModel, now: datetime) -> None:
        # Optimistic locking: update set version = v+1 where id = :id and version = v
        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=cart.version,
            new_data={"version": cart.version + 1, "updated_at": now},
        )

        if rowcount == 0:
            self.repo.rollback()
            raise CartConflict()

        self.repo.commit()
        self.repo.expire(cart)

    def _materialize(self, cart: CartModel) -> Dict[str, Any]:
        items = self.repo.get_cart_items(cart.id)
        products = self.catalog.get_products(i.product_id for i in items)

        lines = []
        for i in items:
            product = products.get(i.product_id)
            if not product:
                # produkt zniknal z katalogu - pomijamy w widoku i totalach
                logger.warning(f"Product {i.product_id} for cart line {i.id} not found, skipping")
                continue

            lines.append(
                {
                    "line_id": i.id,
                    "product": {
                        "id": product.id,
                        "name": product.name,
                        "price": product.price,
                        "image": product.image,
                        "stock": product.stock,
                    },
                    "quantity": i.quantity,
                    "selected_color": i.selected_color,
                    "created_at": i.created_at,
                    "updated_at": i.updated_at,
                }
            )

        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "items": lines,
            "total_items": sum(line["quantity"] for line in lines),
            "total_price": sum(
                (Decimal(line["product"]["price"]) * line["quantity"] for line in lines),
                Decimal("0.00"),
            ),
            "version": cart.version,
            "updated_at": cart.updated_at,
        }
