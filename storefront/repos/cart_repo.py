# storefront/repos/cart_repo.py
from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart_by_user(self, user_id: str) -> CartModel | None:
        return self.db.execute(
            select(CartModel).where(CartModel.user_id == user_id)
        ).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def get_cart_items(self, cart_id: str) -> list[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel)
                .where(CartItemModel.cart_id == cart_id)
                .order_by(CartItemModel.created_at, CartItemModel.id)
            ).scalars().all()
        )

    def get_cart_item(self, item_id: str) -> CartItemModel | None:
        return self.db.get(CartItemModel, item_id)

    def find_cart_item(
        self, cart_id: str, product_id: str, selected_color: str | None
    ) -> CartItemModel | None:
        stmt = select(CartItemModel).where(
            CartItemModel.cart_id == cart_id,
            CartItemModel.product_id == product_id,
        )
        if selected_color is None:
            stmt = stmt.where(CartItemModel.selected_color.is_(None))
        else:
            stmt = stmt.where(CartItemModel.selected_color == selected_color)
        return self.db.execute(stmt).scalars().first()

    def add_cart_item(self, item: CartItemModel) -> None:
        self.db.add(item)

    def delete_cart_item(self, item: CartItemModel) -> None:
        self.db.delete(item)

    def delete_matching_items(
        self, cart_id: str, product_id: str, selected_color: str | None
    ) -> int:
        stmt = delete(CartItemModel).where(
            CartItemModel.cart_id == cart_id,
            CartItemModel.product_id == product_id,
        )
        if selected_color is None:
            stmt = stmt.where(CartItemModel.selected_color.is_(None))
        else:
            stmt = stmt.where(CartItemModel.selected_color == selected_color)
        return self.db.execute(stmt.execution_options(synchronize_session=False)).rowcount

    def delete_all_items(self, cart_id: str) -> int:
        return self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.cart_id == cart_id)
            .execution_options(synchronize_session=False)
        ).rowcount

    def update_cart_version(self, cart_id: str, old_version: int, new_data: dict) -> int:
        # UPDATE carts SET version = old + 1 ... WHERE id = :id AND version = :old
        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def expire(self, obj) -> None:
        self.db.expire(obj)
