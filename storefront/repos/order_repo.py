# storefront/repos/order_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.order import OrderModel
from storefront.data.models.order_line import OrderLineModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> None:
        # bez commita - zamowienie, pozycje i debit stocku ida w jednej transakcji
        self.db.add(order)
        self.db.flush()

    def add_order_line(self, line: OrderLineModel) -> None:
        self.db.add(line)

    def get_order(self, order_id: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .options(selectinload(OrderModel.items))
            .where(OrderModel.id == order_id)
        ).scalar_one_or_none()

    def list_orders(self, user_id: str | None = None) -> list[OrderModel]:
        stmt = select(OrderModel).options(selectinload(OrderModel.items))
        if user_id is not None:
            stmt = stmt.where(OrderModel.user_id == user_id)
        stmt = stmt.order_by(OrderModel.created_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def update_order_status(self, order_id: str, old_status: str, new_data: dict) -> int:
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == old_status)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def refresh(self, obj) -> None:
        self.db.refresh(obj)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
