# storefront/repos/catalog_repo.py
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.product import ProductModel


class CatalogRepo:
    """
    Dostep do katalogu produktow (stock, cena).
    Stock zmienia sie tylko przez debit_stock (zamowienie) albo set_stock (back-office).
    """

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: str) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_products(self, product_ids) -> dict[str, ProductModel]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        rows = self.db.execute(
            select(ProductModel).where(ProductModel.id.in_(ids))
        ).scalars().all()
        return {p.id: p for p in rows}

    def list_products(self) -> list[ProductModel]:
        return list(
            self.db.execute(select(ProductModel).order_by(ProductModel.name)).scalars().all()
        )

    def read_stock(self, product_id: str) -> int | None:
        # swiezy odczyt z bazy, z pominieciem identity map
        return self.db.execute(
            select(ProductModel.stock).where(ProductModel.id == product_id)
        ).scalar_one_or_none()

    def set_stock(self, product_id: str, new_stock: int) -> bool:
        if new_stock < 0:
            return False

        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(stock=new_stock, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def debit_stock(self, product_id: str, quantity: int) -> bool:
        """
        Warunkowy debit: UPDATE products SET stock = stock - n WHERE id = :id AND stock >= n.
        Nie commituje - wywolujacy trzyma transakcje zamowienia.
        0 rows affected => za malo towaru (albo brak produktu).
        """
        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(
                stock=ProductModel.stock - quantity,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
