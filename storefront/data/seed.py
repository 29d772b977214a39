# storefront/data/seed.py
from decimal import Decimal

from storefront.data.database import Base, SessionLocal, engine
from storefront.data.models import ProductModel
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

PRODUCTS = [
    {"id": "P1", "name": "Keyboard", "price": Decimal("199.99"), "stock": 5},
    {"id": "P2", "name": "Mouse", "price": Decimal("49.50"), "stock": 20},
    {"id": "P3", "name": "Monitor", "price": Decimal("899.00"), "stock": 3},
]


def seed():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        # seed tylko gdy katalog jest pusty
        if db.query(ProductModel).first():
            return
        db.add_all(ProductModel(**p) for p in PRODUCTS)
        db.commit()
        logger.info(f"Seeded {len(PRODUCTS)} products")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
