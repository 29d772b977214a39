import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Numeric, JSON, LargeBinary
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String(64), nullable=False, index=True)

    # pending, processing, shipped, delivered, completed, cancelled
    status = Column(String(20), nullable=False, default="pending")
    total_amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    shipping_details = Column(JSON, nullable=False)

    proof_image = Column(LargeBinary, nullable=True)
    proof_content_type = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    items = relationship(
        "OrderLineModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineModel.position",
    )
