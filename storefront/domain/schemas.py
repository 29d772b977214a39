# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import List
from decimal import Decimal
from datetime import datetime

from storefront.domain.order_status import OrderStatus


class ProductOut(BaseModel):
    """Produkt z katalogu (response)."""

    id: str
    name: str
    price: Decimal
    stock: int
    image: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ProductSnapshot(BaseModel):
    """Kopia produktu osadzona w pozycji koszyka, z niej liczymy total."""

    id: str
    name: str
    price: Decimal
    image: str | None = None
    stock: int | None = None

    model_config = ConfigDict(from_attributes=True)


class CartLine(BaseModel):
    """Pozycja koszyka, wspolna dla serwera i klienta."""

    line_id: str
    product: ProductSnapshot
    quantity: int
    selected_color: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def key(self) -> tuple[str, str | None]:
        return self.product.id, self.selected_color


class CartOut(BaseModel):
    """Koszyk (response)."""

    cart_id: str
    user_id: str
    items: List[CartLine]
    total_items: int
    total_price: Decimal
    version: int
    updated_at: datetime | None = None


class CartItemIn(BaseModel):
    """Dodanie produktu do koszyka."""

    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0, description="Ilosc produktu (musi byc > 0)")
    selected_color: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartQuantityIn(BaseModel):
    quantity: int = Field(..., ge=1)


class CartItemRemoveIn(BaseModel):
    selected_color: str | None = None
    line_id: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageOut(BaseModel):
    message: str


class ShippingDetailsIn(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    recipient_name: str | None = None
    phone_number: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemIn(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    # cena z koszyka, tylko informacyjnie - zapisujemy cene z katalogu
    price: Decimal | None = None
    selected_color: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderCreateIn(BaseModel):
    """
    Payload `orderData`. Wszystkie pola sa opcjonalne na poziomie schematu,
    brakujace pola zglasza OrderService jako MissingFields.
    """

    user_id: str | None = None
    total_amount: Decimal | None = None
    shipping_details: ShippingDetailsIn | None = None
    items: List[OrderItemIn] | None = None
    payment_method: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShippingDetailsOut(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""
    recipient_name: str = ""
    phone_number: str = ""


class OrderLineOut(BaseModel):
    id: str
    product_id: str
    quantity: int
    unit_price: Decimal
    selected_color: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Zamowienie (response)."""

    id: str
    user_id: str
    total_amount: Decimal
    status: OrderStatus
    payment_method: str
    proof_url: str
    shipping_details: ShippingDetailsOut
    items: List[OrderLineOut]
    created_at: datetime
    updated_at: datetime


class OrderStatusIn(BaseModel):
    status: OrderStatus
