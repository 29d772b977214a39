# storefront/services/order_service.py
import base64
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.data.models.order_line import OrderLineModel
from storefront.domain.errors import (
    CheckoutInProgress,
    InsufficientStock,
    InvalidPaymentMethod,
    MissingFields,
    OrderAccessDenied,
    OrderNotFound,
    PersistenceFailure,
    ProductNotFound,
    ProofRequired,
    StatusConflict,
    IllegalStatusTransition,
)
from storefront.domain.order_status import OrderStatus, PaymentMethod, ensure_transition
from storefront.domain.schemas import OrderCreateIn, ShippingDetailsIn
from storefront.domain.session import SessionIdentity
from storefront.repos.catalog_repo import CatalogRepo
from storefront.repos.order_repo import OrderRepo
from storefront.services.lock_service import LockService
from storefront.services.notification_service import NotificationService
from storefront.utils.retry import db_retry
from storefront.utils.settings import CHECKOUT_LOCK_TTL_SECONDS, SHIPPING_FEE
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

SHIPPING_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "address",
    "city",
    "postal_code",
    "country",
    "recipient_name",
    "phone_number",
)


class OrderService:
    """
    Domena zamowien: skladanie zamowienia z koszyka, odczyt, zmiany statusu.

    place_order:
    1. walidacja pol, metody platnosci i dowodu wplaty
    2. walidacja produktow i stocku (odczyt aktualnego stanu)
    3. jedna transakcja: zamowienie + pozycje + warunkowy debit stocku
    4. powiadomienie (Celery, best effort)
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService | None = None,
        notification_service: NotificationService | None = None,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.catalog = CatalogRepo(db)
        self.lock_service = lock_service
        self.notification_service = notification_service or NotificationService()

    #commands
    def place_order(
        self,
        payload: OrderCreateIn,
        proof_image: bytes | None = None,
        proof_content_type: str | None = None,
    ) -> Dict[str, Any]:
        self._check_required_fields(payload)
        payment_method = self._check_payment(payload.payment_method, proof_image)

        token = self._acquire_checkout(payload.user_id)
        try:
            products, requested = self._validate_items(payload)
            order = self._create_order(
                payload,
                payment_method,
                products,
                requested,
                proof_image,
                proof_content_type,
            )
        finally:
            self._release_checkout(payload.user_id, token)

        logger.info(
            f"Order {order.id} placed by user {order.user_id}: "
            f"{len(order.items)} line(s), total {order.total_amount}"
        )
        self.notification_service.send_order_placed(order.user_id, order.id, str(order.total_amount))

        return self._materialize(order)

    def set_status(self, order_id: str, new_status: str, identity: SessionIdentity) -> Dict[str, Any]:
        order = self.repo.get_order(order_id)
        if not order:
            raise OrderNotFound(order_id)

        current = order.status
        requested = OrderStatus(new_status)

        if identity.is_admin:
            target = ensure_transition(current, requested.value)
        else:
            # klient moze tylko anulowac wlasne zamowienie i tylko w statusie pending
            if order.user_id != identity.user_id:
                raise OrderAccessDenied("Order does not belong to this user")
            if requested != OrderStatus.CANCELLED:
                raise OrderAccessDenied("Customers may only cancel orders")
            if current not in (OrderStatus.PENDING.value, OrderStatus.CANCELLED.value):
                raise IllegalStatusTransition(current, requested.value)
            target = OrderStatus.CANCELLED

        rowcount = self.repo.update_order_status(
            order_id=order.id,
            old_status=current,
            new_data={"status": target.value, "updated_at": datetime.now(timezone.utc)},
        )

        if rowcount == 0:
            self.repo.rollback()
            raise StatusConflict("Order status was changed by another operation")

        self.repo.commit()
        self.repo.refresh(order)

        logger.info(f"Order {order.id} status {current} -> {target.value} by {identity.user_id}")
        if target.value != current:
            self.notification_service.send_status_changed(order.user_id, order.id, target.value)

        return self._materialize(order)

    def upload_proof(
        self,
        order_id: str,
        identity: SessionIdentity,
        proof_image: bytes,
        proof_content_type: str | None = None,
    ) -> Dict[str, Any]:
        order = self._get_visible_order(order_id, identity)

        order.proof_image = proof_image
        order.proof_content_type = proof_content_type or "image/png"
        order.updated_at = datetime.now(timezone.utc)
        self.repo.commit()

        logger.info(f"Proof image ({len(proof_image)} bytes) uploaded for order {order.id}")
        return self._materialize(order)

    #queries
    def get_order(self, order_id: str, identity: SessionIdentity) -> Dict[str, Any]:
        return self._materialize(self._get_visible_order(order_id, identity))

    def list_orders(self, identity: SessionIdentity, user_id: str | None = None):
        if not identity.is_admin:
            if user_id is not None and user_id != identity.user_id:
                raise OrderAccessDenied("Cannot list orders of another user")
            user_id = identity.user_id
        return [self._materialize(o) for o in self.repo.list_orders(user_id)]

    # =====================================================
    # walidacja
    # =====================================================
    @staticmethod
    def _check_required_fields(payload: OrderCreateIn) -> None:
        details = {
            "has_user_id": bool(payload.user_id),
            "has_total_amount": payload.total_amount is not None,
            "has_shipping_details": payload.shipping_details is not None,
            "has_items": bool(payload.items),
            "has_payment_method": bool(payload.payment_method),
        }
        if not all(details.values()):
            logger.warning(f"Order rejected, missing fields: {details}")
            raise MissingFields(details)

    @staticmethod
    def _check_payment(payment_method: str, proof_image: bytes | None) -> PaymentMethod:
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise InvalidPaymentMethod(payment_method)

        # dowod wplaty sprawdzamy przed jakimkolwiek odczytem produktow
        if method == PaymentMethod.BANK_TRANSFER and not proof_image:
            raise ProofRequired()
        return method

    def _validate_items(self, payload: OrderCreateIn):
        products = self.catalog.get_products(item.product_id for item in payload.items)

        requested: dict[str, int] = {}
        for item in payload.items:
            if item.product_id not in products:
                raise ProductNotFound(item.product_id)
            # ten sam produkt w kilku kolorach - sumujemy
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        for product_id, quantity in requested.items():
            product = products[product_id]
            if product.stock < quantity:
                raise InsufficientStock(product_id, product.stock, quantity, name=product.name)

        return products, requested

    def _acquire_checkout(self, user_id: str) -> str | None:
        if self.lock_service is None:
            return None

        token = self.lock_service.new_token()
        locked = self.lock_service.acquire_checkout_lock(
            user_id=user_id,
            token=token,
            ttl=CHECKOUT_LOCK_TTL_SECONDS,
        )
        if not locked:
            raise CheckoutInProgress(user_id)
        return token

    def _release_checkout(self, user_id: str, token: str | None) -> None:
        if token is None:
            return
        # lock ma TTL, blad zwolnienia nie moze cofnac zapisanego zamowienia
        try:
            self.lock_service.release_checkout_lock(user_id, token)
        except RedisError as e:
            logger.warning(f"Failed to release checkout lock for user {user_id}: {e}")

    # =====================================================
    # zapis
    # =====================================================
    def _create_order(self, payload, payment_method, products, requested, proof_image, proof_content_type):
        try:
            return self._write_order(
                payload, payment_method, products, requested, proof_image, proof_content_type
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist order for user {payload.user_id}: {e}")
            raise PersistenceFailure("Error creating order") from e

    @db_retry()
    def _write_order(self, payload, payment_method, products, requested, proof_image, proof_content_type):
        now = datetime.now(timezone.utc)
        shipping = normalize_shipping(payload.shipping_details)

        expected = sum(
            (products[i.product_id].price * i.quantity for i in payload.items), Decimal("0.00")
        ) + SHIPPING_FEE
        if Decimal(payload.total_amount) != expected:
            logger.warning(
                f"Order total {payload.total_amount} for user {payload.user_id} "
                f"differs from catalog total {expected}"
            )

        try:
            order = OrderModel(
                user_id=payload.user_id,
                total_amount=payload.total_amount,
                shipping_details=shipping,
                payment_method=payment_method.value,
                status=OrderStatus.PENDING.value,
                proof_image=proof_image,
                proof_content_type=(proof_content_type or "image/png") if proof_image else None,
                created_at=now,
                updated_at=now,
            )
            self.repo.add_order(order)

            for position, item in enumerate(payload.items):
                self.repo.add_order_line(
                    OrderLineModel(
                        order=order,
                        position=position,
                        product_id=item.product_id,
                        quantity=item.quantity,
                        unit_price=products[item.product_id].price,
                        selected_color=item.selected_color,
                        created_at=now,
                        updated_at=now,
                    )
                )
            self.db.flush()

            # warunkowy debit w tej samej transakcji, staly porzadek zeby uniknac deadlockow
            for product_id in sorted(requested):
                quantity = requested[product_id]
                if not self.catalog.debit_stock(product_id, quantity):
                    self.repo.rollback()
                    available = self.catalog.read_stock(product_id) or 0
                    logger.warning(
                        f"Stock debit rejected for product {product_id}: "
                        f"requested {quantity}, available {available}"
                    )
                    raise InsufficientStock(product_id, available, quantity, name=products[product_id].name)

            self.repo.commit()
        except SQLAlchemyError:
            self.repo.rollback()
            raise

        self.repo.refresh(order)
        return order

    def _get_visible_order(self, order_id: str, identity: SessionIdentity) -> OrderModel:
        order = self.repo.get_order(order_id)
        if not order:
            raise OrderNotFound(order_id)
        if not identity.can_access_user(order.user_id):
            raise OrderAccessDenied("Order does not belong to this user")
        return order

    @staticmethod
    def _materialize(order: OrderModel) -> Dict[str, Any]:
        shipping = order.shipping_details or {}

        return {
            "id": order.id,
            "user_id": order.user_id,
            "total_amount": order.total_amount,
            "status": order.status,
            "payment_method": order.payment_method,
            "proof_url": proof_url(order.proof_image, order.proof_content_type),
            "shipping_details": {
                field: str(shipping[field]) if shipping.get(field) else "" for field in SHIPPING_FIELDS
            },
            "items": [
                {
                    "id": line.id,
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "selected_color": line.selected_color,
                    "created_at": line.created_at,
                    "updated_at": line.updated_at,
                }
                for line in order.items
            ],
            "created_at": order.created_at,
            "updated_at": order.updated_at,
        }


def normalize_shipping(details: ShippingDetailsIn) -> dict[str, str]:
    data = {field: getattr(details, field) or "" for field in SHIPPING_FIELDS}
    if not data["recipient_name"]:
        data["recipient_name"] = f"{data['first_name']} {data['last_name']}".strip()
    if not data["phone_number"]:
        data["phone_number"] = data["phone"]
    return data


def proof_url(image: bytes | None, content_type: str | None) -> str:
    if not image:
        return ""
    encoded = base64.b64encode(image).decode("ascii")
    return f"data:{content_type or 'image/png'};base64,{encoded}"
