# storefront/api/routers/orders.py
import json
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile as StarletteUploadFile

from storefront.api.deps import get_lock_service, require_identity
from storefront.data.database import get_db
from storefront.domain.errors import (
    CheckoutInProgress,
    IllegalStatusTransition,
    InsufficientStock,
    MissingFields,
    OrderAccessDenied,
    OrderNotFound,
    OrderValidationError,
    PersistenceFailure,
    ProductNotFound,
    StatusConflict,
)
from storefront.domain.schemas import OrderCreateIn, OrderOut, OrderStatusIn
from storefront.domain.session import SessionIdentity
from storefront.services.lock_service import LockService
from storefront.services.order_service import OrderService
from storefront.utils.settings import MAX_SLIP_BYTES
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session, lock_service: LockService | None = None):
    return OrderService(db, lock_service=lock_service)


async def read_order_request(request: Request):
    """
    orderData jako JSON (`{"orderData": {...}}` albo sam payload)
    albo multipart: pole `orderData` (string JSON) + opcjonalny plik `slip`.
    """
    content_type = request.headers.get("content-type", "")
    slip_bytes = None
    slip_type = None

    try:
        if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
            form = await request.form()
            raw = form.get("orderData")
            data = json.loads(raw) if isinstance(raw, str) else {}

            slip = form.get("slip")
            if isinstance(slip, StarletteUploadFile):
                slip_bytes = await slip.read()
                slip_type = slip.content_type
        else:
            body = await request.json()
            data = body.get("orderData", body) if isinstance(body, dict) else {}
            if isinstance(data, str):
                data = json.loads(data)
    except ValueError as e:
        logger.warning(f"Invalid order data format: {e}")
        raise HTTPException(status_code=400, detail="Invalid order data format")

    if slip_bytes is not None and len(slip_bytes) > MAX_SLIP_BYTES:
        raise HTTPException(status_code=413, detail="Slip image is too large")

    try:
        payload = OrderCreateIn.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    return payload, slip_bytes or None, slip_type


@router.post("/", response_model=OrderOut, status_code=201)
async def create_order(
    request: Request,
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """
    Sklada zamowienie z koszyka: walidacja, zapis w jednej transakcji, debit stocku.
    """
    payload, slip, slip_type = await read_order_request(request)

    if payload.user_id and not identity.can_access_user(payload.user_id):
        raise HTTPException(status_code=403, detail="Cannot place an order for another user")

    svc = get_service(db, lock_service)
    try:
        return await run_in_threadpool(svc.place_order, payload, slip, slip_type)
    except MissingFields as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "details": e.details})
    except InsufficientStock as e:
        raise HTTPException(
            status_code=400,
            detail={
                "message": str(e),
                "product_id": e.product_id,
                "available_stock": e.available,
                "requested_quantity": e.requested,
            },
        )
    except OrderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProductNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CheckoutInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
    except RedisError as e:
        logger.error(f"Checkout lock unavailable: {e}")
        raise HTTPException(status_code=503, detail="Checkout is temporarily unavailable")


@router.get("/", response_model=List[OrderOut])
def list_orders(
    user_id: str | None = Query(default=None),
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    try:
        return get_service(db).list_orders(identity, user_id)
    except OrderAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    try:
        return get_service(db).get_order(order_id, identity)
    except OrderAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: str,
    payload: OrderStatusIn,
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    try:
        return get_service(db).set_status(order_id, payload.status, identity)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (IllegalStatusTransition, StatusConflict) as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{order_id}/slip", response_model=OrderOut)
def upload_slip(
    order_id: str,
    slip: UploadFile = File(...),
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    data = slip.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No slip image provided")
    if len(data) > MAX_SLIP_BYTES:
        raise HTTPException(status_code=413, detail="Slip image is too large")

    try:
        return get_service(db).upload_proof(order_id, identity, data, slip.content_type)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
