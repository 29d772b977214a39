#storefront/api/routers/carts.py
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.api.deps import require_identity
from storefront.data.database import get_db
from storefront.domain.errors import (
    CartAccessDenied,
    CartConflict,
    CartLineNotFound,
    ProductNotFound,
)
from storefront.domain.schemas import (
    CartItemIn,
    CartItemRemoveIn,
    CartOut,
    CartQuantityIn,
    MessageOut,
)
from storefront.domain.session import SessionIdentity
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/carts", tags=["carts"])


def get_service(db: Session):
    return CartService(db)


def check_owner(user_id: str, identity: SessionIdentity):
    if not identity.can_access_user(user_id):
        raise HTTPException(status_code=403, detail="Cart does not belong to this user")


@router.get("/{user_id}", response_model=CartOut)
def get_cart(
    user_id: str,
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    check_owner(user_id, identity)
    return get_service(db).get_cart(user_id)


@router.post("/{user_id}/items", response_model=CartOut)
def add_item(
    user_id: str,
    payload: CartItemIn,
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    check_owner(user_id, identity)
    svc = get_service(db)
    try:
        return svc.add_item(
            user_id=user_id,
            product_id=payload.product_id,
            quantity=payload.quantity,
            selected_color=payload.selected_color,
        )
    except ProductNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CartConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{user_id}/items/{line_id}", response_model=CartOut)
def update_item(
    user_id: str,
    line_id: str,
    payload: CartQuantityIn,
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    check_owner(user_id, identity)
    svc = get_service(db)
    try:
        return svc.update_item_quantity(user_id, line_id, payload.quantity)
    except CartLineNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CartAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except CartConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{user_id}/items/{product_id}", response_model=CartOut)
def remove_item(
    user_id: str,
    product_id: str,
    payload: CartItemRemoveIn | None = Body(default=None),
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    check_owner(user_id, identity)
    payload = payload or CartItemRemoveIn()
    svc = get_service(db)
    try:
        return svc.remove_item(
            user_id,
            product_id,
            selected_color=payload.selected_color,
            line_id=payload.line_id,
        )
    except CartAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except CartConflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{user_id}", response_model=MessageOut)
def clear_cart(
    user_id: str,
    identity: SessionIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    check_owner(user_id, identity)
    try:
        get_service(db).clear_cart(user_id)
    except CartConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": "Cart cleared"}
