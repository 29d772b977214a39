# storefront/api/deps.py
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from storefront.domain.session import SessionIdentity, ANONYMOUS
from storefront.services.lock_service import LockService


def get_identity(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> SessionIdentity:
    """
    Tozsamosc z naglowkow ustawianych przez gateway auth.
    Brak X-User-Id => anonim.
    """
    if not x_user_id:
        return ANONYMOUS
    return SessionIdentity(user_id=x_user_id, role=x_user_role or "customer")


def require_identity(identity: SessionIdentity = Depends(get_identity)) -> SessionIdentity:
    if not identity.is_authenticated:
        raise HTTPException(status_code=401, detail="No authentication provided")
    return identity


@lru_cache
def get_lock_service() -> LockService:
    return LockService()
