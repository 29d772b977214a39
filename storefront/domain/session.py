# storefront/domain/session.py
from dataclasses import dataclass

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class SessionIdentity:
    """Tozsamosc wywolujacego, wystawiana przez zewnetrzny modul auth."""

    user_id: str | None = None
    role: str = "customer"

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == ADMIN_ROLE

    def can_access_user(self, user_id: str) -> bool:
        return self.is_admin or (self.is_authenticated and self.user_id == user_id)


ANONYMOUS = SessionIdentity()
