# marketplace/domain/principal.py
from dataclasses import dataclass

CUSTOMER = "customer"
CHEF = "chef"
ADMIN = "admin"
SYSTEM = "system"

ROLES = (CUSTOMER, CHEF, ADMIN)


@dataclass(frozen=True)
class Principal:
    """Caller identity as asserted by the upstream auth gateway."""

    user_id: int
    role: str = CUSTOMER
    chef_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM


# payment reconciliation acts under this identity
SYSTEM_PRINCIPAL = Principal(user_id=0, role=SYSTEM)
