"""Caller identity passed explicitly into every operation."""

from dataclasses import dataclass

from swapstation.db.models.enums import UserRole
from swapstation.utils.exceptions import AccessDeniedError


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as reported by the identity collaborator."""

    user_id: int
    role: UserRole

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_staff(self) -> bool:
        """Staff and administrators may act on any booking."""
        return self.role in (UserRole.STAFF, UserRole.ADMIN)

    def require_driver(self) -> None:
        if not self.is_driver:
            raise AccessDeniedError(
                "Only drivers may perform this operation",
                details={"user_id": self.user_id, "role": self.role.value},
            )

    def require_staff(self) -> None:
        if not self.is_staff:
            raise AccessDeniedError(
                "Only staff or administrators may perform this operation",
                details={"user_id": self.user_id, "role": self.role.value},
            )
