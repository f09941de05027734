from dataclasses import dataclass
from enum import Enum

from fastapi import HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    SALES_MANAGER = "SALES_MANAGER"
    SALES_EXECUTIVE = "SALES_EXECUTIVE"


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    role: Role
    active: bool = True


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def principal_from_user(user) -> Principal:
    # Role values are shared with UserRole; the enum class differs.
    role = Role(user.role.value if hasattr(user.role, "value") else user.role)
    return Principal(id=user.id, username=user.username, role=role, active=user.active)
