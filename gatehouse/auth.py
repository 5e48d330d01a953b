from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    RESIDENT = "resident"
    SECURITY = "security"
    ADMIN = "admin"


@dataclass
class Principal:
    id: int
    role: Role
    flat_id: int | None
    apartment_id: int | None


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{_access_label(allowed)} access required")
        return principal

    return _dep


def _access_label(allowed: tuple[Role, ...]) -> str:
    if len(allowed) == 1:
        return allowed[0].value.capitalize()
    return " or ".join(role.value.capitalize() for role in allowed)
