"""
FastAPI dependencies for the authenticated caller.
Workflow services receive an explicit Actor instead of reading request state.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import crud, models
from database.database import get_db
from database.models import Role
from auth.security import decode_token
from auth.roles import has_any_capability

security_scheme = HTTPBearer()


@dataclass(frozen=True)
class Actor:
    id: int
    role: Role
    name: str = ""
    email: str = ""
    vendor_name: Optional[str] = None

    @classmethod
    def from_user(cls, user: models.User) -> "Actor":
        return cls(id=user.id, role=user.role, name=user.name, email=user.email, vendor_name=user.vendor_name)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    payload = decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    user_id = payload.get("sub")
    user = crud.get_user(db, int(user_id)) if user_id and str(user_id).isdigit() else None
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or deleted")
    return user


def get_current_actor(user: models.User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)


def require_roles(*roles: Role):
    """Dependency factory: caller must hold one of roles (administrator always passes)"""
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not has_any_capability(actor.role, roles):
            allowed = ", ".join(r.value for r in roles) or Role.ADMINISTRATOR.value
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Requires role: {allowed}")
        return actor
    return dependency
