"""
Identity endpoints.
Login exchanges an identity-provider ID token for a session token; only
registered (non-deleted) users get one.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import schemas
from database.database import get_db
from database.models import User
from auth.identity import IdentityGate, get_identity_provider
from auth.security import create_access_token
from auth.dependencies import get_current_user
from auth.roles import ROUTE_ROLES, allowed_routes

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=schemas.TokenResponse)
def login(request: schemas.LoginRequest, db: Session = Depends(get_db),
          provider=Depends(get_identity_provider)):
    """Verify the provider token and map its email to a registered user"""
    user = IdentityGate(provider).resolve(db, request.id_token, request.provider_access_token)
    access_token = create_access_token({"sub": str(user.id), "role": user.role.value, "email": user.email})
    return schemas.TokenResponse(
        access_token=access_token,
        user=schemas.UserResponse.model_validate(user),
        routes=allowed_routes(user.role),
    )


@router.get("/me", response_model=schemas.MeResponse)
def me(user: User = Depends(get_current_user)):
    """Current user plus the client routes their role may open"""
    return schemas.MeResponse(user=schemas.UserResponse.model_validate(user), routes=allowed_routes(user.role))


@router.post("/logout")
def logout(user: User = Depends(get_current_user)):
    # Session tokens are stateless; the client drops its copy
    return {"message": "Logged out successfully"}


@router.get("/routes")
def route_table():
    """Role-gated client routes (administrator may open all of them)"""
    return {route: [r.value for r in roles] for route, roles in ROUTE_ROLES.items()}
