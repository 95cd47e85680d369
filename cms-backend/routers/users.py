"""
User management (administrator)
Users are registered ahead of their first login; deleting only flags them.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from database import schemas, crud
from database.database import get_db
from database.models import Role
from auth.dependencies import Actor, get_current_actor, require_roles
from services import clock

router = APIRouter(prefix="/users", tags=["users"])

require_admin = require_roles(Role.ADMINISTRATOR)


@router.post("/", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(user: schemas.UserCreate, db: Session = Depends(get_db), actor: Actor = Depends(require_admin)):
    """
    Register a user
    Emails must be unique among non-deleted users; question makers need a vendor name
    """
    if crud.get_user_by_email(db, user.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"User with email '{user.email}' already exists"
        )
    return crud.create_user(db, user)


@router.get("/", response_model=List[schemas.UserResponse])
def list_users(role: Optional[Role] = None, skip: int = 0, limit: int = 100,
               db: Session = Depends(get_db), actor: Actor = Depends(require_admin)):
    return crud.get_users(db, role=role, skip=skip, limit=limit)


@router.get("/by-role/{role}", response_model=List[schemas.UserResponse])
def list_users_by_role(role: Role, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Pickers (e.g. QC reviewers) available to every signed-in role"""
    return crud.get_users(db, role=role, limit=1000)


@router.get("/{user_id}", response_model=schemas.UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_admin)):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User with ID {user_id} not found")
    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_admin)):
    """Soft delete: the user can no longer log in and disappears from listings"""
    if user_id == actor.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete yourself")
    if not crud.soft_delete_user(db, user_id, clock.now()):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User with ID {user_id} not found")
    return None
