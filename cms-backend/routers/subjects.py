"""
Subject API endpoints
CRUD operations for subjects (top of the subject → chapter → topic → concept tree)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from database import schemas, crud
from database.database import get_db
from database.models import Subject, Chapter, Question, QuestionPackage, Role
from auth.dependencies import Actor, get_current_actor, require_roles

router = APIRouter(prefix="/subjects", tags=["subjects"])

require_metadata = require_roles(Role.METADATA)


@router.post("/", response_model=schemas.SubjectResponse, status_code=status.HTTP_201_CREATED)
def create_subject(subject: schemas.SubjectCreate, db: Session = Depends(get_db),
                   actor: Actor = Depends(require_metadata)):
    """
    Create a new subject
    Subject names must be unique
    """
    if crud.get_node_by_name(db, Subject, subject.name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Subject with name '{subject.name}' already exists"
        )
    return crud.create_node(db, Subject, subject.model_dump())


@router.get("/", response_model=List[schemas.SubjectResponse])
def list_subjects(skip: int = 0, limit: int = 100, db: Session = Depends(get_db),
                  actor: Actor = Depends(get_current_actor)):
    return crud.get_nodes(db, Subject, skip=skip, limit=limit)


@router.get("/{subject_id}", response_model=schemas.SubjectResponse)
def get_subject(subject_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    subject = crud.get_node(db, Subject, subject_id)
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subject with ID {subject_id} not found"
        )
    return subject


@router.put("/{subject_id}", response_model=schemas.SubjectResponse)
def update_subject(
    subject_id: int,
    subject_update: schemas.SubjectUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_metadata),
):
    """
    Update a subject
    Only provided fields will be updated
    """
    subject = crud.update_node(db, Subject, subject_id, subject_update.model_dump(exclude_unset=True))
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subject with ID {subject_id} not found"
        )
    return subject


@router.delete("/{subject_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_subject(subject_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_metadata)):
    """
    Delete a subject
    Refused while chapters, packages or questions still reference it
    """
    if not crud.get_node(db, Subject, subject_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subject with ID {subject_id} not found"
        )
    if (crud.count_children(db, Chapter, "subject_id", subject_id)
            or crud.count_children(db, QuestionPackage, "subject_id", subject_id)
            or crud.count_children(db, Question, "subject_id", subject_id)):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Subject {subject_id} still has chapters, packages or questions"
        )
    crud.delete_node(db, Subject, subject_id)
    return None
