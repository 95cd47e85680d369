"""
Chapter API endpoints
CRUD operations for chapters (second level, under subjects)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from database import schemas, crud
from database.database import get_db
from database.models import Subject, Chapter, Topic, Question, Role
from auth.dependencies import Actor, get_current_actor, require_roles

router = APIRouter(prefix="/chapters", tags=["chapters"])

require_metadata = require_roles(Role.METADATA)


@router.post("/", response_model=schemas.ChapterResponse, status_code=status.HTTP_201_CREATED)
def create_chapter(chapter: schemas.ChapterCreate, db: Session = Depends(get_db),
                   actor: Actor = Depends(require_metadata)):
    """
    Create a new chapter under a subject
    """
    if not crud.get_node(db, Subject, chapter.subject_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subject with ID {chapter.subject_id} not found"
        )
    return crud.create_node(db, Chapter, chapter.model_dump())


@router.get("/", response_model=List[schemas.ChapterResponse])
def list_chapters(subject_id: Optional[int] = None, skip: int = 0, limit: int = 100,
                  db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """
    List chapters, optionally only those of one subject
    """
    return crud.get_nodes(db, Chapter, "subject_id", subject_id, skip=skip, limit=limit)


@router.get("/{chapter_id}", response_model=schemas.ChapterResponse)
def get_chapter(chapter_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    chapter = crud.get_node(db, Chapter, chapter_id)
    if not chapter:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chapter with ID {chapter_id} not found"
        )
    return chapter


@router.put("/{chapter_id}", response_model=schemas.ChapterResponse)
def update_chapter(
    chapter_id: int,
    chapter_update: schemas.ChapterUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_metadata),
):
    chapter = crud.update_node(db, Chapter, chapter_id, chapter_update.model_dump(exclude_unset=True))
    if not chapter:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chapter with ID {chapter_id} not found"
        )
    return chapter


@router.delete("/{chapter_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_chapter(chapter_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_metadata)):
    """
    Delete a chapter
    Refused while topics or questions still reference it
    """
    if not crud.get_node(db, Chapter, chapter_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chapter with ID {chapter_id} not found"
        )
    if crud.count_children(db, Topic, "chapter_id", chapter_id) \
            or crud.count_children(db, Question, "chapter_id", chapter_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Chapter {chapter_id} still has topics or questions"
        )
    crud.delete_node(db, Chapter, chapter_id)
    return None
