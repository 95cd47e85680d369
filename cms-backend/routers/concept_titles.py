"""
Concept title API endpoints
CRUD operations for concept titles (leaf level, under topics)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from database import schemas, crud
from database.database import get_db
from database.models import Topic, ConceptTitle, Question, Role
from auth.dependencies import Actor, get_current_actor, require_roles

router = APIRouter(prefix="/concept-titles", tags=["concept-titles"])

require_metadata = require_roles(Role.METADATA)


@router.post("/", response_model=schemas.ConceptTitleResponse, status_code=status.HTTP_201_CREATED)
def create_concept_title(concept: schemas.ConceptTitleCreate, db: Session = Depends(get_db),
                         actor: Actor = Depends(require_metadata)):
    if not crud.get_node(db, Topic, concept.topic_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Topic with ID {concept.topic_id} not found"
        )
    return crud.create_node(db, ConceptTitle, concept.model_dump())


@router.get("/", response_model=List[schemas.ConceptTitleResponse])
def list_concept_titles(topic_id: Optional[int] = None, skip: int = 0, limit: int = 100,
                        db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return crud.get_nodes(db, ConceptTitle, "topic_id", topic_id, skip=skip, limit=limit)


@router.get("/{concept_id}", response_model=schemas.ConceptTitleResponse)
def get_concept_title(concept_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    concept = crud.get_node(db, ConceptTitle, concept_id)
    if not concept:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Concept title with ID {concept_id} not found"
        )
    return concept


@router.put("/{concept_id}", response_model=schemas.ConceptTitleResponse)
def update_concept_title(
    concept_id: int,
    concept_update: schemas.ConceptTitleUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_metadata),
):
    concept = crud.update_node(db, ConceptTitle, concept_id, concept_update.model_dump(exclude_unset=True))
    if not concept:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Concept title with ID {concept_id} not found"
        )
    return concept


@router.delete("/{concept_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_concept_title(concept_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_metadata)):
    """Refused while questions are classified under this concept"""
    if not crud.get_node(db, ConceptTitle, concept_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Concept title with ID {concept_id} not found"
        )
    if crud.count_children(db, Question, "concept_title_id", concept_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Concept title {concept_id} is still used by questions"
        )
    crud.delete_node(db, ConceptTitle, concept_id)
    return None
