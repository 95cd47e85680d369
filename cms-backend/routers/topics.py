"""
Topic API endpoints
CRUD operations for topics (third level, under chapters)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from database import schemas, crud
from database.database import get_db
from database.models import Chapter, Topic, ConceptTitle, Question, Role
from auth.dependencies import Actor, get_current_actor, require_roles

router = APIRouter(prefix="/topics", tags=["topics"])

require_metadata = require_roles(Role.METADATA)


@router.post("/", response_model=schemas.TopicResponse, status_code=status.HTTP_201_CREATED)
def create_topic(topic: schemas.TopicCreate, db: Session = Depends(get_db),
                 actor: Actor = Depends(require_metadata)):
    if not crud.get_node(db, Chapter, topic.chapter_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chapter with ID {topic.chapter_id} not found"
        )
    return crud.create_node(db, Topic, topic.model_dump())


@router.get("/", response_model=List[schemas.TopicResponse])
def list_topics(chapter_id: Optional[int] = None, skip: int = 0, limit: int = 100,
                db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return crud.get_nodes(db, Topic, "chapter_id", chapter_id, skip=skip, limit=limit)


@router.get("/{topic_id}", response_model=schemas.TopicResponse)
def get_topic(topic_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    topic = crud.get_node(db, Topic, topic_id)
    if not topic:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Topic with ID {topic_id} not found"
        )
    return topic


@router.put("/{topic_id}", response_model=schemas.TopicResponse)
def update_topic(
    topic_id: int,
    topic_update: schemas.TopicUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_metadata),
):
    topic = crud.update_node(db, Topic, topic_id, topic_update.model_dump(exclude_unset=True))
    if not topic:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Topic with ID {topic_id} not found"
        )
    return topic


@router.delete("/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_topic(topic_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_metadata)):
    if not crud.get_node(db, Topic, topic_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Topic with ID {topic_id} not found"
        )
    if crud.count_children(db, ConceptTitle, "topic_id", topic_id) \
            or crud.count_children(db, Question, "topic_id", topic_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Topic {topic_id} still has concept titles or questions"
        )
    crud.delete_node(db, Topic, topic_id)
    return None
