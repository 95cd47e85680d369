"""
Exam name endpoints (e.g. UTBK-SNBT)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from database import schemas, crud
from database.database import get_db
from database.models import Exam, Role
from auth.dependencies import Actor, get_current_actor, require_roles

router = APIRouter(prefix="/exams", tags=["exams"])


@router.get("/", response_model=List[schemas.ExamResponse])
def list_exams(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return crud.get_nodes(db, Exam)


@router.post("/", response_model=schemas.ExamResponse, status_code=status.HTTP_201_CREATED)
def create_exam(exam: schemas.ExamCreate, db: Session = Depends(get_db),
                actor: Actor = Depends(require_roles(Role.METADATA))):
    if crud.get_node_by_name(db, Exam, exam.name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Exam with name '{exam.name}' already exists"
        )
    return crud.create_node(db, Exam, exam.model_dump())
