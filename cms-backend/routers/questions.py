"""
Question endpoints (data entry authoring + shared listings)
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session
from typing import List, Literal, Optional

from database import schemas, crud
from database.database import get_db
from database.models import QuestionStatus, QcStatus, QuestionType, Role
from auth.dependencies import Actor, get_current_actor, require_roles
from services import question_authoring
from services.storage import get_storage
from services.google_drive import get_drive
from services.uploads import payload_from_upload

router = APIRouter(prefix="/questions", tags=["questions"])

require_data_entry = require_roles(Role.DATA_ENTRY)


@router.post("/", response_model=schemas.QuestionResponse, status_code=status.HTTP_201_CREATED)
def create_question(question: schemas.QuestionCreate, db: Session = Depends(get_db),
                    actor: Actor = Depends(require_data_entry)):
    """
    Create the next question of a package
    Sequence numbers start at 100; inhouse id is <subject abbrev>-<package no>-<sequence>
    """
    return question_authoring.create_question(db, actor, question)


@router.get("/", response_model=List[schemas.QuestionResponse])
def list_questions(
    status: Optional[QuestionStatus] = None,
    qc_status: Optional[QcStatus] = None,
    subject_id: Optional[int] = None,
    question_type: Optional[QuestionType] = None,
    package_id: Optional[int] = None,
    created_by: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return crud.get_questions(
        db,
        status=status,
        qc_status=[qc_status] if qc_status else None,
        subject_id=subject_id,
        question_type=question_type,
        package_id=package_id,
        created_by=created_by,
        skip=skip,
        limit=limit,
    )


@router.get("/revised", response_model=List[schemas.QuestionResponse])
def list_revised(created_by: Optional[int] = None, skip: int = 0, limit: int = 100,
                 db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Questions sent back after a QC rejection"""
    return question_authoring.list_revised_questions(db, created_by=created_by, skip=skip, limit=limit)


@router.get("/{question_id}", response_model=schemas.QuestionResponse)
def get_question(question_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    question = crud.get_question(db, question_id)
    if not question:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Question with ID {question_id} not found"
        )
    return question


@router.put("/{question_id}", response_model=schemas.QuestionResponse)
def edit_question(question_id: int, update: schemas.QuestionUpdate, db: Session = Depends(get_db),
                  actor: Actor = Depends(require_data_entry)):
    return question_authoring.edit_question(db, actor, question_id, update)


@router.delete("/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_question(question_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_data_entry)):
    question_authoring.delete_question(db, actor, question_id)
    return None


@router.post("/{question_id}/attachments", response_model=schemas.QuestionResponse)
def add_attachment(
    question_id: int,
    kind: Literal["question", "solution"] = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_data_entry),
    storage=Depends(get_storage),
    drive=Depends(get_drive),
):
    """Attach an image/document to the question text or to its solution"""
    return question_authoring.add_attachment(db, actor, question_id, kind, payload_from_upload(file), storage, drive)
