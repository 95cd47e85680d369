"""
QC review endpoints
Claim → decide (or release) on questions, plus the reviewer quota.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session
from typing import List, Literal, Optional

from database import schemas
from database.database import get_db
from database.models import Difficulty, Role
from auth.dependencies import Actor, require_roles
from services import qc_workflow, quota
from services.storage import get_storage
from services.google_drive import get_drive
from services.uploads import payload_from_upload

router = APIRouter(prefix="/qc", tags=["qc"])

require_reviewer = require_roles(Role.QC_DATA)


@router.get("/questions/available", response_model=List[schemas.QuestionResponse])
def list_available(subject_id: Optional[int] = None, skip: int = 0, limit: int = 100,
                   db: Session = Depends(get_db), actor: Actor = Depends(require_reviewer)):
    """Unclaimed questions waiting for review or re-review"""
    return qc_workflow.list_available(db, subject_id=subject_id, skip=skip, limit=limit)


@router.get("/questions/under-review", response_model=List[schemas.QuestionResponse])
def list_under_review(mine: bool = False, skip: int = 0, limit: int = 100,
                      db: Session = Depends(get_db), actor: Actor = Depends(require_reviewer)):
    return qc_workflow.list_under_review(db, reviewer_id=actor.id if mine else None, skip=skip, limit=limit)


@router.post("/questions/{question_id}/claim", response_model=schemas.QuestionResponse)
def claim(question_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_reviewer)):
    """Start reviewing; 409 if another reviewer already holds the question"""
    return qc_workflow.claim_question(db, actor, question_id)


@router.post("/questions/{question_id}/release", response_model=schemas.QuestionResponse)
def release(question_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_reviewer)):
    return qc_workflow.release_question(db, actor, question_id)


@router.post("/questions/{question_id}/decision", response_model=schemas.RevisionResponse)
def submit_decision(
    question_id: int,
    difficulty: Difficulty = Form(...),
    decision: Optional[Literal["accept", "reject"]] = Form(None),
    review_notes: Optional[str] = Form(None),
    rejection_notes: Optional[str] = Form(None),
    keywords: List[str] = Form([]),
    evidence: List[UploadFile] = File([]),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_reviewer),
    storage=Depends(get_storage),
    drive=Depends(get_drive),
):
    """
    Submit the review of a claimed question
    Easy questions always go back to the question maker; hard ones are accepted or rejected
    """
    verdict = schemas.QcDecision(
        difficulty=difficulty,
        decision=decision,
        review_notes=review_notes,
        rejection_notes=rejection_notes,
        keywords=keywords,
    )
    payloads = [payload_from_upload(f) for f in evidence if f.filename]
    return qc_workflow.submit_decision(db, actor, question_id, verdict, payloads, storage, drive)


@router.get("/quota", response_model=schemas.QuotaSummary)
def my_quota(db: Session = Depends(get_db), actor: Actor = Depends(require_reviewer)):
    return quota.quota_summary(db, actor.id)


@router.get("/quota/{reviewer_id}", response_model=schemas.QuotaSummary)
def reviewer_quota(reviewer_id: int, db: Session = Depends(get_db),
                   actor: Actor = Depends(require_roles(Role.ADMINISTRATOR))):
    return quota.quota_summary(db, reviewer_id)


@router.post("/claims/release-stale", response_model=schemas.StaleClaimReport)
def release_stale(db: Session = Depends(get_db), actor: Actor = Depends(require_roles(Role.ADMINISTRATOR))):
    """Release claims older than QC_CLAIM_TTL_MINUTES (no-op when it is 0)"""
    released = qc_workflow.release_stale_claims(db, actor)
    return {"released": released, "ttl_minutes": qc_workflow.QC_CLAIM_TTL_MINUTES}
