"""
Revision endpoints
Incoming (addressed to my role) / outgoing (requested by me) views over one table,
plus the request, respond and acceptance-update transitions.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session
from typing import List, Literal, Optional

from database import schemas
from database.database import get_db
from database.models import Role, RevisionStatus, RevisionType
from auth.dependencies import Actor, get_current_actor
from services import revision_workflow
from services.storage import get_storage
from services.google_drive import get_drive
from services.uploads import payload_from_upload

router = APIRouter(prefix="/revisions", tags=["revisions"])


def _filters(status: Optional[RevisionStatus] = None, revision_type: Optional[RevisionType] = None,
             remarks: Optional[str] = None, has_question: Optional[bool] = None,
             package_id: Optional[int] = None, skip: int = 0, limit: int = 100) -> dict:
    return {
        "status": status, "revision_type": revision_type, "remarks": remarks,
        "has_question": has_question, "package_id": package_id, "skip": skip, "limit": limit,
    }


@router.get("/incoming", response_model=List[schemas.RevisionResponse])
def list_incoming(target_role: Optional[Role] = None, filters: dict = Depends(_filters),
                  db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Revisions addressed to my role (administrators may choose the role)"""
    return revision_workflow.list_incoming(db, actor, target_role=target_role, **filters)


@router.get("/outgoing", response_model=List[schemas.RevisionResponse])
def list_outgoing(filters: dict = Depends(_filters), db: Session = Depends(get_db),
                  actor: Actor = Depends(get_current_actor)):
    return revision_workflow.list_outgoing(db, actor, **filters)


@router.get("/{revision_id}", response_model=schemas.RevisionDetail)
def get_revision(revision_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Revision with the question it points at"""
    return revision_workflow.get_revision(db, actor, revision_id)


@router.post("/requests", response_model=schemas.RevisionResponse, status_code=status.HTTP_201_CREATED)
def create_request(
    package_id: int = Form(..., gt=0),
    target_role: Role = Form(...),
    notes: str = Form(..., min_length=1),
    question_id: Optional[int] = Form(None, gt=0),
    keywords: List[str] = Form([]),
    evidence: List[UploadFile] = File([]),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    storage=Depends(get_storage),
    drive=Depends(get_drive),
):
    """Ask another role to fix something in a package"""
    data = schemas.RevisionRequestCreate(
        package_id=package_id,
        question_id=question_id,
        target_role=target_role,
        notes=notes,
        keywords=keywords,
    )
    payloads = [payload_from_upload(f) for f in evidence if f.filename]
    return revision_workflow.create_request(db, actor, data, payloads, storage, drive)


@router.put("/requests/{revision_id}", response_model=schemas.RevisionResponse)
def update_request(revision_id: int, update: schemas.RevisionRequestUpdate, db: Session = Depends(get_db),
                   actor: Actor = Depends(get_current_actor)):
    return revision_workflow.update_request(db, actor, revision_id, update)


@router.post("/{revision_id}/respond", response_model=schemas.RespondResult)
def respond(
    revision_id: int,
    decision: Literal["approve", "reject"] = Form(...),
    response_notes: str = Form(..., min_length=1),
    attachments: List[UploadFile] = File([]),
    package_file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    storage=Depends(get_storage),
    drive=Depends(get_drive),
):
    """
    Approve or reject a pending request / easy-question revision
    Approving an easy-question revision forwards it to data entry as a recreation
    """
    response = schemas.RevisionResponseDecision(decision=decision, response_notes=response_notes)
    payloads = [payload_from_upload(f) for f in attachments if f.filename]
    replacement = payload_from_upload(package_file) if package_file is not None and package_file.filename else None
    revision, recreation = revision_workflow.respond(
        db, actor, revision_id, response, payloads, replacement, storage, drive
    )
    return {"revision": revision, "recreation": recreation}


@router.put("/{revision_id}/acceptance", response_model=schemas.AcceptanceUpdateResult)
def update_acceptance(revision_id: int, update: schemas.QuestionUpdate, db: Session = Depends(get_db),
                      actor: Actor = Depends(get_current_actor)):
    """Fix the question behind an acceptance/recreation record and send it back to QC"""
    question, revision = revision_workflow.update_acceptance(db, actor, revision_id, update)
    return {"question": question, "revision": revision}
