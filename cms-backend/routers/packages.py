"""
Question package endpoints
Question makers submit source documents; everyone else follows their progress.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session
from typing import List, Optional

from database import schemas
from database.database import get_db
from database.models import PackageStatus, Role
from auth.dependencies import Actor, get_current_actor, require_roles
from services import package_intake
from services.storage import get_storage
from services.google_drive import get_drive
from services.uploads import payload_from_upload

router = APIRouter(prefix="/packages", tags=["packages"])


@router.post("/", response_model=schemas.PackageResponse, status_code=status.HTTP_201_CREATED)
def submit_package(
    subject_id: int = Form(..., gt=0),
    exam_id: int = Form(..., gt=0),
    package_number: int = Form(..., gt=0),
    title: str = Form(..., min_length=1, max_length=255),
    amount_of_questions: int = Form(..., gt=0),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.QUESTION_MAKER)),
    storage=Depends(get_storage),
    drive=Depends(get_drive),
):
    """
    Submit a question package
    Accepts .pdf, .docx, .doc and .zip up to 10MB (MAX_PACKAGE_UPLOAD_SIZE)
    """
    data = schemas.PackageCreate(
        subject_id=subject_id,
        exam_id=exam_id,
        package_number=package_number,
        title=title,
        amount_of_questions=amount_of_questions,
    )
    package = package_intake.submit_package(db, actor, data, payload_from_upload(file), storage, drive)
    return package_intake.get_package(db, package.id)


@router.get("/", response_model=List[schemas.PackageResponse])
def list_packages(status: Optional[PackageStatus] = None, skip: int = 0, limit: int = 100,
                  db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """
    List packages with creation progress
    Question makers only see their own submissions
    """
    return package_intake.list_packages(db, actor, status=status, skip=skip, limit=limit)


@router.get("/stats", response_model=schemas.PackageStats)
def package_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return package_intake.package_stats(db, actor)


@router.get("/{package_id}", response_model=schemas.PackageResponse)
def get_package(package_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return package_intake.get_package(db, package_id)


@router.patch("/{package_id}/status", response_model=schemas.PackageResponse)
def change_status(package_id: int, update: schemas.PackageStatusUpdate, db: Session = Depends(get_db),
                  actor: Actor = Depends(require_roles(Role.QC_DATA))):
    package_intake.change_package_status(db, actor, package_id, update.status, update.feedback)
    return package_intake.get_package(db, package_id)
