"""
Package intake: question makers submit a source document as a package.

Packages are never deleted. Status moves only through change_package_status
(qc_data / administrator). Progress is derived from the questions created so far.
"""

import os
import re
import time
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import crud, models, schemas
from database.models import Role, PackageStatus
from auth.roles import has_capability, has_any_capability
from services.errors import AccessDeniedError, NotFoundError, ValidationFailedError
from services.uploads import UploadPayload, store_file, discard_files

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

PACKAGE_BUCKET = os.getenv("PACKAGE_BUCKET", "organization-non-profit")
MAX_PACKAGE_UPLOAD_SIZE = int(os.getenv("MAX_PACKAGE_UPLOAD_SIZE", 10 * 1024 * 1024))  # 10MB
ALLOWED_EXTENSIONS = {".pdf", ".docx", ".doc", ".zip"}


# ─── Helpers ──────────────────────────────────────────────────────────────────

def package_file_path(user_id: int, filename: str) -> str:
    """<user id>/<epoch ms>-<name with unsafe characters replaced>"""
    clean_name = re.sub(r"[^a-zA-Z0-9.-]", "_", filename)
    return f"{user_id}/{int(time.time() * 1000)}-{clean_name}"


def validate_package_file(payload: UploadPayload) -> None:
    if not payload.filename:
        raise ValidationFailedError("A source file is required")
    ext = os.path.splitext(payload.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationFailedError(
            f"Unsupported file type '{ext or payload.filename}'. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if payload.size == 0:
        raise ValidationFailedError("Uploaded file is empty")
    if payload.size > MAX_PACKAGE_UPLOAD_SIZE:
        raise ValidationFailedError(
            f"File too large: {payload.size} bytes. Maximum size is {MAX_PACKAGE_UPLOAD_SIZE // 1048576}MB"
        )


def store_package_file(storage, drive, user_id: int, payload: UploadPayload) -> dict:
    validate_package_file(payload)
    return store_file(storage, drive, payload, PACKAGE_BUCKET, package_file_path(user_id, payload.filename))


def package_progress(created: int, target: int) -> dict:
    """created/target as a percentage capped at 100, plus its display state"""
    percentage = min(100, round(created * 100 / target)) if target > 0 else 0
    if percentage == 0:
        state = "not-started"
    elif percentage < 100:
        state = "on-progress"
    else:
        state = "completed"
    return {"created": created, "target": target, "percentage": percentage, "state": state}


def _with_progress(package: models.QuestionPackage, created: int) -> schemas.PackageResponse:
    response = schemas.PackageResponse.model_validate(package)
    response.progress = schemas.PackageProgress(**package_progress(created, package.amount_of_questions))
    return response


# ─── Operations ───────────────────────────────────────────────────────────────

def submit_package(db: Session, actor, data: schemas.PackageCreate, payload: UploadPayload,
                   storage, drive) -> models.QuestionPackage:
    """Store the source document, then record the package as pending"""
    if not has_capability(actor.role, Role.QUESTION_MAKER):
        raise AccessDeniedError("Only question makers can submit packages")
    if not actor.vendor_name:
        raise ValidationFailedError("Your user profile is missing a vendor name. Please contact an administrator.")

    subject = crud.get_node(db, models.Subject, data.subject_id)
    if not subject:
        raise ValidationFailedError(f"Subject with ID {data.subject_id} not found")
    if not crud.get_node(db, models.Exam, data.exam_id):
        raise ValidationFailedError(f"Exam with ID {data.exam_id} not found")

    record = store_package_file(storage, drive, actor.id, payload)

    package = models.QuestionPackage(
        vendor_name=actor.vendor_name,
        subject_id=subject.id,
        subject=subject.name,
        exam_id=data.exam_id,
        package_number=data.package_number,
        title=data.title.strip(),
        amount_of_questions=data.amount_of_questions,
        source_file_url=record["url"],
        source_file_path=record["path"],
        status=PackageStatus.PENDING,
        uploaded_by=actor.id,
    )
    try:
        db.add(package)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("Saving package '%s' failed, removing uploaded file", data.title)
        discard_files(storage, [record])
        raise

    db.refresh(package)
    log.info("Package %s '%s' submitted by user %s", package.id, package.title, actor.id)
    return package


def list_packages(db: Session, actor, status: Optional[PackageStatus] = None,
                  skip: int = 0, limit: int = 100) -> List[schemas.PackageResponse]:
    """Question makers see their own packages, every other role sees all"""
    uploaded_by = actor.id if actor.role == Role.QUESTION_MAKER else None
    packages = crud.get_packages(db, uploaded_by=uploaded_by, status=status, skip=skip, limit=limit)
    counts = crud.count_questions_by_package(db, [p.id for p in packages])
    return [_with_progress(p, counts.get(p.id, 0)) for p in packages]


def get_package(db: Session, package_id: int) -> schemas.PackageResponse:
    package = crud.get_package(db, package_id)
    if not package:
        raise NotFoundError(f"Package with ID {package_id} not found")
    return _with_progress(package, crud.count_questions_by_package(db, [package.id])[package.id])


def package_stats(db: Session, actor) -> dict:
    query = db.query(models.QuestionPackage)
    if actor.role == Role.QUESTION_MAKER:
        query = query.filter(models.QuestionPackage.uploaded_by == actor.id)

    by_status = {s.value: 0 for s in PackageStatus}
    rows = query.with_entities(
        models.QuestionPackage.status,
        func.count(models.QuestionPackage.id),
        func.coalesce(func.sum(models.QuestionPackage.amount_of_questions), 0),
    ).group_by(models.QuestionPackage.status).all()

    total_packages = total_questions = 0
    for status, count, questions in rows:
        by_status[status.value] = count
        total_packages += count
        total_questions += questions
    return {"total_packages": total_packages, "total_questions": total_questions, "by_status": by_status}


def change_package_status(db: Session, actor, package_id: int, status: PackageStatus,
                          feedback: Optional[str] = None) -> models.QuestionPackage:
    if not has_any_capability(actor.role, (Role.QC_DATA,)):
        raise AccessDeniedError("Only QC reviewers and administrators can change package status")

    package = crud.get_package(db, package_id)
    if not package:
        raise NotFoundError(f"Package with ID {package_id} not found")

    previous = package.status
    package.status = status
    if feedback is not None:
        package.feedback = feedback
    db.commit()
    db.refresh(package)
    log.info("Package %s status %s → %s by user %s", package.id, previous.value, status.value, actor.id)
    return package
