"""
Revision workflow: cross-role hand-offs recorded as Revision rows.

    request     one role asks another to fix something at package level;
                pending → approved | rejected by the target role (respond)
    acceptance  written by a QC decision; the target role edits the question and
                closes it with update_acceptance (pending → completed)
    recreation  spawned when a question maker approves an EASY_QUESTION_REVISION:
                the easy revision becomes "send to data-entry" and data entry
                redoes the question, closing the recreation with update_acceptance

Multi-row changes run in one transaction; files are stored first and removed
again if that transaction fails.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import crud, models, schemas
from database.models import Role, QcStatus, QuestionStatus, RevisionStatus, RevisionType, RevisionRemark
from auth.roles import has_capability
from services import clock
from services.errors import (
    AccessDeniedError, InvalidTransitionError, NotFoundError, ValidationFailedError, UploadFailedError,
)
from services.package_intake import store_package_file, validate_package_file
from services.question_authoring import apply_content_update
from services.uploads import UploadPayload, store_files, discard_files, sanitize_file_name

log = logging.getLogger(__name__)

EVIDENCE_BUCKET = "revision-evidence"
ACCEPTANCE_DONE_NOTE = "Question has been updated and reactivated"


def _get_revision(db: Session, revision_id: int) -> models.Revision:
    revision = crud.get_revision(db, revision_id)
    if not revision:
        raise NotFoundError(f"Revision with ID {revision_id} not found")
    return revision


def _require_target(actor, revision: models.Revision) -> None:
    if revision.target_role is not None and not has_capability(actor.role, revision.target_role):
        raise AccessDeniedError(f"This revision is addressed to {revision.target_role.value}")


def _clean_keywords(keywords: Optional[List[str]]) -> List[str]:
    return [k.strip() for k in (keywords or []) if k and k.strip()]


def _evidence_path(prefix: str):
    stamp = clock.now().strftime("%Y%m%dT%H%M%S%f")
    return lambda payload: f"{prefix}/{stamp}-{sanitize_file_name(payload.filename)}"


# ─── Read projections ─────────────────────────────────────────────────────────

def list_incoming(db: Session, actor, target_role: Optional[Role] = None, **filters) -> List[models.Revision]:
    """Revisions addressed to the caller's role (administrators may pick any role or see all)"""
    if actor.role != Role.ADMINISTRATOR:
        target_role = actor.role
    return crud.get_revisions(db, target_role=target_role, **filters)


def list_outgoing(db: Session, actor, **filters) -> List[models.Revision]:
    return crud.get_revisions(db, requested_by=actor.id, **filters)


def get_revision(db: Session, actor, revision_id: int) -> models.Revision:
    revision = _get_revision(db, revision_id)
    if actor.role != Role.ADMINISTRATOR and revision.requested_by != actor.id \
            and revision.target_role not in (None, actor.role):
        raise AccessDeniedError("Not a participant of this revision")
    return revision


# ─── Requests ─────────────────────────────────────────────────────────────────

def create_request(db: Session, actor, data: schemas.RevisionRequestCreate,
                   evidence: Optional[List[UploadPayload]] = None, storage=None, drive=None) -> models.Revision:
    """Open a package-level request addressed to another role"""
    if not crud.get_package(db, data.package_id):
        raise NotFoundError(f"Package with ID {data.package_id} not found")
    if data.question_id is not None:
        question = crud.get_question(db, data.question_id)
        if not question or question.package_id != data.package_id:
            raise ValidationFailedError(f"Question {data.question_id} is not part of package {data.package_id}")

    records = []
    if evidence:
        records = store_files(storage, drive, evidence, EVIDENCE_BUCKET, _evidence_path(f"request-{actor.id}"))

    revision = models.Revision(
        package_id=data.package_id,
        question_id=data.question_id,
        target_role=data.target_role,
        notes=data.notes.strip(),
        keywords=_clean_keywords(data.keywords),
        evidence_urls=records,
        status=RevisionStatus.PENDING,
        revision_type=RevisionType.REQUEST,
        remarks=RevisionRemark.REQUEST.value,
        requested_by=actor.id,
    )
    try:
        db.add(revision)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("Saving revision request on package %s failed", data.package_id)
        discard_files(storage, records)
        raise

    db.refresh(revision)
    log.info("Revision request %s: user %s → %s on package %s",
             revision.id, actor.id, data.target_role.value, data.package_id)
    return revision


def update_request(db: Session, actor, revision_id: int, update: schemas.RevisionRequestUpdate) -> models.Revision:
    """Requester edits their own request while nobody has answered it"""
    revision = _get_revision(db, revision_id)
    if revision.revision_type != RevisionType.REQUEST:
        raise InvalidTransitionError("Only revision requests can be edited")
    if revision.requested_by != actor.id and actor.role != Role.ADMINISTRATOR:
        raise AccessDeniedError("Only the requester can edit this request")
    if revision.status != RevisionStatus.PENDING:
        raise InvalidTransitionError(f"Request is already {revision.status.value}")

    update_data = update.model_dump(exclude_unset=True)
    if "keywords" in update_data:
        update_data["keywords"] = _clean_keywords(update_data["keywords"])
    for field, value in update_data.items():
        setattr(revision, field, value)
    db.commit()
    db.refresh(revision)
    return revision


# ─── Responses ────────────────────────────────────────────────────────────────

def respond(db: Session, actor, revision_id: int, response: schemas.RevisionResponseDecision,
            attachments: Optional[List[UploadPayload]] = None, package_file: Optional[UploadPayload] = None,
            storage=None, drive=None) -> Tuple[models.Revision, Optional[models.Revision]]:
    """
    Answer a pending request or easy-question revision.

    Approving an EASY_QUESTION_REVISION does not close the loop: the revision becomes
    "send to data-entry" and a recreation is opened for data entry. Approving a request
    may replace the package's source file.
    Returns (answered revision, recreation or None).
    """
    revision = _get_revision(db, revision_id)
    easy = revision.revision_type == RevisionType.ACCEPTANCE \
        and revision.remarks == RevisionRemark.EASY_QUESTION_REVISION.value
    if revision.revision_type != RevisionType.REQUEST and not easy:
        raise InvalidTransitionError("This revision is closed by updating the question")
    if revision.status != RevisionStatus.PENDING:
        raise InvalidTransitionError(f"Revision is already {revision.status.value}")
    _require_target(actor, revision)

    approve = response.decision == "approve"
    if package_file is not None and not (approve and revision.revision_type == RevisionType.REQUEST):
        raise ValidationFailedError("A replacement package file can only accompany an approved request")
    if easy and approve and revision.question_id is None:
        raise InvalidTransitionError("Easy-question revision has no question to recreate")

    if package_file is not None:
        validate_package_file(package_file)

    records = []
    if attachments:
        records = store_files(storage, drive, attachments, EVIDENCE_BUCKET, _evidence_path(f"revision-{revision.id}"))
    if package_file is not None:
        try:
            records.append(store_package_file(storage, drive, actor.id, package_file))
        except UploadFailedError:
            discard_files(storage, records)
            raise
    response_files = [r for r in records if r["bucket"] == EVIDENCE_BUCKET]

    now = clock.now()
    recreation = None
    try:
        revision.responded_by = actor.id
        revision.responded_at = now
        revision.response_notes = response.response_notes.strip()
        revision.response_attachments = response_files

        if easy and approve:
            revision.status = RevisionStatus.SENT_TO_DATA_ENTRY
            recreation = models.Revision(
                package_id=revision.package_id,
                question_id=revision.question_id,
                target_role=Role.DATA_ENTRY,
                notes=revision.notes,
                keywords=list(revision.keywords or []),
                evidence_urls=response_files,
                status=RevisionStatus.PENDING,
                revision_type=RevisionType.RECREATION,
                remarks=RevisionRemark.RECREATE_QUESTION.value,
                requested_by=actor.id,
            )
            db.add(recreation)
            question = crud.get_question(db, revision.question_id)
            question.qc_status = QcStatus.RECREATE_QUESTION
        else:
            revision.status = RevisionStatus.APPROVED if approve else RevisionStatus.REJECTED

        if package_file is not None and revision.package_id is not None:
            package = crud.get_package(db, revision.package_id)
            package.source_file_url = records[-1]["url"]
            package.source_file_path = records[-1]["path"]

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("Responding to revision %s failed, removing %d file(s)", revision_id, len(records))
        discard_files(storage, records)
        raise

    db.refresh(revision)
    if recreation is not None:
        db.refresh(recreation)
        log.info("Easy revision %s approved by %s, recreation %s sent to data entry",
                 revision.id, actor.id, recreation.id)
    else:
        log.info("Revision %s %s by user %s", revision.id, revision.status.value, actor.id)
    return revision, recreation


# ─── Acceptance update ────────────────────────────────────────────────────────

def update_acceptance(db: Session, actor, revision_id: int,
                      update: schemas.QuestionUpdate) -> Tuple[models.Question, models.Revision]:
    """
    Target role fixes the question behind an acceptance or recreation record.
    In one transaction: the question goes back to active / under_review, the revision
    is completed, and the question's QC review record returns to under_review.
    """
    revision = _get_revision(db, revision_id)
    if revision.revision_type not in (RevisionType.ACCEPTANCE, RevisionType.RECREATION):
        raise InvalidTransitionError("Only acceptance and recreation records update questions")
    if revision.remarks == RevisionRemark.EASY_QUESTION_REVISION.value:
        raise InvalidTransitionError("Answer easy-question revisions with approve/reject")
    if revision.status != RevisionStatus.PENDING:
        raise InvalidTransitionError(f"Revision is already {revision.status.value}")
    if revision.question_id is None:
        raise InvalidTransitionError("Revision has no question attached")
    _require_target(actor, revision)

    question = crud.get_question(db, revision.question_id)
    if not question:
        raise NotFoundError(f"Question with ID {revision.question_id} not found")
    if question.qc_status == QcStatus.UNDER_QC_REVIEW:
        raise InvalidTransitionError("Question is being reviewed and cannot be edited")

    now = clock.now()
    try:
        apply_content_update(db, question, update)
        question.status = QuestionStatus.ACTIVE
        question.qc_status = QcStatus.UNDER_REVIEW
        question.qc_reviewer_id = None
        question.qc_review_started_at = None
        question.revised_at = now

        revision.status = RevisionStatus.COMPLETED
        revision.response_notes = ACCEPTANCE_DONE_NOTE
        revision.responded_by = actor.id
        revision.responded_at = now

        review = crud.get_qc_review(db, question.id)
        if review is not None:
            review.status = QcStatus.UNDER_REVIEW

        db.commit()
    except (SQLAlchemyError, ValidationFailedError):
        db.rollback()
        raise

    db.refresh(question)
    db.refresh(revision)
    log.info("Question %s revised via revision %s by user %s, back to QC", question.id, revision.id, actor.id)
    return question, revision
