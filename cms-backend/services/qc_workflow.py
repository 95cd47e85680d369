"""
QC review workflow

Per-question states:
    pending_review ─claim→ under_qc_review ─decision→ approved | revision_requested | rejected
    under_qc_review ─release→ pending_review
    under_review (question revised after a decision) ─claim→ under_qc_review

Claim and release are conditional single-row updates: a reviewer only wins a
claim if the row is still unclaimed, and only the holder can release it.

Every decision upserts the question's acceptance Revision and its QcReview row
in the same transaction as the question update. Evidence files are stored
before that transaction and removed again if it fails.
"""

import os
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import crud, models, schemas
from database.models import (
    Role, QcStatus, QuestionStatus, Difficulty, RevisionStatus, RevisionType, RevisionRemark,
)
from auth.roles import has_capability
from services import clock
from services.errors import (
    AccessDeniedError, ClaimConflictError, InvalidTransitionError,
    NotFoundError, QuotaExceededError, ValidationFailedError,
)
from services.quota import enforce_quota, exceeds_quota
from services.uploads import UploadPayload, store_files, discard_files, sanitize_file_name

log = logging.getLogger(__name__)

QC_CLAIM_TTL_MINUTES = int(os.getenv("QC_CLAIM_TTL_MINUTES", "0"))
EVIDENCE_BUCKET = "revision-evidence"

CLAIMABLE_STATES = (QcStatus.PENDING_REVIEW, QcStatus.UNDER_REVIEW)

KEYWORD_OPTIONS = (
    "Coding & Formatting Error",
    "Conceptual Error",
    "Typo/Grammar Error",
    "Answer/Explanation Mismatch",
    "Incomplete Question/Explanation",
    "Ambiguous Wording",
    "Visual/Graphical Errors",
)
# Rejections carrying any of these go to data entry, the rest to the question maker
DATA_ENTRY_KEYWORDS = frozenset({"Coding & Formatting Error", "Visual/Graphical Errors"})


def route_rejection(keywords: Iterable[str]) -> Role:
    return Role.DATA_ENTRY if DATA_ENTRY_KEYWORDS.intersection(keywords) else Role.QUESTION_MAKER


def _require_reviewer(actor) -> None:
    if not has_capability(actor.role, Role.QC_DATA):
        raise AccessDeniedError("Only QC reviewers can review questions")


def _get_question(db: Session, question_id: int) -> models.Question:
    question = crud.get_question(db, question_id)
    if not question:
        raise NotFoundError(f"Question with ID {question_id} not found")
    return question


# ─── Listings ─────────────────────────────────────────────────────────────────

def list_available(db: Session, subject_id: Optional[int] = None, skip: int = 0, limit: int = 100):
    """Unclaimed questions waiting for (re-)review"""
    return crud.get_questions(db, qc_status=list(CLAIMABLE_STATES), subject_id=subject_id,
                              unclaimed=True, skip=skip, limit=limit)


def list_under_review(db: Session, reviewer_id: Optional[int] = None, skip: int = 0, limit: int = 100):
    return crud.get_questions(db, qc_status=[QcStatus.UNDER_QC_REVIEW], qc_reviewer_id=reviewer_id,
                              skip=skip, limit=limit)


# ─── Claim / release ──────────────────────────────────────────────────────────

def claim_question(db: Session, actor, question_id: int) -> models.Question:
    """Take exclusive ownership of a question; exactly one concurrent claimer wins"""
    _require_reviewer(actor)
    previous_status = _get_question(db, question_id).qc_status
    enforce_quota(db, actor.id)

    claimed = crud.compare_and_set(
        db, models.Question, question_id,
        expected={"qc_status": CLAIMABLE_STATES, "qc_reviewer_id": None},
        changes={
            "qc_status": QcStatus.UNDER_QC_REVIEW,
            "qc_reviewer_id": actor.id,
            "qc_review_started_at": clock.now(),
        },
    )
    question = _get_question(db, question_id)
    if not claimed:
        if question.qc_status == QcStatus.UNDER_QC_REVIEW:
            log.warning("Reviewer %s lost claim on question %s to reviewer %s",
                        actor.id, question_id, question.qc_reviewer_id)
            raise ClaimConflictError("Question is already taken by another reviewer")
        raise InvalidTransitionError(f"Question cannot be claimed while {question.qc_status.value}")

    # Concurrent claims by one reviewer can all pass enforce_quota; the late ones are undone
    if exceeds_quota(db, actor.id):
        crud.compare_and_set(
            db, models.Question, question_id,
            expected={"qc_status": QcStatus.UNDER_QC_REVIEW, "qc_reviewer_id": actor.id},
            changes={"qc_status": previous_status, "qc_reviewer_id": None, "qc_review_started_at": None},
        )
        log.warning("Reviewer %s went over quota claiming question %s, claim undone", actor.id, question_id)
        raise QuotaExceededError("Quota reached: too many questions already under review")

    log.info("Question %s claimed by reviewer %s", question_id, actor.id)
    return question


def release_question(db: Session, actor, question_id: int) -> models.Question:
    """Give a claim back; only the reviewer holding it can do so"""
    _require_reviewer(actor)
    _get_question(db, question_id)

    released = crud.compare_and_set(
        db, models.Question, question_id,
        expected={"qc_status": QcStatus.UNDER_QC_REVIEW, "qc_reviewer_id": actor.id},
        changes={
            "qc_status": QcStatus.PENDING_REVIEW,
            "qc_reviewer_id": None,
            "qc_review_started_at": None,
        },
    )
    question = _get_question(db, question_id)
    if not released:
        if question.qc_status == QcStatus.UNDER_QC_REVIEW:
            log.warning("Reviewer %s tried to release question %s held by reviewer %s",
                        actor.id, question_id, question.qc_reviewer_id)
            raise AccessDeniedError("Question is claimed by another reviewer")
        raise InvalidTransitionError("Question is not under review")

    log.info("Question %s released by reviewer %s", question_id, actor.id)
    return question


def release_stale_claims(db: Session, actor, ttl_minutes: int = QC_CLAIM_TTL_MINUTES,
                         now: Optional[datetime] = None) -> List[int]:
    """Release claims older than ttl_minutes (administrator). A ttl of 0 disables it."""
    if actor.role != Role.ADMINISTRATOR:
        raise AccessDeniedError("Only administrators can release stale claims")
    if ttl_minutes <= 0:
        return []

    cutoff = (now or clock.now()) - timedelta(minutes=ttl_minutes)
    stale = db.query(models.Question).filter(
        models.Question.qc_status == QcStatus.UNDER_QC_REVIEW,
        models.Question.qc_review_started_at < cutoff,
    ).all()
    candidates = [(q.id, q.qc_reviewer_id, q.qc_review_started_at) for q in stale]

    released = []
    for question_id, reviewer_id, started_at in candidates:
        if crud.compare_and_set(
            db, models.Question, question_id,
            expected={
                "qc_status": QcStatus.UNDER_QC_REVIEW,
                "qc_reviewer_id": reviewer_id,
                "qc_review_started_at": started_at,
            },
            changes={"qc_status": QcStatus.PENDING_REVIEW, "qc_reviewer_id": None, "qc_review_started_at": None},
        ):
            released.append(question_id)
            log.info("Released stale claim of reviewer %s on question %s", reviewer_id, question_id)
    return released


# ─── Decision ─────────────────────────────────────────────────────────────────

def _validate_decision(decision: schemas.QcDecision) -> List[str]:
    keywords = [k.strip() for k in decision.keywords if k and k.strip()]
    unknown = [k for k in keywords if k not in KEYWORD_OPTIONS]
    if unknown:
        raise ValidationFailedError(f"Unknown keyword(s): {', '.join(unknown)}")

    if decision.difficulty == Difficulty.HARD:
        if decision.decision is None:
            raise ValidationFailedError("Hard questions need an accept or reject decision")
        if decision.decision == "reject":
            if not (decision.rejection_notes or "").strip():
                raise ValidationFailedError("Rejection notes are required")
            if not keywords:
                raise ValidationFailedError("At least one keyword is required when rejecting")
    return keywords


def _outcome(decision: schemas.QcDecision, keywords: List[str], now: datetime) -> dict:
    """Question changes plus the acceptance revision's routing for a decision"""
    if decision.difficulty == Difficulty.EASY:
        return {
            "question": {"qc_status": QcStatus.REVISION_REQUESTED},
            "target_role": Role.QUESTION_MAKER,
            "remarks": RevisionRemark.EASY_QUESTION_REVISION,
            "revision_status": RevisionStatus.PENDING,
        }
    if decision.decision == "accept":
        return {
            "question": {
                "status": QuestionStatus.QC_PASSED,
                "qc_status": QcStatus.APPROVED,
                "approved_at": func.coalesce(models.Question.approved_at, now),
            },
            "target_role": None,
            "remarks": RevisionRemark.QC_APPROVED,
            "revision_status": RevisionStatus.APPROVED,
        }

    target_role = route_rejection(keywords)
    return {
        "question": {
            "status": QuestionStatus.REVISED,
            "qc_status": QcStatus.REJECTED,
            "rejected_at": now,
        },
        "target_role": target_role,
        "remarks": (RevisionRemark.SEND_TO_DATA_ENTRY if target_role == Role.DATA_ENTRY
                    else RevisionRemark.SEND_TO_QUESTION_MAKER),
        "revision_status": RevisionStatus.PENDING,
    }


def _upsert_acceptance(db: Session, question: models.Question, actor, outcome: dict,
                       notes: Optional[str], keywords: List[str], evidence: List[dict]) -> models.Revision:
    revision = crud.get_acceptance_revision(db, question.id)
    if revision is None:
        revision = models.Revision(question_id=question.id, revision_type=RevisionType.ACCEPTANCE)
        db.add(revision)

    revision.package_id = question.package_id
    revision.target_role = outcome["target_role"]
    revision.remarks = outcome["remarks"].value
    revision.status = outcome["revision_status"]
    revision.notes = notes
    revision.keywords = keywords
    revision.evidence_urls = evidence
    revision.requested_by = actor.id
    revision.responded_by = None
    revision.responded_at = None
    revision.response_notes = None
    revision.response_attachments = []
    return revision


def _upsert_qc_review(db: Session, question_id: int, actor, decision: schemas.QcDecision,
                      qc_status: QcStatus) -> models.QcReview:
    review = crud.get_qc_review(db, question_id)
    if review is None:
        review = models.QcReview(question_id=question_id)
        db.add(review)
    review.reviewer_id = actor.id
    review.difficulty = decision.difficulty
    review.status = qc_status
    review.review_notes = decision.review_notes
    return review


def submit_decision(db: Session, actor, question_id: int, decision: schemas.QcDecision,
                    evidence: Optional[List[UploadPayload]] = None, storage=None, drive=None) -> models.Revision:
    """
    Record a reviewer's verdict on a question they hold.

    - easy: always revision_requested, routed to the question maker
    - hard + accept: qc_passed / approved (approved_at kept if already set)
    - hard + reject: revised / rejected, routed by keyword (see route_rejection)
    """
    _require_reviewer(actor)
    keywords = _validate_decision(decision)

    question = _get_question(db, question_id)
    if question.qc_status != QcStatus.UNDER_QC_REVIEW:
        raise InvalidTransitionError("Claim the question before submitting a decision")
    if question.qc_reviewer_id != actor.id:
        raise AccessDeniedError("Question is claimed by another reviewer")

    stamp = clock.now()
    records = []
    if evidence:
        folder = f"question-{question_id}/{stamp.strftime('%Y%m%dT%H%M%S%f')}"
        records = store_files(storage, drive, evidence, EVIDENCE_BUCKET,
                              lambda p: f"{folder}-{sanitize_file_name(p.filename)}")

    outcome = _outcome(decision, keywords, stamp)
    notes = decision.rejection_notes if decision.decision == "reject" and decision.difficulty == Difficulty.HARD \
        else decision.review_notes
    try:
        still_held = crud.compare_and_set(
            db, models.Question, question_id,
            expected={"qc_status": QcStatus.UNDER_QC_REVIEW, "qc_reviewer_id": actor.id},
            changes={
                **outcome["question"],
                "qc_difficulty_level": decision.difficulty,
                "qc_reviewer_id": None,
                "qc_review_started_at": None,
            },
            commit=False,
        )
        if not still_held:
            db.rollback()
            discard_files(storage, records)
            raise ClaimConflictError("Claim was released before the decision was saved")

        revision = _upsert_acceptance(db, question, actor, outcome, notes, keywords, records)
        _upsert_qc_review(db, question_id, actor, decision, outcome["question"]["qc_status"])
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("QC decision on question %s failed, removing %d evidence file(s)", question_id, len(records))
        discard_files(storage, records)
        raise

    db.refresh(revision)
    log.info("Question %s reviewed by %s: %s/%s → %s (target %s)",
             question_id, actor.id, decision.difficulty.value, decision.decision or "-",
             outcome["question"]["qc_status"].value,
             outcome["target_role"].value if outcome["target_role"] else "none")
    return revision
