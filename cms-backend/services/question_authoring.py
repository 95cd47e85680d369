"""
Question authoring: data entry turns a package into numbered questions.

inhouse_id = <subject abbreviation>-<package number, 2 digits>-<sequence number>
Sequence numbers start at 100 per package and increase by one; a duplicate
(package_id, sequence_number) from a concurrent insert is retried.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import crud, models, schemas
from database.models import Role, QuestionType, QuestionStatus, QcStatus
from auth.roles import has_capability
from services.errors import (
    AccessDeniedError, NotFoundError, ValidationFailedError,
    InvalidTransitionError, ClaimConflictError,
)
from services.uploads import UploadPayload, store_file, discard_files, generate_unique_file_name

log = logging.getLogger(__name__)

FIRST_SEQUENCE_NUMBER = 100
MAX_SEQUENCE_RETRIES = 3

SUBJECT_ABBREVIATIONS = {
    "Literasi Dalam Bahasa Indonesia": "LBI",
    "Literasi Dalam Bahasa Inggris": "LBE",
    "Pemahaman Baca dan Menulis": "PBM",
    "Penalaran Matematika": "PMK",
    "Penalaran Umum": "PUM",
    "Pengetahuan dan Pemahaman Umum": "PPU",
    "Pengetahuan Kuantitatif": "PKT",
}

# attachment kind → (bucket, file name prefix)
ATTACHMENT_BUCKETS = {
    "question": ("question-attachments", "question_"),
    "solution": ("solution-attachments", "solution_"),
}

OPTION_FIELDS = ("option_a", "option_b", "option_c", "option_d", "option_e")
CONTENT_FIELDS = OPTION_FIELDS + (
    "question_type", "question", "correct_option", "correct_answer", "solution",
    "chapter_id", "topic_id", "concept_title_id",
)
# Columns an edit may change but never clear
REQUIRED_FIELDS = ("question_type", "chapter_id", "topic_id", "concept_title_id")


# ─── Identity helpers ─────────────────────────────────────────────────────────

def subject_abbreviation(subject_name: str, abbreviation: Optional[str] = None) -> str:
    """Stored abbreviation, else the built-in table, else the subject name itself"""
    if abbreviation:
        return abbreviation
    return SUBJECT_ABBREVIATIONS.get(subject_name, subject_name)


def build_inhouse_id(abbreviation: str, package_number: int, sequence_number: int) -> str:
    return f"{abbreviation}-{str(package_number).zfill(2)}-{sequence_number}"


def next_sequence_number(db: Session, package_id: int) -> int:
    current = crud.max_sequence_number(db, package_id)
    return FIRST_SEQUENCE_NUMBER if current is None else current + 1


# ─── Validation ───────────────────────────────────────────────────────────────

def validate_taxonomy(db: Session, subject_id: int, chapter_id: int, topic_id: int, concept_title_id: int) -> None:
    """The four ids must form one branch of the subject → chapter → topic → concept tree"""
    chapter = crud.get_node(db, models.Chapter, chapter_id)
    if not chapter or chapter.subject_id != subject_id:
        raise ValidationFailedError(f"Chapter {chapter_id} does not belong to subject {subject_id}")
    topic = crud.get_node(db, models.Topic, topic_id)
    if not topic or topic.chapter_id != chapter_id:
        raise ValidationFailedError(f"Topic {topic_id} does not belong to chapter {chapter_id}")
    concept = crud.get_node(db, models.ConceptTitle, concept_title_id)
    if not concept or concept.topic_id != topic_id:
        raise ValidationFailedError(f"Concept title {concept_title_id} does not belong to topic {topic_id}")


def validate_answer(content: dict) -> None:
    """MCQ needs two or more options and a correct option that is filled in; others need an answer"""
    if content.get("question_type") == QuestionType.MCQ:
        filled = [f for f in OPTION_FIELDS if (content.get(f) or "").strip()]
        if len(filled) < 2:
            raise ValidationFailedError("MCQ questions need at least two options")
        correct = content.get("correct_option")
        if not correct:
            raise ValidationFailedError("MCQ questions need a correct option")
        if f"option_{correct.lower()}" not in filled:
            raise ValidationFailedError(f"Correct option {correct} is empty")
    elif not (content.get("correct_answer") or "").strip():
        raise ValidationFailedError(f"{content.get('question_type').value} questions need a correct answer")


def apply_content_update(db: Session, question: models.Question, update: schemas.QuestionUpdate) -> None:
    """Validate the merged content and copy it onto the question (no commit)"""
    update_data = update.model_dump(exclude_unset=True)
    cleared = [field for field in REQUIRED_FIELDS if field in update_data and update_data[field] is None]
    if cleared:
        raise ValidationFailedError(f"{', '.join(cleared)} cannot be empty")
    merged ={field: getattr(question, field) for field in CONTENT_FIELDS}
    merged.update(update_data)

    if merged.get("question") is None or not str(merged["question"]).strip():
        raise ValidationFailedError("Question text is required")
    validate_taxonomy(db, question.subject_id, merged["chapter_id"], merged["topic_id"], merged["concept_title_id"])
    validate_answer(merged)

    for field, value in update_data.items():
        setattr(question, field, value)


def _require_data_entry(actor) -> None:
    if not has_capability(actor.role, Role.DATA_ENTRY):
        raise AccessDeniedError("Only data entry can author questions")


def _get_question(db: Session, question_id: int) -> models.Question:
    question = crud.get_question(db, question_id)
    if not question:
        raise NotFoundError(f"Question with ID {question_id} not found")
    return question


# ─── Operations ───────────────────────────────────────────────────────────────

def create_question(db: Session, actor, data: schemas.QuestionCreate) -> models.Question:
    """Create the next question of a package, pending QC review"""
    _require_data_entry(actor)

    package = crud.get_package(db, data.package_id)
    if not package:
        raise NotFoundError(f"Package with ID {data.package_id} not found")
    if package.subject_id is not None and package.subject_id != data.subject_id:
        raise ValidationFailedError(f"Package {package.id} belongs to subject {package.subject_id}")

    subject = crud.get_node(db, models.Subject, data.subject_id)
    if not subject:
        raise ValidationFailedError(f"Subject with ID {data.subject_id} not found")
    validate_taxonomy(db, data.subject_id, data.chapter_id, data.topic_id, data.concept_title_id)
    validate_answer(data.model_dump())

    abbreviation = subject_abbreviation(package.subject or subject.name, subject.abbreviation)

    for attempt in range(1, MAX_SEQUENCE_RETRIES + 1):
        sequence_number = next_sequence_number(db, package.id)
        question = models.Question(
            **data.model_dump(),
            inhouse_id=build_inhouse_id(abbreviation, package.package_number, sequence_number),
            sequence_number=sequence_number,
            attachments=[],
            status=QuestionStatus.ACTIVE,
            qc_status=QcStatus.PENDING_REVIEW,
            created_by=actor.id,
        )
        db.add(question)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            log.warning("Sequence %s of package %s taken (attempt %d)", sequence_number, package.id, attempt)
            continue
        db.refresh(question)
        log.info("Question %s (%s) created by user %s", question.id, question.inhouse_id, actor.id)
        return question

    raise ClaimConflictError("Another question took this sequence number. Please try again.")


def add_attachment(db: Session, actor, question_id: int, kind: str, payload: UploadPayload,
                   storage, drive) -> models.Question:
    """Store a question or solution attachment and link it to the question"""
    _require_data_entry(actor)
    if kind not in ATTACHMENT_BUCKETS:
        raise ValidationFailedError(f"Unknown attachment kind '{kind}'")
    question = _get_question(db, question_id)

    bucket, prefix = ATTACHMENT_BUCKETS[kind]
    record = store_file(storage, drive, payload, bucket, generate_unique_file_name(payload.filename, prefix))
    record["kind"] = kind
    try:
        question.attachments = list(question.attachments or []) + [record]
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("Linking attachment to question %s failed", question_id)
        discard_files(storage, [record])
        raise

    db.refresh(question)
    return question


def edit_question(db: Session, actor, question_id: int, update: schemas.QuestionUpdate) -> models.Question:
    _require_data_entry(actor)
    question = _get_question(db, question_id)
    if question.qc_status == QcStatus.UNDER_QC_REVIEW:
        raise InvalidTransitionError("Question is being reviewed and cannot be edited")

    apply_content_update(db, question, update)
    question.status = QuestionStatus.EDITED
    db.commit()
    db.refresh(question)
    log.info("Question %s edited by user %s", question.id, actor.id)
    return question


def delete_question(db: Session, actor, question_id: int) -> None:
    """Hard delete; refused once the question has review history"""
    _require_data_entry(actor)
    question = _get_question(db, question_id)
    if question.qc_status == QcStatus.UNDER_QC_REVIEW:
        raise InvalidTransitionError("Question is being reviewed and cannot be deleted")
    if db.query(models.Revision).filter(models.Revision.question_id == question_id).first():
        raise InvalidTransitionError("Question has revision history and cannot be deleted")

    db.query(models.QcReview).filter(models.QcReview.question_id == question_id).delete(synchronize_session=False)
    crud.delete_question(db, question_id)
    log.info("Question %s deleted by user %s", question_id, actor.id)


def list_revised_questions(db: Session, created_by: Optional[int] = None, skip: int = 0, limit: int = 100):
    return crud.get_questions(db, status=QuestionStatus.REVISED, created_by=created_by, skip=skip, limit=limit)