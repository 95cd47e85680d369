"""
SQLAlchemy models for the question CMS
Subject → Chapter → Topic → ConceptTitle taxonomy, users, packages, questions,
revisions (append-only hand-off trail) and the live QC review record.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Text, JSON,
    UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from database.database import Base


def _enum_column(enum_cls, **kwargs):
    return Column(SQLEnum(enum_cls, values_callable=lambda x: [e.value for e in x]), **kwargs)


# ==========================================
# ENUMS
# ==========================================

class Role(str, enum.Enum):
    QUESTION_MAKER = "question_maker"
    DATA_ENTRY = "data_entry"
    QC_DATA = "qc_data"
    METADATA = "metadata"
    ADMINISTRATOR = "administrator"


class PackageStatus(str, enum.Enum):
    PENDING = "pending"
    REVISION = "revision"
    APPROVED = "approved"
    REJECTED = "rejected"


class QuestionType(str, enum.Enum):
    MCQ = "MCQ"
    ESSAY = "Essay"
    SHORT_ANSWER = "Short Answer"


class QuestionStatus(str, enum.Enum):
    ACTIVE = "active"
    REVISED = "revised"
    EDITED = "edited"
    QC_PASSED = "qc_passed"


class QcStatus(str, enum.Enum):
    PENDING_REVIEW = "pending_review"
    UNDER_QC_REVIEW = "under_qc_review"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"
    RECREATE_QUESTION = "recreate_question"


class Difficulty(str, enum.Enum):
    EASY = "easy"
    HARD = "hard"


class RevisionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    SENT_TO_DATA_ENTRY = "send to data-entry"


class RevisionType(str, enum.Enum):
    REQUEST = "request"
    ACCEPTANCE = "acceptance"
    RECREATION = "recreation"


class RevisionRemark(str, enum.Enum):
    """Routing tags written into Revision.remarks"""
    EASY_QUESTION_REVISION = "EASY_QUESTION_REVISION"
    SEND_TO_QUESTION_MAKER = "SEND_TO_QUESTION_MAKER"
    SEND_TO_DATA_ENTRY = "SEND_TO_DATA_ENTRY"
    RECREATE_QUESTION = "RECREATE_QUESTION"
    QC_APPROVED = "QC_APPROVED"
    REQUEST = "REQUEST"


# ==========================================
# USERS
# ==========================================

class User(Base):
    """
    Internal user record. Login is delegated to the identity provider;
    the email is the join key. Soft-deleted rows (is_deleted / deleted_at) never log in.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    role = _enum_column(Role, nullable=False, index=True)
    vendor_name = Column(String(255), nullable=True)
    is_deleted = Column(Boolean, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ==========================================
# TAXONOMY: SUBJECT → CHAPTER → TOPIC → CONCEPT TITLE
# ==========================================

class Subject(Base):
    """
    Top-level subject (e.g. 'Penalaran Matematika').
    abbreviation prefixes every inhouse question id of the subject.
    """
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    abbreviation = Column(String(10), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    chapters = relationship("Chapter", back_populates="subject")

    def __repr__(self):
        return f"<Subject(id={self.id}, name='{self.name}')>"


class Chapter(Base):
    __tablename__ = "chapters"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    subject = relationship("Subject", back_populates="chapters")
    topics = relationship("Topic", back_populates="chapter")

    def __repr__(self):
        return f"<Chapter(id={self.id}, name='{self.name}', subject_id={self.subject_id})>"


class Topic(Base):
    __tablename__ = "topics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    chapter = relationship("Chapter", back_populates="topics")
    concept_titles = relationship("ConceptTitle", back_populates="topic")

    def __repr__(self):
        return f"<Topic(id={self.id}, name='{self.name}', chapter_id={self.chapter_id})>"


class ConceptTitle(Base):
    """Finest-grained taxonomy node; leaf of the four-level tree"""
    __tablename__ = "concept_titles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    topic_id = Column(Integer, ForeignKey("topics.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    topic = relationship("Topic", back_populates="concept_titles")

    def __repr__(self):
        return f"<ConceptTitle(id={self.id}, name='{self.name}', topic_id={self.topic_id})>"


class Exam(Base):
    """Exam name lookup (e.g. 'UTBK-SNBT')."""
    __tablename__ = "exam_names"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Exam(id={self.id}, name='{self.name}')>"


# ==========================================
# PACKAGES
# ==========================================

class QuestionPackage(Base):
    """
    Uploaded source document bundling many not-yet-digitised questions.
    amount_of_questions is the declared target; progress is derived from created questions.
    Never deleted, only status changes.
    """
    __tablename__ = "question_packages"

    id = Column(Integer, primary_key=True, index=True)
    vendor_name = Column(String(255), nullable=False, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=True, index=True)
    subject = Column(String(255), nullable=False)  # subject name at submission time
    exam_id = Column(Integer, ForeignKey("exam_names.id"), nullable=True)
    package_number = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    amount_of_questions = Column(Integer, nullable=False)
    source_file_url = Column(String(1000), nullable=False)
    source_file_path = Column(String(500), nullable=True)
    status = _enum_column(PackageStatus, nullable=False, default=PackageStatus.PENDING, index=True)
    feedback = Column(Text, nullable=True)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    uploader = relationship("User", foreign_keys=[uploaded_by])
    exam = relationship("Exam")
    questions = relationship("Question", back_populates="package")

    def __repr__(self):
        return f"<QuestionPackage(id={self.id}, title='{self.title}', status='{self.status}')>"


# ==========================================
# QUESTIONS
# ==========================================

class Question(Base):
    """
    One structured exam item derived from a package.
    Holds only current state; history lives in Revision rows.

    qc_reviewer_id is set iff qc_status == under_qc_review. Claim and release
    go through a conditional update so exactly one reviewer can hold a question.
    """
    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint("package_id", "sequence_number", name="uq_question_package_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inhouse_id = Column(String(50), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("question_packages.id"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)

    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id"), nullable=False)
    topic_id = Column(Integer, ForeignKey("topics.id"), nullable=False)
    concept_title_id = Column(Integer, ForeignKey("concept_titles.id"), nullable=False)

    question_type = _enum_column(QuestionType, nullable=False, index=True)
    question = Column(Text, nullable=False)
    option_a = Column(Text, nullable=True)
    option_b = Column(Text, nullable=True)
    option_c = Column(Text, nullable=True)
    option_d = Column(Text, nullable=True)
    option_e = Column(Text, nullable=True)
    correct_option = Column(String(1), nullable=True)
    correct_answer = Column(Text, nullable=True)
    solution = Column(Text, nullable=True)
    attachments = Column(JSON, default=list, nullable=False)  # [{kind, name, url, path, bucket, drive_url}]

    status = _enum_column(QuestionStatus, nullable=False, default=QuestionStatus.ACTIVE, index=True)
    qc_status = _enum_column(QcStatus, nullable=False, default=QcStatus.PENDING_REVIEW, index=True)
    qc_reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    qc_review_started_at = Column(DateTime(timezone=True), nullable=True)
    qc_difficulty_level = _enum_column(Difficulty, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    revised_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    package = relationship("QuestionPackage", back_populates="questions")
    subject = relationship("Subject")
    chapter = relationship("Chapter")
    topic = relationship("Topic")
    concept_title = relationship("ConceptTitle")
    creator = relationship("User", foreign_keys=[created_by])
    reviewer = relationship("User", foreign_keys=[qc_reviewer_id])

    def __repr__(self):
        return f"<Question(id={self.id}, inhouse_id='{self.inhouse_id}', qc_status='{self.qc_status}')>"


# ==========================================
# REVISIONS + QC REVIEWS
# ==========================================

class Revision(Base):
    """
    Audit trail of every cross-role hand-off.

    revision_type:
        - request:    package-level ask from one role to another
        - acceptance: produced by a QC decision, one live row per question (upserted)
        - recreation: easy-question revision forwarded to data entry
    remarks carries the routing tag (see RevisionRemark).
    """
    __tablename__ = "revisions"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("question_packages.id"), nullable=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=True, index=True)
    target_role = _enum_column(Role, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    evidence_urls = Column(JSON, default=list, nullable=False)  # [{name, url, path, bucket, drive_url}]
    keywords = Column(JSON, default=list, nullable=False)
    status = _enum_column(RevisionStatus, nullable=False, default=RevisionStatus.PENDING, index=True)
    revision_type = _enum_column(RevisionType, nullable=False, index=True)
    remarks = Column(String(50), nullable=True, index=True)

    requested_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    responded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    response_notes = Column(Text, nullable=True)
    response_attachments = Column(JSON, default=list, nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    package = relationship("QuestionPackage")
    question = relationship("Question")
    requester = relationship("User", foreign_keys=[requested_by])
    responder = relationship("User", foreign_keys=[responded_by])

    def __repr__(self):
        return f"<Revision(id={self.id}, type='{self.revision_type}', status='{self.status}', remarks='{self.remarks}')>"


class QcReview(Base):
    """Live QC review record for a question, overwritten on each QC cycle."""
    __tablename__ = "qc_reviews"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), unique=True, nullable=False)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    difficulty = _enum_column(Difficulty, nullable=False)
    status = _enum_column(QcStatus, nullable=False)
    review_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<QcReview(question_id={self.question_id}, reviewer_id={self.reviewer_id}, status='{self.status}')>"
