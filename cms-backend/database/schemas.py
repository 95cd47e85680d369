"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts
"""

from pydantic import BaseModel, Field, ConfigDict, EmailStr, model_validator
from typing import Optional, List, Literal
from datetime import datetime

from database.models import (
    Role, PackageStatus, QuestionType, QuestionStatus, QcStatus,
    Difficulty, RevisionStatus, RevisionType,
)


# ==========================================
# USER SCHEMAS
# ==========================================

class UserCreate(BaseModel):
    """Schema for registering a user (administrator only)"""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    role: Role
    vendor_name: Optional[str] = Field(None, max_length=255, description="Required for question makers")

    @model_validator(mode="after")
    def vendor_required_for_question_maker(self):
        if self.role == Role.QUESTION_MAKER and not (self.vendor_name or "").strip():
            raise ValueError("vendor_name is required for the question_maker role")
        return self


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: Role
    vendor_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# TAXONOMY SCHEMAS
# ==========================================

class SubjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Subject name")
    abbreviation: Optional[str] = Field(None, min_length=1, max_length=10, description="Inhouse id prefix")


class SubjectUpdate(BaseModel):
    """Schema for updating a Subject - all fields optional"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    abbreviation: Optional[str] = Field(None, min_length=1, max_length=10)


class SubjectResponse(SubjectCreate):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChapterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    subject_id: int = Field(..., gt=0, description="Parent subject ID")


class ChapterUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class ChapterResponse(ChapterCreate):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TopicCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    chapter_id: int = Field(..., gt=0, description="Parent chapter ID")


class TopicUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class TopicResponse(TopicCreate):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConceptTitleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    topic_id: int = Field(..., gt=0, description="Parent topic ID")


class ConceptTitleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class ConceptTitleResponse(ConceptTitleCreate):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ExamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Exam name, e.g. UTBK-SNBT")


class ExamResponse(ExamCreate):
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# PACKAGE SCHEMAS
# ==========================================

class PackageCreate(BaseModel):
    """Metadata of a package submission; the source document travels alongside as a file"""
    subject_id: int = Field(..., gt=0)
    exam_id: int = Field(..., gt=0)
    package_number: int = Field(..., gt=0)
    title: str = Field(..., min_length=1, max_length=255)
    amount_of_questions: int = Field(..., gt=0, description="Declared target, not a counter")


class PackageProgress(BaseModel):
    created: int
    target: int
    percentage: int
    state: Literal["not-started", "on-progress", "completed"]


class PackageResponse(BaseModel):
    id: int
    vendor_name: str
    subject_id: Optional[int] = None
    subject: str
    exam_id: Optional[int] = None
    package_number: int
    title: str
    amount_of_questions: int
    source_file_url: str
    source_file_path: Optional[str] = None
    status: PackageStatus
    feedback: Optional[str] = None
    uploaded_by: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    progress: Optional[PackageProgress] = None

    model_config = ConfigDict(from_attributes=True)


class PackageStatusUpdate(BaseModel):
    status: PackageStatus
    feedback: Optional[str] = None


class PackageStats(BaseModel):
    total_packages: int
    total_questions: int
    by_status: dict


# ==========================================
# QUESTION SCHEMAS
# ==========================================

class QuestionContent(BaseModel):
    """Shared editable content of a question"""
    question_type: QuestionType
    question: str = Field(..., min_length=1)
    option_a: Optional[str] = None
    option_b: Optional[str] = None
    option_c: Optional[str] = None
    option_d: Optional[str] = None
    option_e: Optional[str] = None
    correct_option: Optional[Literal["A", "B", "C", "D", "E"]] = None
    correct_answer: Optional[str] = None
    solution: Optional[str] = None


class QuestionCreate(QuestionContent):
    package_id: int = Field(..., gt=0)
    subject_id: int = Field(..., gt=0)
    chapter_id: int = Field(..., gt=0)
    topic_id: int = Field(..., gt=0)
    concept_title_id: int = Field(..., gt=0)


class QuestionUpdate(BaseModel):
    """Schema for editing a Question - all fields optional"""
    chapter_id: Optional[int] = Field(None, gt=0)
    topic_id: Optional[int] = Field(None, gt=0)
    concept_title_id: Optional[int] = Field(None, gt=0)
    question_type: Optional[QuestionType] = None
    question: Optional[str] = Field(None, min_length=1)
    option_a: Optional[str] = None
    option_b: Optional[str] = None
    option_c: Optional[str] = None
    option_d: Optional[str] = None
    option_e: Optional[str] = None
    correct_option: Optional[Literal["A", "B", "C", "D", "E"]] = None
    correct_answer: Optional[str] = None
    solution: Optional[str] = None


class QuestionResponse(QuestionContent):
    id: int
    inhouse_id: str
    package_id: int
    sequence_number: int
    subject_id: int
    chapter_id: int
    topic_id: int
    concept_title_id: int
    attachments: List[dict] = []
    status: QuestionStatus
    qc_status: QcStatus
    qc_reviewer_id: Optional[int] = None
    qc_review_started_at: Optional[datetime] = None
    qc_difficulty_level: Optional[Difficulty] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    revised_at: Optional[datetime] = None
    created_by: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# QC SCHEMAS
# ==========================================

class QcDecision(BaseModel):
    """
    A reviewer's verdict on a claimed question.
    decision is ignored for easy questions (always sent back to the question maker).
    """
    difficulty: Difficulty
    decision: Optional[Literal["accept", "reject"]] = None
    review_notes: Optional[str] = None
    rejection_notes: Optional[str] = None
    keywords: List[str] = []


class QuotaSummary(BaseModel):
    reviewer_id: int
    current: int
    maximum: int
    remaining: int
    percentage: int
    band: Literal["available", "medium", "high", "full"]
    enforced: bool


class StaleClaimReport(BaseModel):
    released: List[int]
    ttl_minutes: int


# ==========================================
# REVISION SCHEMAS
# ==========================================

class RevisionRequestCreate(BaseModel):
    package_id: int = Field(..., gt=0)
    question_id: Optional[int] = Field(None, gt=0)
    target_role: Role
    notes: str = Field(..., min_length=1)
    keywords: List[str] = []


class RevisionRequestUpdate(BaseModel):
    target_role: Optional[Role] = None
    notes: Optional[str] = Field(None, min_length=1)
    keywords: Optional[List[str]] = None


class RevisionResponseDecision(BaseModel):
    decision: Literal["approve", "reject"]
    response_notes: str = Field(..., min_length=1)


class RevisionResponse(BaseModel):
    id: int
    package_id: Optional[int] = None
    question_id: Optional[int] = None
    target_role: Optional[Role] = None
    notes: Optional[str] = None
    evidence_urls: List[dict] = []
    keywords: List[str] = []
    status: RevisionStatus
    revision_type: RevisionType
    remarks: Optional[str] = None
    requested_by: Optional[int] = None
    responded_by: Optional[int] = None
    response_notes: Optional[str] = None
    response_attachments: List[dict] = []
    responded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RevisionDetail(RevisionResponse):
    """Revision with the question it points at (if any)"""
    question: Optional[QuestionResponse] = None


class RespondResult(BaseModel):
    """The answered revision, plus the recreation it spawned (easy-question approvals only)"""
    revision: RevisionResponse
    recreation: Optional[RevisionResponse] = None


class AcceptanceUpdateResult(BaseModel):
    question: QuestionResponse
    revision: RevisionResponse


# ==========================================
# AUTH SCHEMAS
# ==========================================

class LoginRequest(BaseModel):
    id_token: str = Field(..., min_length=1, description="Identity provider ID token")
    provider_access_token: Optional[str] = Field(None, description="Revoked if the identity is not registered")


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
    routes: List[str]


class MeResponse(BaseModel):
    user: UserResponse
    routes: List[str]
