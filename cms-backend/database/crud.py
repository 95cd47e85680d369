"""
CRUD operations for the question CMS
Plain reads/writes; workflow rules live in services/
"""

from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Optional, Dict, Any

from database import models, schemas


# ==========================================
# COMPARE-AND-SET
# ==========================================

def compare_and_set(
    db: Session,
    model,
    pk: int,
    expected: Dict[str, Any],
    changes: Dict[str, Any],
    commit: bool = True,
) -> bool:
    """
    Conditional single-row update: UPDATE model SET changes WHERE id = pk AND expected.
    expected values of None match IS NULL, lists/tuples match IN.
    Returns True iff exactly one row was updated.
    """
    query = db.query(model).filter(model.id == pk)
    for field, value in expected.items():
        column = getattr(model, field)
        if value is None:
            query = query.filter(column.is_(None))
        elif isinstance(value, (list, tuple, set, frozenset)):
            query = query.filter(column.in_(list(value)))
        else:
            query = query.filter(column == value)

    updated = query.update(changes, synchronize_session=False)
    if commit:
        db.commit()
    return updated == 1


# ==========================================
# USER CRUD
# ==========================================

def _active_users(db: Session):
    return db.query(models.User).filter(
        models.User.is_deleted.isnot(True),
        models.User.deleted_at.is_(None),
    )


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    """Get a non-deleted user by ID"""
    return _active_users(db).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """Get a non-deleted user by email (case-insensitive)"""
    return _active_users(db).filter(func.lower(models.User.email) == email.strip().lower()).first()


def get_users(db: Session, role: Optional[models.Role] = None, skip: int = 0, limit: int = 100) -> List[models.User]:
    """List non-deleted users, optionally by role, newest first"""
    query = _active_users(db)
    if role is not None:
        query = query.filter(models.User.role == role)
    return query.order_by(models.User.created_at.desc(), models.User.id.desc()).offset(skip).limit(limit).all()


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    db_user = models.User(
        name=user.name.strip(),
        email=user.email.strip().lower(),
        role=user.role,
        vendor_name=user.vendor_name.strip() if user.vendor_name else None,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def soft_delete_user(db: Session, user_id: int, deleted_at) -> bool:
    """Flag a user as deleted; rows are never removed"""
    db_user = get_user(db, user_id)
    if not db_user:
        return False

    db_user.is_deleted = True
    db_user.deleted_at = deleted_at
    db.commit()
    return True


# ==========================================
# TAXONOMY CRUD
# ==========================================

def get_node(db: Session, model, node_id: int):
    """Get any taxonomy node (Subject/Chapter/Topic/ConceptTitle/Exam) by ID"""
    return db.query(model).filter(model.id == node_id).first()


def get_nodes(db: Session, model, parent_field: Optional[str] = None, parent_id: Optional[int] = None,
              skip: int = 0, limit: int = 100) -> list:
    """List taxonomy nodes ordered by name, children filtered by parent id"""
    query = db.query(model)
    if parent_field and parent_id is not None:
        query = query.filter(getattr(model, parent_field) == parent_id)
    return query.order_by(model.name).offset(skip).limit(limit).all()


def get_node_by_name(db: Session, model, name: str, parent_field: Optional[str] = None,
                     parent_id: Optional[int] = None):
    query = db.query(model).filter(func.lower(model.name) == name.strip().lower())
    if parent_field and parent_id is not None:
        query = query.filter(getattr(model, parent_field) == parent_id)
    return query.first()


def create_node(db: Session, model, data: dict):
    db_node = model(**data)
    db.add(db_node)
    db.commit()
    db.refresh(db_node)
    return db_node


def update_node(db: Session, model, node_id: int, update_data: dict):
    """Update an existing node; returns None if it does not exist"""
    db_node = get_node(db, model, node_id)
    if not db_node:
        return None

    for field, value in update_data.items():
        setattr(db_node, field, value)

    db.commit()
    db.refresh(db_node)
    return db_node


def count_children(db: Session, child_model, parent_field: str, parent_id: int) -> int:
    return db.query(func.count(child_model.id)).filter(getattr(child_model, parent_field) == parent_id).scalar() or 0


def delete_node(db: Session, model, node_id: int) -> bool:
    """Delete a node. Does not cascade; callers check for children first."""
    db_node = get_node(db, model, node_id)
    if not db_node:
        return False

    db.delete(db_node)
    db.commit()
    return True


# ==========================================
# PACKAGE CRUD
# ==========================================

def get_package(db: Session, package_id: int) -> Optional[models.QuestionPackage]:
    return db.query(models.QuestionPackage).filter(models.QuestionPackage.id == package_id).first()


def get_packages(db: Session, uploaded_by: Optional[int] = None, status: Optional[models.PackageStatus] = None,
                 skip: int = 0, limit: int = 100) -> List[models.QuestionPackage]:
    """List packages newest first, optionally only one uploader's"""
    query = db.query(models.QuestionPackage)
    if uploaded_by is not None:
        query = query.filter(models.QuestionPackage.uploaded_by == uploaded_by)
    if status is not None:
        query = query.filter(models.QuestionPackage.status == status)
    return query.order_by(models.QuestionPackage.created_at.desc(), models.QuestionPackage.id.desc()) \
        .offset(skip).limit(limit).all()


def count_questions_by_package(db: Session, package_ids: List[int]) -> Dict[int, int]:
    """Map package id → number of created questions"""
    if not package_ids:
        return {}
    rows = db.query(models.Question.package_id, func.count(models.Question.id)) \
        .filter(models.Question.package_id.in_(package_ids)) \
        .group_by(models.Question.package_id).all()
    counts = {package_id: 0 for package_id in package_ids}
    counts.update({package_id: count for package_id, count in rows})
    return counts


# ==========================================
# QUESTION CRUD
# ==========================================

def get_question(db: Session, question_id: int) -> Optional[models.Question]:
    return db.query(models.Question).filter(models.Question.id == question_id).first()


def get_questions(
    db: Session,
    status: Optional[models.QuestionStatus] = None,
    qc_status: Optional[List[models.QcStatus]] = None,
    subject_id: Optional[int] = None,
    question_type: Optional[models.QuestionType] = None,
    package_id: Optional[int] = None,
    created_by: Optional[int] = None,
    qc_reviewer_id: Optional[int] = None,
    unclaimed: bool = False,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Question]:
    """Filtered question listing, newest first"""
    query = db.query(models.Question)
    if status is not None:
        query = query.filter(models.Question.status == status)
    if qc_status:
        query = query.filter(models.Question.qc_status.in_(qc_status))
    if subject_id is not None:
        query = query.filter(models.Question.subject_id == subject_id)
    if question_type is not None:
        query = query.filter(models.Question.question_type == question_type)
    if package_id is not None:
        query = query.filter(models.Question.package_id == package_id)
    if created_by is not None:
        query = query.filter(models.Question.created_by == created_by)
    if qc_reviewer_id is not None:
        query = query.filter(models.Question.qc_reviewer_id == qc_reviewer_id)
    if unclaimed:
        query = query.filter(models.Question.qc_reviewer_id.is_(None))
    return query.order_by(models.Question.created_at.desc(), models.Question.id.desc()) \
        .offset(skip).limit(limit).all()


def max_sequence_number(db: Session, package_id: int) -> Optional[int]:
    return db.query(func.max(models.Question.sequence_number)) \
        .filter(models.Question.package_id == package_id).scalar()


def delete_question(db: Session, question_id: int) -> bool:
    db_question = get_question(db, question_id)
    if not db_question:
        return False

    db.delete(db_question)
    db.commit()
    return True


# ==========================================
# REVISION CRUD
# ==========================================

def get_revision(db: Session, revision_id: int) -> Optional[models.Revision]:
    return db.query(models.Revision).filter(models.Revision.id == revision_id).first()


def get_acceptance_revision(db: Session, question_id: int) -> Optional[models.Revision]:
    """The live acceptance record of a question (at most one exists)"""
    return db.query(models.Revision).filter(
        models.Revision.question_id == question_id,
        models.Revision.revision_type == models.RevisionType.ACCEPTANCE,
    ).order_by(models.Revision.id.desc()).first()


def get_revisions(
    db: Session,
    target_role: Optional[models.Role] = None,
    requested_by: Optional[int] = None,
    status: Optional[models.RevisionStatus] = None,
    revision_type: Optional[models.RevisionType] = None,
    remarks: Optional[str] = None,
    has_question: Optional[bool] = None,
    package_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Revision]:
    """Read projections over the revisions table (incoming by target role, outgoing by requester)"""
    query = db.query(models.Revision)
    if target_role is not None:
        query = query.filter(models.Revision.target_role == target_role)
    if requested_by is not None:
        query = query.filter(models.Revision.requested_by == requested_by)
    if status is not None:
        query = query.filter(models.Revision.status == status)
    if revision_type is not None:
        query = query.filter(models.Revision.revision_type == revision_type)
    if remarks is not None:
        query = query.filter(models.Revision.remarks == remarks)
    if has_question is True:
        query = query.filter(models.Revision.question_id.isnot(None))
    elif has_question is False:
        query = query.filter(models.Revision.question_id.is_(None))
    if package_id is not None:
        query = query.filter(models.Revision.package_id == package_id)
    return query.order_by(models.Revision.created_at.desc(), models.Revision.id.desc()) \
        .offset(skip).limit(limit).all()


def get_qc_review(db: Session, question_id: int) -> Optional[models.QcReview]:
    return db.query(models.QcReview).filter(models.QcReview.question_id == question_id).first()
