"""
QC quota: how many questions one reviewer may hold in under_qc_review at once.
"""

import os
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import models
from services.errors import QuotaExceededError

log = logging.getLogger(__name__)

QC_MAX_UNDER_REVIEW = int(os.getenv("QC_MAX_UNDER_REVIEW", "10"))
QC_QUOTA_ENFORCED = os.getenv("QC_QUOTA_ENFORCED", "true").lower() in ("1", "true", "yes")


def count_under_review(db: Session, reviewer_id: int) -> int:
    return db.query(func.count(models.Question.id)).filter(
        models.Question.qc_reviewer_id == reviewer_id,
        models.Question.qc_status == models.QcStatus.UNDER_QC_REVIEW,
    ).scalar() or 0


def quota_band(current: int, maximum: int) -> str:
    """available <50%, medium <80%, high <100%, full otherwise"""
    if maximum <= 0:
        return "full"
    ratio = current / maximum
    if ratio < 0.5:
        return "available"
    if ratio < 0.8:
        return "medium"
    if ratio < 1:
        return "high"
    return "full"


def quota_summary(db: Session, reviewer_id: int, maximum: Optional[int] = None) -> dict:
    maximum = QC_MAX_UNDER_REVIEW if maximum is None else maximum
    current = count_under_review(db, reviewer_id)
    percentage = min(100, round(current * 100 / maximum)) if maximum > 0 else 100
    return {
        "reviewer_id": reviewer_id,
        "current": current,
        "maximum": maximum,
        "remaining": max(0, maximum - current),
        "percentage": percentage,
        "band": quota_band(current, maximum),
        "enforced": QC_QUOTA_ENFORCED,
    }


def enforce_quota(db: Session, reviewer_id: int, maximum: Optional[int] = None, enforced: Optional[bool] = None) -> None:
    """Refuse a new claim when the reviewer already holds the maximum"""
    enforced = QC_QUOTA_ENFORCED if enforced is None else enforced
    if not enforced:
        return
    maximum = QC_MAX_UNDER_REVIEW if maximum is None else maximum
    current = count_under_review(db, reviewer_id)
    if current >= maximum:
        log.warning("Reviewer %s at quota (%d/%d)", reviewer_id, current, maximum)
        raise QuotaExceededError(f"Quota reached: {current}/{maximum} questions already under review")


def exceeds_quota(db: Session, reviewer_id: int) -> bool:
    """True when the reviewer holds more than the maximum (checked again after a claim lands)"""
    return QC_QUOTA_ENFORCED and count_under_review(db, reviewer_id) > QC_MAX_UNDER_REVIEW
