from datetime import datetime, timedelta

import pytest

from conftest import as_actor, auth_headers, payload
from database import crud, models, schemas
from database.models import Difficulty, QcStatus, QuestionStatus, RevisionStatus, RevisionType, Role
from services import clock, qc_workflow, quota, revision_workflow
from services.errors import (
    AccessDeniedError, ClaimConflictError, InvalidTransitionError,
    QuotaExceededError, UploadFailedError, ValidationFailedError,
)
from services.storage import LocalObjectStorage, StorageError


def _decide(db, reviewer, question, difficulty, decision=None, **kwargs):
    verdict = schemas.QcDecision(difficulty=difficulty, decision=decision, **kwargs)
    return qc_workflow.submit_decision(db, as_actor(reviewer), question.id, verdict)


# ─── Claim / release ──────────────────────────────────────────────────────────

def test_claim_sets_reviewer_and_start_time(db, users, make_question):
    question = make_question()

    claimed = qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    assert claimed.qc_status == QcStatus.UNDER_QC_REVIEW
    assert claimed.qc_reviewer_id == users.reviewer.id
    assert claimed.qc_review_started_at is not None


def test_second_reviewer_is_told_question_is_taken(db, users, make_question):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    with pytest.raises(ClaimConflictError, match="already taken"):
        qc_workflow.claim_question(db, as_actor(users.other_reviewer), question.id)

    db.expire_all()
    assert crud.get_question(db, question.id).qc_reviewer_id == users.reviewer.id


def test_claim_from_stale_listing_loses(db, users, make_question):
    """Both reviewers saw the question as available; only the first claim lands"""
    question = make_question()
    first_view = qc_workflow.list_available(db)
    assert [q.id for q in first_view] == [question.id]

    qc_workflow.claim_question(db, as_actor(users.other_reviewer), question.id)
    with pytest.raises(ClaimConflictError):
        qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)
    assert qc_workflow.list_available(db) == []


def test_approved_question_cannot_be_claimed(db, users, make_question):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)
    _decide(db, users.reviewer, question, Difficulty.HARD, "accept")

    with pytest.raises(InvalidTransitionError):
        qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)


def test_data_entry_cannot_claim(db, users, make_question):
    question = make_question()
    with pytest.raises(AccessDeniedError):
        qc_workflow.claim_question(db, as_actor(users.entry), question.id)


def test_release_by_holder_returns_question_to_pool(db, users, make_question):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    released = qc_workflow.release_question(db, as_actor(users.reviewer), question.id)

    assert released.qc_status == QcStatus.PENDING_REVIEW
    assert released.qc_reviewer_id is None
    assert released.qc_review_started_at is None


def test_release_by_other_reviewer_is_refused(db, users, make_question):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    with pytest.raises(AccessDeniedError):
        qc_workflow.release_question(db, as_actor(users.other_reviewer), question.id)

    db.expire_all()
    held = crud.get_question(db, question.id)
    assert held.qc_status == QcStatus.UNDER_QC_REVIEW
    assert held.qc_reviewer_id == users.reviewer.id


def test_release_of_unclaimed_question_is_invalid(db, users, make_question):
    question = make_question()
    with pytest.raises(InvalidTransitionError):
        qc_workflow.release_question(db, as_actor(users.reviewer), question.id)


# ─── Quota ────────────────────────────────────────────────────────────────────

def test_claim_refused_at_quota(db, users, make_question, monkeypatch):
    monkeypatch.setattr(quota, "QC_MAX_UNDER_REVIEW", 2)
    monkeypatch.setattr(quota, "QC_QUOTA_ENFORCED", True)
    questions = [make_question() for _ in range(3)]
    reviewer = as_actor(users.reviewer)

    qc_workflow.claim_question(db, reviewer, questions[0].id)
    qc_workflow.claim_question(db, reviewer, questions[1].id)
    with pytest.raises(QuotaExceededError):
        qc_workflow.claim_question(db, reviewer, questions[2].id)

    # Another reviewer still has room
    qc_workflow.claim_question(db, as_actor(users.other_reviewer), questions[2].id)


def test_quota_not_enforced_when_disabled(db, users, make_question, monkeypatch):
    monkeypatch.setattr(quota, "QC_MAX_UNDER_REVIEW", 1)
    monkeypatch.setattr(quota, "QC_QUOTA_ENFORCED", False)
    reviewer = as_actor(users.reviewer)

    for question in (make_question(), make_question()):
        qc_workflow.claim_question(db, reviewer, question.id)
    assert quota.count_under_review(db, users.reviewer.id) == 2


def test_claim_over_quota_is_undone(db, users, make_question, monkeypatch):
    """A claim that slipped past the pre-check (a concurrent claim by the same reviewer) is rolled back"""
    monkeypatch.setattr(quota, "QC_MAX_UNDER_REVIEW", 1)
    monkeypatch.setattr(quota, "QC_QUOTA_ENFORCED", True)
    monkeypatch.setattr(qc_workflow, "enforce_quota", lambda db, reviewer_id: None)
    held, extra = make_question(), make_question()
    reviewer = as_actor(users.reviewer)

    qc_workflow.claim_question(db, reviewer, held.id)
    with pytest.raises(QuotaExceededError):
        qc_workflow.claim_question(db, reviewer, extra.id)

    db.expire_all()
    undone = crud.get_question(db, extra.id)
    assert undone.qc_status == QcStatus.PENDING_REVIEW
    assert undone.qc_reviewer_id is None
    assert undone.qc_review_started_at is None
    assert quota.count_under_review(db, users.reviewer.id) == 1


# ─── Stale claims ─────────────────────────────────────────────────────────────

def test_release_stale_claims(db, users, make_question):
    old, fresh = make_question(), make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), old.id)
    qc_workflow.claim_question(db, as_actor(users.other_reviewer), fresh.id)
    db.query(models.Question).filter(models.Question.id == old.id).update(
        {"qc_review_started_at": clock.now() - timedelta(hours=2)}, synchronize_session=False
    )
    db.commit()

    released = qc_workflow.release_stale_claims(db, as_actor(users.admin), ttl_minutes=60)

    assert released == [old.id]
    db.expire_all()
    assert crud.get_question(db, old.id).qc_status == QcStatus.PENDING_REVIEW
    assert crud.get_question(db, fresh.id).qc_reviewer_id == users.other_reviewer.id


def test_release_stale_claims_disabled_and_admin_only(db, users, make_question):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    assert qc_workflow.release_stale_claims(db, as_actor(users.admin), ttl_minutes=0) == []
    with pytest.raises(AccessDeniedError):
        qc_workflow.release_stale_claims(db, as_actor(users.reviewer), ttl_minutes=60)


# ─── Decisions ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("decision", [None, "accept", "reject"])
def test_easy_question_always_goes_back_to_question_maker(db, users, make_question, decision):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    revision = _decide(db, users.reviewer, question, Difficulty.EASY, decision,
                       review_notes="Terlalu mudah", rejection_notes="abaikan", keywords=["Conceptual Error"])

    assert revision.revision_type == RevisionType.ACCEPTANCE
    assert revision.target_role == Role.QUESTION_MAKER
    assert revision.remarks == "EASY_QUESTION_REVISION"
    assert revision.status == RevisionStatus.PENDING
    assert revision.notes == "Terlalu mudah"

    db.expire_all()
    reviewed = crud.get_question(db, question.id)
    assert reviewed.qc_status == QcStatus.REVISION_REQUESTED
    assert reviewed.qc_difficulty_level == Difficulty.EASY
    assert reviewed.qc_reviewer_id is None
    assert reviewed.approved_at is None


def test_hard_accept_approves_question(db, users, make_question):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    revision = _decide(db, users.reviewer, question, Difficulty.HARD, "accept", review_notes="Bagus")

    assert revision.remarks == "QC_APPROVED"
    assert revision.target_role is None
    assert revision.status == RevisionStatus.APPROVED

    db.expire_all()
    approved = crud.get_question(db, question.id)
    assert approved.status == QuestionStatus.QC_PASSED
    assert approved.qc_status == QcStatus.APPROVED
    assert approved.approved_at is not None

    review = crud.get_qc_review(db, question.id)
    assert review.reviewer_id == users.reviewer.id
    assert review.difficulty == Difficulty.HARD
    assert review.status == QcStatus.APPROVED


def test_accept_keeps_first_approval_time(db, users, make_question):
    question = make_question()
    first_approval = datetime(2024, 1, 15, 9, 30)
    question.approved_at = first_approval
    db.commit()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    _decide(db, users.reviewer, question, Difficulty.HARD, "accept")

    db.expire_all()
    assert crud.get_question(db, question.id).approved_at == first_approval


@pytest.mark.parametrize("keywords, expected_role, expected_remark", [
    (["Conceptual Error"], Role.QUESTION_MAKER, "SEND_TO_QUESTION_MAKER"),
    (["Typo/Grammar Error", "Ambiguous Wording"], Role.QUESTION_MAKER, "SEND_TO_QUESTION_MAKER"),
    (["Coding & Formatting Error"], Role.DATA_ENTRY, "SEND_TO_DATA_ENTRY"),
    (["Visual/Graphical Errors"], Role.DATA_ENTRY, "SEND_TO_DATA_ENTRY"),
    (["Conceptual Error", "Visual/Graphical Errors"], Role.DATA_ENTRY, "SEND_TO_DATA_ENTRY"),
])
def test_hard_reject_routes_by_keyword(db, users, make_question, keywords, expected_role, expected_remark):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    revision = _decide(db, users.reviewer, question, Difficulty.HARD, "reject",
                       rejection_notes="Perlu diperbaiki", keywords=keywords)

    assert revision.target_role == expected_role
    assert revision.remarks == expected_remark
    assert revision.notes == "Perlu diperbaiki"
    assert revision.keywords == keywords

    db.expire_all()
    rejected = crud.get_question(db, question.id)
    assert rejected.status == QuestionStatus.REVISED
    assert rejected.qc_status == QcStatus.REJECTED
    assert rejected.rejected_at is not None


def test_route_rejection():
    assert qc_workflow.route_rejection([]) == Role.QUESTION_MAKER
    assert qc_workflow.route_rejection(["Coding & Formatting Error"]) == Role.DATA_ENTRY


@pytest.mark.parametrize("kwargs, message", [
    ({"decision": None}, "accept or reject"),
    ({"decision": "reject", "keywords": ["Conceptual Error"]}, "Rejection notes"),
    ({"decision": "reject", "rejection_notes": "Salah konsep"}, "keyword"),
    ({"decision": "reject", "rejection_notes": "x", "keywords": ["Salah ketik"]}, "Unknown keyword"),
])
def test_invalid_hard_decision_leaves_claim_in_place(db, users, make_question, kwargs, message):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)

    with pytest.raises(ValidationFailedError, match=message):
        _decide(db, users.reviewer, question, Difficulty.HARD, **kwargs)

    db.expire_all()
    assert crud.get_question(db, question.id).qc_status == QcStatus.UNDER_QC_REVIEW
    assert db.query(models.Revision).count() == 0


def test_decision_requires_claim_by_caller(db, users, make_question):
    question = make_question()
    with pytest.raises(InvalidTransitionError):
        _decide(db, users.reviewer, question, Difficulty.HARD, "accept")

    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)
    with pytest.raises(AccessDeniedError):
        _decide(db, users.other_reviewer, question, Difficulty.HARD, "accept")


def test_repeated_review_keeps_one_acceptance_record(db, users, make_question):
    question = make_question()
    reviewer = as_actor(users.reviewer)

    qc_workflow.claim_question(db, reviewer, question.id)
    first = _decide(db, users.reviewer, question, Difficulty.HARD, "reject",
                    rejection_notes="Gambar buram", keywords=["Visual/Graphical Errors"])
    revision_workflow.update_acceptance(db, as_actor(users.entry), first.id,
                                        schemas.QuestionUpdate(question="Jika 2x + 3 = 11, x = ?"))

    qc_workflow.claim_question(db, reviewer, question.id)
    second = _decide(db, users.reviewer, question, Difficulty.HARD, "accept", review_notes="Sudah benar")

    assert second.id == first.id
    acceptance = db.query(models.Revision).filter(
        models.Revision.question_id == question.id,
        models.Revision.revision_type == RevisionType.ACCEPTANCE,
    ).all()
    assert len(acceptance) == 1
    assert acceptance[0].remarks == "QC_APPROVED"
    assert acceptance[0].notes == "Sudah benar"
    assert db.query(models.QcReview).filter(models.QcReview.question_id == question.id).count() == 1


# ─── Evidence ─────────────────────────────────────────────────────────────────

def test_decision_links_stored_evidence(db, users, make_question, storage, drive):
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)
    verdict = schemas.QcDecision(difficulty=Difficulty.HARD, decision="reject",
                                 rejection_notes="Lihat bukti", keywords=["Conceptual Error"])

    revision = qc_workflow.submit_decision(db, as_actor(users.reviewer), question.id, verdict,
                                           [payload("bukti 1.png")], storage, drive)

    assert len(revision.evidence_urls) == 1
    evidence = revision.evidence_urls[0]
    assert evidence["bucket"] == "revision-evidence"
    assert evidence["path"].startswith(f"question-{question.id}/")
    assert evidence["url"] == f"http://testserver/uploads/revision-evidence/{evidence['path']}"
    assert storage.bucket_exists("revision-evidence")


class FailingSecondUpload(LocalObjectStorage):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.uploads = 0

    def upload(self, content, bucket, path, content_type=None):
        self.uploads += 1
        if self.uploads == 2:
            raise StorageError("Network error while uploading")
        return super().upload(content, bucket, path, content_type)


def test_failed_evidence_upload_leaves_nothing_behind(db, users, make_question, tmp_path, drive):
    storage = FailingSecondUpload(str(tmp_path / "flaky"), "http://testserver")
    question = make_question()
    qc_workflow.claim_question(db, as_actor(users.reviewer), question.id)
    verdict = schemas.QcDecision(difficulty=Difficulty.EASY, review_notes="Mudah")

    with pytest.raises(UploadFailedError, match="koneksi"):
        qc_workflow.submit_decision(db, as_actor(users.reviewer), question.id, verdict,
                                    [payload("a.png"), payload("b.png")], storage, drive)

    assert list((tmp_path / "flaky" / "revision-evidence").rglob("*.png")) == []
    assert db.query(models.Revision).count() == 0
    db.expire_all()
    assert crud.get_question(db, question.id).qc_status == QcStatus.UNDER_QC_REVIEW


# ─── API ──────────────────────────────────────────────────────────────────────

def test_claim_conflict_over_api(client, users, make_question):
    question = make_question()

    first = client.post(f"/qc/questions/{question.id}/claim", headers=auth_headers(users.reviewer))
    second = client.post(f"/qc/questions/{question.id}/claim", headers=auth_headers(users.other_reviewer))

    assert first.status_code == 200
    assert first.json()["qc_reviewer_id"] == users.reviewer.id
    assert second.status_code == 409
    assert second.json()["detail"] == "Question is already taken by another reviewer"


def test_decision_over_api_with_evidence(client, users, make_question):
    question = make_question()
    headers = auth_headers(users.reviewer)
    client.post(f"/qc/questions/{question.id}/claim", headers=headers)

    response = client.post(
        f"/qc/questions/{question.id}/decision",
        headers=headers,
        data={
            "difficulty": "hard",
            "decision": "reject",
            "rejection_notes": "Format rumus rusak",
            "keywords": ["Coding & Formatting Error", "Typo/Grammar Error"],
        },
        files=[("evidence", ("layar.png", b"\x89PNG", "image/png"))],
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["target_role"] == "data_entry"
    assert body["remarks"] == "SEND_TO_DATA_ENTRY"
    assert body["keywords"] == ["Coding & Formatting Error", "Typo/Grammar Error"]
    assert body["evidence_urls"][0]["name"] == "layar.png"


def test_qc_endpoints_require_reviewer_role(client, users):
    response = client.get("/qc/questions/available", headers=auth_headers(users.entry))
    assert response.status_code == 403

    response = client.get("/qc/questions/available", headers=auth_headers(users.admin))
    assert response.status_code == 200


def test_quota_endpoint(client, users, make_question):
    question = make_question()
    headers = auth_headers(users.reviewer)
    client.post(f"/qc/questions/{question.id}/claim", headers=headers)

    body = client.get("/qc/quota", headers=headers).json()

    assert body["reviewer_id"] == users.reviewer.id
    assert body["current"] == 1
    assert body["band"] == "available"
