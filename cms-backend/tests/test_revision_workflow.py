import pytest

from conftest import as_actor, auth_headers, payload
from database import crud, models, schemas
from database.models import Difficulty, QcStatus, QuestionStatus, RevisionStatus, RevisionType, Role
from services import qc_workflow, revision_workflow
from services.errors import AccessDeniedError, InvalidTransitionError, ValidationFailedError


def _reviewed(db, users, question, difficulty, decision=None, **kwargs):
    """Claim and decide a question, returning its acceptance revision"""
    reviewer = as_actor(users.reviewer)
    qc_workflow.claim_question(db, reviewer, question.id)
    verdict = schemas.QcDecision(difficulty=difficulty, decision=decision, **kwargs)
    return qc_workflow.submit_decision(db, reviewer, question.id, verdict)


def _approve(notes="Setuju"):
    return schemas.RevisionResponseDecision(decision="approve", response_notes=notes)


def _reject(notes="Soal sudah sesuai"):
    return schemas.RevisionResponseDecision(decision="reject", response_notes=notes)


# ─── Easy-question revisions ──────────────────────────────────────────────────

def test_approved_easy_revision_is_forwarded_to_data_entry(db, users, make_question, storage, drive):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY, review_notes="Terlalu mudah untuk UTBK")

    revision, recreation = revision_workflow.respond(
        db, as_actor(users.maker), easy.id, _approve("Akan dibuat ulang"),
        attachments=[payload("soal baru.pdf", b"%PDF", "application/pdf")], storage=storage, drive=drive,
    )

    assert revision.status == RevisionStatus.SENT_TO_DATA_ENTRY
    assert revision.responded_by == users.maker.id
    assert revision.response_notes == "Akan dibuat ulang"
    assert len(revision.response_attachments) == 1

    assert recreation.revision_type == RevisionType.RECREATION
    assert recreation.remarks == "RECREATE_QUESTION"
    assert recreation.target_role == Role.DATA_ENTRY
    assert recreation.status == RevisionStatus.PENDING
    assert recreation.question_id == question.id
    assert recreation.notes == "Terlalu mudah untuk UTBK"
    assert recreation.evidence_urls == revision.response_attachments

    db.expire_all()
    assert crud.get_question(db, question.id).qc_status == QcStatus.RECREATE_QUESTION


def test_rejected_easy_revision_closes_without_recreation(db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)

    revision, recreation = revision_workflow.respond(db, as_actor(users.maker), easy.id, _reject())

    assert revision.status == RevisionStatus.REJECTED
    assert recreation is None
    assert db.query(models.Revision).filter(models.Revision.revision_type == RevisionType.RECREATION).count() == 0


def test_easy_revision_answered_only_by_question_maker(db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)

    with pytest.raises(AccessDeniedError):
        revision_workflow.respond(db, as_actor(users.entry), easy.id, _approve())

    # Administrators may act for any role
    revision, _ = revision_workflow.respond(db, as_actor(users.admin), easy.id, _reject())
    assert revision.status == RevisionStatus.REJECTED


def test_revision_answered_only_once(db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)
    revision_workflow.respond(db, as_actor(users.maker), easy.id, _reject())

    with pytest.raises(InvalidTransitionError):
        revision_workflow.respond(db, as_actor(users.maker), easy.id, _approve())


def test_hard_rejection_is_not_answered_by_respond(db, users, make_question):
    question = make_question()
    rejected = _reviewed(db, users, question, Difficulty.HARD, "reject",
                         rejection_notes="Konsep keliru", keywords=["Conceptual Error"])

    with pytest.raises(InvalidTransitionError):
        revision_workflow.respond(db, as_actor(users.maker), rejected.id, _approve())


# ─── Acceptance updates ───────────────────────────────────────────────────────

def test_acceptance_update_sends_question_back_to_qc(db, users, make_question):
    question = make_question()
    rejected = _reviewed(db, users, question, Difficulty.HARD, "reject",
                         rejection_notes="Rumus tidak tampil", keywords=["Coding & Formatting Error"])

    updated, revision = revision_workflow.update_acceptance(
        db, as_actor(users.entry), rejected.id,
        schemas.QuestionUpdate(question="Jika 2x + 3 = 11, tentukan x.", solution="x = 4"),
    )

    assert updated.question == "Jika 2x + 3 = 11, tentukan x."
    assert updated.solution == "x = 4"
    assert updated.status == QuestionStatus.ACTIVE
    assert updated.qc_status == QcStatus.UNDER_REVIEW
    assert updated.revised_at is not None

    assert revision.status == RevisionStatus.COMPLETED
    assert revision.response_notes == revision_workflow.ACCEPTANCE_DONE_NOTE
    assert revision.responded_by == users.entry.id

    assert crud.get_qc_review(db, question.id).status == QcStatus.UNDER_REVIEW
    assert [q.id for q in qc_workflow.list_available(db)] == [question.id]


def test_acceptance_update_by_wrong_role_is_refused(db, users, make_question):
    question = make_question()
    rejected = _reviewed(db, users, question, Difficulty.HARD, "reject",
                         rejection_notes="Konsep keliru", keywords=["Conceptual Error"])

    with pytest.raises(AccessDeniedError):
        revision_workflow.update_acceptance(db, as_actor(users.entry), rejected.id,
                                            schemas.QuestionUpdate(question="Baru"))


def test_invalid_acceptance_update_changes_nothing(db, users, make_question):
    question = make_question()
    rejected = _reviewed(db, users, question, Difficulty.HARD, "reject",
                         rejection_notes="Gambar buram", keywords=["Visual/Graphical Errors"])

    with pytest.raises(ValidationFailedError):
        revision_workflow.update_acceptance(db, as_actor(users.entry), rejected.id,
                                            schemas.QuestionUpdate(question="Baru", correct_option="E"))

    db.expire_all()
    assert crud.get_revision(db, rejected.id).status == RevisionStatus.PENDING
    unchanged = crud.get_question(db, question.id)
    assert unchanged.question == "Jika 2x + 3 = 11, berapakah nilai x?"
    assert unchanged.qc_status == QcStatus.REJECTED


def test_recreation_is_closed_by_data_entry(db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)
    _, recreation = revision_workflow.respond(db, as_actor(users.maker), easy.id, _approve())

    updated, closed = revision_workflow.update_acceptance(
        db, as_actor(users.entry), recreation.id,
        schemas.QuestionUpdate(question="Jika 3x - 5 = 2x + 7, berapakah x?", option_c="12"),
    )

    assert closed.status == RevisionStatus.COMPLETED
    assert updated.qc_status == QcStatus.UNDER_REVIEW
    assert crud.get_revision(db, easy.id).status == RevisionStatus.SENT_TO_DATA_ENTRY


def test_easy_revision_cannot_skip_data_entry(db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)

    with pytest.raises(InvalidTransitionError, match="approve/reject"):
        revision_workflow.update_acceptance(db, as_actor(users.maker), easy.id,
                                            schemas.QuestionUpdate(option_d="7"))

    db.expire_all()
    assert crud.get_revision(db, easy.id).status == RevisionStatus.PENDING
    assert crud.get_question(db, question.id).qc_status == QcStatus.REVISION_REQUESTED


def test_request_is_not_closed_by_acceptance_update(db, users, package):
    request = revision_workflow.create_request(
        db, as_actor(users.entry),
        schemas.RevisionRequestCreate(package_id=package.id, target_role=Role.QUESTION_MAKER, notes="Halaman 3 hilang"),
    )
    with pytest.raises(InvalidTransitionError):
        revision_workflow.update_acceptance(db, as_actor(users.maker), request.id,
                                            schemas.QuestionUpdate(question="x"))


# ─── Requests ─────────────────────────────────────────────────────────────────

def test_request_lifecycle_with_package_replacement(db, users, package, storage, drive):
    request = revision_workflow.create_request(
        db, as_actor(users.entry),
        schemas.RevisionRequestCreate(package_id=package.id, target_role=Role.QUESTION_MAKER,
                                      notes="Halaman 3 tidak terbaca", keywords=[" scan ", ""]),
        evidence=[payload("halaman3.png")], storage=storage, drive=drive,
    )
    assert request.remarks == "REQUEST"
    assert request.keywords == ["scan"]
    assert request.evidence_urls[0]["bucket"] == "revision-evidence"

    edited = revision_workflow.update_request(db, as_actor(users.entry), request.id,
                                              schemas.RevisionRequestUpdate(notes="Halaman 3 dan 4 tidak terbaca"))
    assert edited.notes == "Halaman 3 dan 4 tidak terbaca"

    revision, recreation = revision_workflow.respond(
        db, as_actor(users.maker), request.id, _approve("File diganti"),
        package_file=payload("paket-revisi.pdf", b"%PDF-1.7", "application/pdf"), storage=storage, drive=drive,
    )
    assert revision.status == RevisionStatus.APPROVED
    assert recreation is None

    db.expire_all()
    replaced = crud.get_package(db, package.id)
    assert replaced.source_file_path.startswith(f"{users.maker.id}/")
    assert replaced.source_file_path.endswith("-paket-revisi.pdf")
    assert replaced.source_file_url.startswith("http://testserver/uploads/organization-non-profit/")


def test_request_edit_only_by_requester_while_pending(db, users, package):
    request = revision_workflow.create_request(
        db, as_actor(users.entry),
        schemas.RevisionRequestCreate(package_id=package.id, target_role=Role.QUESTION_MAKER, notes="Cek kunci"),
    )
    with pytest.raises(AccessDeniedError):
        revision_workflow.update_request(db, as_actor(users.maker), request.id,
                                         schemas.RevisionRequestUpdate(notes="x"))

    revision_workflow.respond(db, as_actor(users.maker), request.id, _reject())
    with pytest.raises(InvalidTransitionError):
        revision_workflow.update_request(db, as_actor(users.entry), request.id,
                                         schemas.RevisionRequestUpdate(notes="x"))


def test_package_file_only_with_approved_request(db, users, package, storage, drive):
    request = revision_workflow.create_request(
        db, as_actor(users.entry),
        schemas.RevisionRequestCreate(package_id=package.id, target_role=Role.QUESTION_MAKER, notes="Cek kunci"),
    )
    with pytest.raises(ValidationFailedError):
        revision_workflow.respond(db, as_actor(users.maker), request.id, _reject(),
                                  package_file=payload("paket.pdf", b"%PDF", "application/pdf"),
                                  storage=storage, drive=drive)
    assert crud.get_revision(db, request.id).status == RevisionStatus.PENDING


def test_request_question_must_belong_to_package(db, users, make_question, make_package):
    other_package = make_package(package_number=2)
    question = make_question()

    with pytest.raises(ValidationFailedError):
        revision_workflow.create_request(
            db, as_actor(users.entry),
            schemas.RevisionRequestCreate(package_id=other_package.id, question_id=question.id,
                                          target_role=Role.QUESTION_MAKER, notes="x"),
        )


# ─── Projections ──────────────────────────────────────────────────────────────

def test_incoming_and_outgoing_views(db, users, make_question, package):
    question = make_question()
    _reviewed(db, users, question, Difficulty.EASY)
    revision_workflow.create_request(
        db, as_actor(users.entry),
        schemas.RevisionRequestCreate(package_id=package.id, target_role=Role.QUESTION_MAKER, notes="Cek"),
    )

    incoming = revision_workflow.list_incoming(db, as_actor(users.maker))
    assert {r.revision_type for r in incoming} == {RevisionType.ACCEPTANCE, RevisionType.REQUEST}

    # Non-admins cannot peek at another role's inbox
    assert revision_workflow.list_incoming(db, as_actor(users.entry), target_role=Role.QUESTION_MAKER) == []
    assert len(revision_workflow.list_incoming(db, as_actor(users.admin), target_role=Role.QUESTION_MAKER)) == 2

    outgoing = revision_workflow.list_outgoing(db, as_actor(users.entry))
    assert [r.remarks for r in outgoing] == ["REQUEST"]

    easy_only = revision_workflow.list_incoming(db, as_actor(users.maker), remarks="EASY_QUESTION_REVISION",
                                                has_question=True)
    assert [r.question_id for r in easy_only] == [question.id]


def test_revision_detail_is_limited_to_participants(db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)

    assert revision_workflow.get_revision(db, as_actor(users.maker), easy.id).id == easy.id
    assert revision_workflow.get_revision(db, as_actor(users.reviewer), easy.id).id == easy.id
    with pytest.raises(AccessDeniedError):
        revision_workflow.get_revision(db, as_actor(users.metadata), easy.id)


# ─── API ──────────────────────────────────────────────────────────────────────

def test_respond_over_api_returns_recreation(client, db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)

    response = client.post(
        f"/revisions/{easy.id}/respond",
        headers=auth_headers(users.maker),
        data={"decision": "approve", "response_notes": "Dibuat ulang"},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["revision"]["status"] == "send to data-entry"
    assert body["recreation"]["remarks"] == "RECREATE_QUESTION"
    assert body["recreation"]["target_role"] == "data_entry"


def test_respond_requires_notes_over_api(client, db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)

    response = client.post(
        f"/revisions/{easy.id}/respond",
        headers=auth_headers(users.maker),
        data={"decision": "approve", "response_notes": ""},
    )
    assert response.status_code == 422


def test_acceptance_update_over_api(client, db, users, make_question):
    question = make_question()
    rejected = _reviewed(db, users, question, Difficulty.HARD, "reject",
                         rejection_notes="Rumus rusak", keywords=["Coding & Formatting Error"])

    response = client.put(
        f"/revisions/{rejected.id}/acceptance",
        headers=auth_headers(users.entry),
        json={"question": "Jika 2x + 3 = 11, x = ..."},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["question"]["qc_status"] == "under_review"
    assert body["revision"]["status"] == "completed"


def test_revision_detail_over_api_includes_question(client, db, users, make_question):
    question = make_question()
    easy = _reviewed(db, users, question, Difficulty.EASY)

    body = client.get(f"/revisions/{easy.id}", headers=auth_headers(users.maker)).json()

    assert body["question"]["inhouse_id"] == question.inhouse_id
