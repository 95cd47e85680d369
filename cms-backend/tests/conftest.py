import os
import itertools
import tempfile
from types import SimpleNamespace

# Must be set before the application modules read their config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_ROOT"] = tempfile.mkdtemp(prefix="cms-uploads-")
os.environ.setdefault("APP_TIMEZONE", "Asia/Jakarta")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cms_api import app
from database import models, schemas
from database.database import Base, get_db
from database.models import Role, QuestionType
from auth.dependencies import Actor
from auth.identity import IdentityError, ProviderIdentity, get_identity_provider
from auth.security import create_access_token
from services import question_authoring
from services.google_drive import GoogleDriveClient, get_drive
from services.storage import LocalObjectStorage, get_storage
from services.uploads import UploadPayload


class FakeIdentityProvider:
    """Accepts the id tokens registered in `tokens` (token → email)"""

    def __init__(self):
        self.tokens = {}
        self.signed_out = []

    def verify(self, id_token):
        if id_token not in self.tokens:
            raise IdentityError("unknown token")
        return ProviderIdentity(email=self.tokens[id_token], name="Test", subject=id_token)

    def sign_out(self, access_token):
        self.signed_out.append(access_token)


@pytest.fixture()
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture()
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "objects"), "http://testserver")


@pytest.fixture()
def drive():
    # No credentials: mirroring is skipped
    return GoogleDriveClient(client_id="", client_secret="", refresh_token="")


@pytest.fixture()
def identity():
    return FakeIdentityProvider()


@pytest.fixture()
def client(db, storage, drive, identity):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_drive] = lambda: drive
    app.dependency_overrides[get_identity_provider] = lambda: identity
    yield TestClient(app)
    app.dependency_overrides.clear()


# ─── Factories ────────────────────────────────────────────────────────────────

@pytest.fixture()
def make_user(db):
    counter = itertools.count(1)

    def _make(role, vendor_name=None, email=None):
        n = next(counter)
        if vendor_name is None and role == Role.QUESTION_MAKER:
            vendor_name = "Vendor Cerdas"
        user = models.User(
            name=f"{role.value} {n}",
            email=email or f"{role.value}.{n}@example.com",
            role=role,
            vendor_name=vendor_name,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def users(make_user):
    return SimpleNamespace(
        admin=make_user(Role.ADMINISTRATOR),
        maker=make_user(Role.QUESTION_MAKER),
        entry=make_user(Role.DATA_ENTRY),
        reviewer=make_user(Role.QC_DATA),
        other_reviewer=make_user(Role.QC_DATA),
        metadata=make_user(Role.METADATA),
    )


def as_actor(user):
    return Actor.from_user(user)


def auth_headers(user):
    token = create_access_token({"sub": str(user.id), "role": user.role.value, "email": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def taxonomy(db):
    subject = models.Subject(name="Penalaran Matematika")
    db.add(subject)
    db.flush()
    chapter = models.Chapter(name="Aljabar", subject_id=subject.id)
    db.add(chapter)
    db.flush()
    topic = models.Topic(name="Persamaan Linear", chapter_id=chapter.id)
    db.add(topic)
    db.flush()
    concept = models.ConceptTitle(name="Sistem Persamaan Dua Variabel", topic_id=topic.id)
    exam = models.Exam(name="UTBK-SNBT")
    db.add_all([concept, exam])
    db.commit()
    return SimpleNamespace(subject=subject, chapter=chapter, topic=topic, concept=concept, exam=exam)


@pytest.fixture()
def make_package(db, users, taxonomy):
    def _make(package_number=1, amount_of_questions=10, uploader=None):
        uploader = uploader or users.maker
        package = models.QuestionPackage(
            vendor_name=uploader.vendor_name,
            subject_id=taxonomy.subject.id,
            subject=taxonomy.subject.name,
            exam_id=taxonomy.exam.id,
            package_number=package_number,
            title=f"Paket {package_number}",
            amount_of_questions=amount_of_questions,
            source_file_url=f"http://testserver/uploads/organization-non-profit/{uploader.id}/paket.pdf",
            source_file_path=f"{uploader.id}/paket.pdf",
            uploaded_by=uploader.id,
        )
        db.add(package)
        db.commit()
        db.refresh(package)
        return package

    return _make


@pytest.fixture()
def package(make_package):
    return make_package()


def question_data(taxonomy, package, **overrides):
    data = {
        "package_id": package.id,
        "subject_id": taxonomy.subject.id,
        "chapter_id": taxonomy.chapter.id,
        "topic_id": taxonomy.topic.id,
        "concept_title_id": taxonomy.concept.id,
        "question_type": QuestionType.MCQ,
        "question": "Jika 2x + 3 = 11, berapakah nilai x?",
        "option_a": "2",
        "option_b": "3",
        "option_c": "4",
        "option_d": "5",
        "correct_option": "C",
        "solution": "2x = 8 sehingga x = 4",
    }
    data.update(overrides)
    return data


@pytest.fixture()
def make_question(db, users, taxonomy, package):
    def _make(target_package=None, **overrides):
        data = schemas.QuestionCreate(**question_data(taxonomy, target_package or package, **overrides))
        return question_authoring.create_question(db, as_actor(users.entry), data)

    return _make


def payload(filename="bukti.png", content=b"\x89PNG fake image", content_type="image/png"):
    return UploadPayload(filename=filename, content=content, content_type=content_type)
