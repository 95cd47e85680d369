"""
Question CMS API - Main Application
FastAPI application for producing UTBK-SNBT exam questions.
Packages → questions → QC review → revision loop → approval, gated by role.
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import logging
import os

from database.database import engine, Base, SessionLocal
from database.models import Exam, User, Role
from services.errors import WorkflowError, PartialWriteError
from services.storage import UPLOAD_ROOT

from routers import (
    auth, users,
    subjects, chapters, topics, concept_titles, exams,
    packages, questions, qc, revisions,
)

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
log = logging.getLogger(__name__)

DEFAULT_EXAMS = ["UTBK-SNBT"]
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def _seed_defaults():
    """Create the default exam names and the first administrator if they don't exist."""
    db = SessionLocal()
    try:
        for name in DEFAULT_EXAMS:
            if not db.query(Exam).filter(Exam.name == name).first():
                db.add(Exam(name=name))
                db.commit()
                log.info("Default exam seeded: %s", name)

        if ADMIN_EMAIL and not db.query(User).filter(User.role == Role.ADMINISTRATOR).first():
            db.add(User(name=ADMIN_NAME, email=ADMIN_EMAIL.strip().lower(), role=Role.ADMINISTRATOR))
            db.commit()
            log.info("Default administrator created: %s", ADMIN_EMAIL)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables + seed defaults."""
    Base.metadata.create_all(bind=engine)
    _seed_defaults()
    yield


app = FastAPI(
    title="Question CMS API",
    description="Role-based workflow for authoring and reviewing UTBK-SNBT questions",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    """Workflow errors carry their own status code"""
    content = {"detail": exc.message}
    if isinstance(exc, PartialWriteError):
        log.error("Partial write on %s %s: completed=%s failed=%s",
                  request.method, request.url.path, exc.completed, exc.failed)
        content.update({"completed": exc.completed, "failed": exc.failed})
    return JSONResponse(status_code=exc.status_code, content=content)


# ─── Routers ───────────────────────────────────────────────────────────────────

# Identity
app.include_router(auth.router)              # /auth/*
app.include_router(users.router)             # /users/*

# Taxonomy
app.include_router(subjects.router)
app.include_router(chapters.router)
app.include_router(topics.router)
app.include_router(concept_titles.router)
app.include_router(exams.router)

# Workflow
app.include_router(packages.router)          # question maker submissions
app.include_router(questions.router)         # data entry authoring
app.include_router(qc.router)                # claim / release / decision / quota
app.include_router(revisions.router)         # request / respond / acceptance

# Static files: serve stored objects at /uploads/<bucket>/<path>
os.makedirs(UPLOAD_ROOT, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_ROOT), name="uploads")


@app.get("/")
def root():
    return {
        "name": "Question CMS API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "auth": "/auth",
            "packages": "/packages",
            "questions": "/questions",
            "qc": "/qc",
            "revisions": "/revisions",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "question-cms-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
