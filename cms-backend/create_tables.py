"""
Database setup script
Creates every question CMS table (no-op for tables that already exist)
"""

from dotenv import load_dotenv
load_dotenv()

from database.database import engine, Base
from database.models import (  # noqa: F401 - registers the tables on Base.metadata
    User, Subject, Chapter, Topic, ConceptTitle, Exam,
    QuestionPackage, Question, Revision, QcReview,
)


def create_tables():
    """Create all tables in the database"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully!")
    print("\nCreated tables:")
    print("  - users")
    print("  - subjects, chapters, topics, concept_titles, exam_names")
    print("  - question_packages, questions")
    print("  - revisions, qc_reviews")


if __name__ == "__main__":
    create_tables()
