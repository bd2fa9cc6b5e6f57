import os

# Configure the app for tests before importing app modules: one shared
# in-memory SQLite database and fake vendor credentials. Vendor SDK calls
# are always mocked; the keys only get past the "not configured" checks.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-0123456789abcdef0123")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("GOOGLE_GEMINI_API_KEY", "gemini-test")
os.environ.setdefault("GOOGLE_SEARCH_API_KEY", "search-test")
os.environ.setdefault("GOOGLE_SEARCH_ENGINE_ID", "engine-test")
os.environ.setdefault("STORAGE_ACCESS_KEY_ID", "storage-test")
os.environ.setdefault("STORAGE_SECRET_ACCESS_KEY", "storage-test")
os.environ.setdefault("NEO4J_URI", "")

import pytest

from app.db import models  # noqa: F401
from app.db.database import Base, SessionLocal, engine
from app.db.models import AgentActivity, AIModel, Case, CaseFileMetadata, CaseStatus

USER_ID = "user-1"


@pytest.fixture
def db():
    """Fresh schema per test; the StaticPool engine shares one connection."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_case(db):
    def _make(ai_model=AIModel.openai.value, **kwargs):
        case = Case(
            user_id=kwargs.pop("user_id", USER_ID),
            name=kwargs.pop("name", "Smith v. Smith"),
            type=kwargs.pop("type", "Custody"),
            status=kwargs.pop("status", CaseStatus.in_progress.value),
            ai_model=ai_model,
            case_goals=kwargs.pop("case_goals", "Secure primary custody"),
            system_instruction=kwargs.pop("system_instruction", "Be concise"),
            **kwargs,
        )
        db.add(case)
        db.commit()
        return case
    return _make


@pytest.fixture
def add_file(db):
    def _add(case, name, **kwargs):
        row = CaseFileMetadata(
            case_id=case.id,
            file_name=name,
            file_path=kwargs.pop("file_path", f"{case.user_id}/{case.id}/{name}"),
            **kwargs,
        )
        db.add(row)
        db.commit()
        return row
    return _add


@pytest.fixture
def activities(db):
    """Activity rows for a case, oldest first."""
    def _list(case_id, **filters):
        query = db.query(AgentActivity).filter(AgentActivity.case_id == case_id)
        for key, value in filters.items():
            query = query.filter(getattr(AgentActivity, key) == value)
        return query.order_by(AgentActivity.timestamp.asc()).all()
    return _list
