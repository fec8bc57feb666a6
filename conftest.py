import os
import uuid

# Metrics go to stdout instead of a CloudWatch agent during tests
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")

import pytest
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

# Import app and DB dependency function first
from main import app, get_db

# Import database components needed for setup
from database import Base
import models
import plans

TEST_DATABASE_URL = "sqlite:///./talent-ranker-test.db"
ALEMBIC_INI = str(Path(__file__).resolve().parent / "alembic.ini")

connect_args = (
    {"check_same_thread": False, "timeout": 15} if TEST_DATABASE_URL.startswith("sqlite") else {}
)
test_engine = create_engine(TEST_DATABASE_URL, connect_args=connect_args)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models, stamp it with Alembic head and seed the plans."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    if os.path.exists(db_path):
        try:
            os.unlink(db_path)
            print(f"\nRemoved existing test database file: {db_path}")
        except OSError as e:
            print(f"Error removing existing test database file {db_path}: {e}")

    print(f"Creating test database tables from models at {db_path}")
    Base.metadata.create_all(bind=test_engine)

    print("Stamping database with Alembic head revision")
    alembic_cfg = Config(ALEMBIC_INI)
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    session = TestSessionLocal()
    try:
        plans.seed_default_plans(session)
        session.commit()
    finally:
        session.close()

    yield  # Tests run here

    test_engine.dispose()
    if os.path.exists(db_path):
        try:
            os.unlink(db_path)
            print(f"Removed test database file: {db_path}")
        except OSError as e:
            print(f"Error removing test database file {db_path}: {e}")


@pytest.fixture(scope="session")
def session_factory(setup_test_database):
    """The test sessionmaker, for tests that need several independent sessions."""
    return TestSessionLocal


@pytest.fixture(scope="function") # Function scope for session
def db_session(setup_test_database): # Depends on DB setup
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


# Override the get_db dependency for tests
@pytest.fixture(scope="function")
def override_get_db():
    """Override the get_db dependency to use our test database.

    This creates a new session for each API call, allowing proper
    transaction handling within FastAPI endpoints.
    """

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db):
    """Provides a test client configured with our test database session."""
    return TestClient(app)


@pytest.fixture(scope="function")
def make_user(db_session):
    """Factory for a user on a throwaway plan with the given limits (None = unlimited)."""

    def _make_user(jd_limit=1, cv_limit=10, jd_used=0, cv_used=0, with_plan=True, plan_name="Test Plan"):
        plan_id = None
        if with_plan:
            plan = models.Plan(
                name=plan_name,
                region="Test",
                currency="USD",
                jd_limit=jd_limit,
                cv_limit=cv_limit,
                is_active=True,
                sort_order=1000,
            )
            db_session.add(plan)
            db_session.flush()
            plan_id = plan.id
        user = models.User(
            email=f"user-{uuid.uuid4().hex[:12]}@example.com",
            plan_id=plan_id,
            jd_used=jd_used,
            cv_used=cv_used,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user
