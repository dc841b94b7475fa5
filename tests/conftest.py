from pathlib import Path

from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / ".env.test"
load_dotenv(env_file)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.certificates.config import CertificateConfig  # noqa: E402
from app.certificates.dependencies import (  # noqa: E402
    build_certificate_service,
    get_certificate_config,
    get_certificate_storage,
)
from app.core.security import create_access_token  # noqa: E402
from app.core.storage import LocalStorage  # noqa: E402
from app.db.session import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from tests.utils.factories import (  # noqa: E402
    complete_course_factory,
    create_course_factory,
    create_user_factory,
)


@pytest.fixture
def test_engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def test_session_local(test_engine):
    return sessionmaker(bind=test_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(test_session_local):
    session = test_session_local()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"))


@pytest.fixture
def certificate_config():
    return CertificateConfig(
        code_prefix="CERT",
        verification_base_url="https://learn.example.com/verify",
        issuer_name="Test Academy",
        batch_workers=2,
        retry_max_attempts=3,
    )


@pytest.fixture
def certificate_service(db_session, certificate_config, storage):
    return build_certificate_service(db_session, certificate_config, storage)


@pytest.fixture
async def test_app(db_session, storage, certificate_config):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_certificate_storage] = lambda: storage
    app.dependency_overrides[get_certificate_config] = lambda: certificate_config

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def test_client(test_app):
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
        yield client


@pytest.fixture
def test_user(db_session):
    return create_user_factory(db_session, email="learner@example.com", name="Ada Learner")


@pytest.fixture
def other_user(db_session):
    return create_user_factory(db_session, email="someone@example.com", name="Other Learner")


@pytest.fixture
def test_admin(db_session):
    return create_user_factory(
        db_session, email="admin@example.com", name="Admin User", role="admin"
    )


@pytest.fixture
def test_course(db_session):
    return create_course_factory(db_session, title="Advanced Python", lesson_count=5)


@pytest.fixture
def completed_course(db_session, test_user, test_course):
    """``test_user`` has finished every lesson and passed the quiz at 92%."""
    complete_course_factory(db_session, test_user, test_course, quiz_score=92)
    return test_course


def _token_for(user):
    return create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})


@pytest.fixture
def test_user_token(test_user):
    return _token_for(test_user)


@pytest.fixture
def other_user_token(other_user):
    return _token_for(other_user)


@pytest.fixture
def test_admin_token(test_admin):
    return _token_for(test_admin)
