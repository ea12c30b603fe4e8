import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import notifications, workflow_logger
from app.database import get_db
from app.main import app
from app.models import Base


@pytest.fixture(autouse=True)
def log_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKFLOW_LOG_DIR", str(tmp_path / "logs"))
    workflow_logger.reset_log_path()
    yield tmp_path / "logs"
    workflow_logger.reset_log_path()


@pytest.fixture(autouse=True)
def outbox():
    sent = []
    notifications.set_sink(sent.append)
    yield sent
    notifications.set_sink(None)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def client(session_factory, tmp_path, monkeypatch):
    def override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    monkeypatch.setattr("app.main.UPLOAD_DIR", str(tmp_path / "uploads"))
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
