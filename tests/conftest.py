from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from coach_sms.config import get_settings
from coach_sms.db import Base, Exam, Student, Teacher


class FakeSender:
    """Records every send instead of calling Twilio; raises for numbers in `fail_for`."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_for: set[str] = set()

    def __call__(self, to: str, body: str) -> None:
        if to in self.fail_for:
            raise RuntimeError("Invalid Number")
        self.sent.append((to, body))


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """In-memory database seeded with one teacher, three students and one exam."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()

    session.add_all(
        [
            Teacher(id="t1", name="Belal Sir", sms_credits=10),
            Student(
                id="s1",
                name="Rahim Uddin",
                phone="01711111111",
                parent_phone="01811111111",
                batch="A",
            ),
            Student(id="s2", name="Karim Ali", phone="01722222222", parent_phone=None, batch="A"),
            Student(id="s3", name="Nusrat Jahan", phone=None, parent_phone="01933333333", batch="B"),
            Exam(id="e1", title="Chapter 1 MCQ Test", total_marks=100, batch="A"),
        ]
    )
    session.commit()

    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def set_credits(db: Session):
    def _set(amount: int) -> None:
        teacher = db.get(Teacher, "t1")
        assert teacher is not None
        teacher.sms_credits = amount
        db.commit()

    return _set


@pytest.fixture
def fake_sender(monkeypatch: pytest.MonkeyPatch) -> FakeSender:
    """Replace the Twilio sender used by the dispatcher."""
    sender = FakeSender()
    monkeypatch.setattr("coach_sms.dispatch.send_sms", sender)
    return sender


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    from coach_sms.main import app, get_db

    def _get_db() -> Generator[Session, None, None]:
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
