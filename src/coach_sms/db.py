from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .config import get_settings


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class TeacherNotFound(LookupError):
    pass


class ExamNotFound(LookupError):
    pass


class Teacher(Base):
    __tablename__ = "teachers"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    sms_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    parent_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    batch: Mapped[str | None] = mapped_column(String, nullable=True)


class Exam(Base):
    __tablename__ = "exams"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    total_marks: Mapped[float] = mapped_column(Float, default=100, nullable=False)
    batch: Mapped[str | None] = mapped_column(String, nullable=True)


class ExamMark(Base):
    __tablename__ = "exam_marks"
    __table_args__ = (UniqueConstraint("exam_id", "student_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exam_id: Mapped[str] = mapped_column(ForeignKey("exams.id"), nullable=False)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id"), nullable=False)
    marks: Mapped[float] = mapped_column(Float, nullable=False)
    feedback: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class Attendance(Base):
    __tablename__ = "attendance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id"), nullable=False)
    batch: Mapped[str] = mapped_column(String, nullable=False)
    subject: Mapped[str] = mapped_column(String, nullable=False)
    taken_on: Mapped[date] = mapped_column("date", Date, nullable=False)
    is_present: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class SmsLog(Base):
    __tablename__ = "sms_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipient_type: Mapped[str] = mapped_column(String(8), nullable=False)  # "student" / "parent"
    phone: Mapped[str] = mapped_column(String, nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(String, nullable=True)
    student_id: Mapped[str | None] = mapped_column(String, nullable=True)
    sms_type: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String(8), nullable=False)  # "sent" / "failed"
    credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sent_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# --- Engine & Session factory ---

settings = get_settings()

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    """Create tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


# --- Credits ---


def get_teacher(db: Session, teacher_id: str) -> Teacher:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None:
        raise TeacherNotFound(teacher_id)
    return teacher


def get_credits(db: Session, teacher_id: str) -> int:
    return get_teacher(db, teacher_id).sms_credits


def consume_credits(db: Session, teacher_id: str, count: int) -> bool:
    """
    Debit `count` credits in one conditional UPDATE.

    Returns False (and changes nothing) when the balance is below `count`,
    so two concurrent sends cannot both spend the same credits.
    """
    if count <= 0:
        return True
    result = db.execute(
        update(Teacher)
        .where(Teacher.id == teacher_id, Teacher.sms_credits >= count)
        .values(sms_credits=Teacher.sms_credits - count)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def add_credits(db: Session, teacher_id: str, count: int) -> int:
    if count <= 0:
        raise ValueError("credits to add must be positive")
    get_teacher(db, teacher_id)
    db.execute(
        update(Teacher)
        .where(Teacher.id == teacher_id)
        .values(sms_credits=Teacher.sms_credits + count)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return get_credits(db, teacher_id)


# --- Roster / marks / attendance ---


def get_exam(db: Session, exam_id: str) -> Exam:
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise ExamNotFound(exam_id)
    return exam


def list_students(db: Session, batch: str | None = None) -> list[Student]:
    stmt = select(Student).order_by(Student.name)
    if batch:
        stmt = stmt.where(Student.batch == batch)
    return list(db.scalars(stmt))


def students_by_id(db: Session, student_ids: list[str]) -> dict[str, Student]:
    if not student_ids:
        return {}
    rows = db.scalars(select(Student).where(Student.id.in_(student_ids)))
    return {s.id: s for s in rows}


def upsert_mark(
    db: Session, exam_id: str, student_id: str, marks: float, feedback: str | None
) -> ExamMark:
    row = db.scalars(
        select(ExamMark).where(ExamMark.exam_id == exam_id, ExamMark.student_id == student_id)
    ).first()
    if row is None:
        row = ExamMark(exam_id=exam_id, student_id=student_id, marks=marks, feedback=feedback)
        db.add(row)
    else:
        row.marks = marks
        row.feedback = feedback
    return row


def replace_attendance(
    db: Session, batch: str, on: date, rows: list[Attendance]
) -> list[Attendance]:
    """Drop whatever was recorded for this batch and date, then store `rows`."""
    db.execute(delete(Attendance).where(Attendance.batch == batch, Attendance.taken_on == on))
    db.add_all(rows)
    db.commit()
    return rows
