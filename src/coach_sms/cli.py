from __future__ import annotations

import argparse

from sqlalchemy import select

from .billing import format_result_message
from .config import get_settings
from .db import ExamMark, ExamNotFound, SessionLocal, Student, get_exam


def preview_exam(exam_id: str) -> int:
    """
    Print the result SMS each student of an exam would receive.

    Returns a process exit code (1 when the exam does not exist).
    """
    settings = get_settings()
    db = SessionLocal()
    try:
        try:
            exam = get_exam(db, exam_id)
        except ExamNotFound:
            print(f"No exam with id {exam_id!r}.")
            return 1

        rows = db.execute(
            select(Student.name, ExamMark.marks)
            .join(ExamMark, ExamMark.student_id == Student.id)
            .where(ExamMark.exam_id == exam.id)
            .order_by(Student.name)
        ).all()

        if not rows:
            print("No marks entered for this exam yet.")
            return 0

        for name, marks in rows:
            text = format_result_message(
                name,
                marks,
                exam.total_marks,
                exam.title,
                signature=settings.sms_signature,
                max_chars=settings.sms_max_chars,
            )
            print(f"[{len(text):>3}/{settings.sms_max_chars}] {text}")
        return 0
    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Preview exam result SMS texts.")
    parser.add_argument("exam_id", type=str)
    args = parser.parse_args()
    raise SystemExit(preview_exam(args.exam_id))


if __name__ == "__main__":
    main()
