from __future__ import annotations

import csv
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from coach_sms.cli import preview_exam
from coach_sms.pipeline import save_marks_and_notify, send_bulk_sms
from coach_sms.sms import MarkEntry, SendSelection
from coach_sms.tools import export_recent_logs_csv, main, print_recent_logs


@pytest.fixture
def use_test_session(db: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("coach_sms.cli.SessionLocal", lambda: db)
    monkeypatch.setattr("coach_sms.tools.SessionLocal", lambda: db)


def test_preview_exam(
    db: Session, use_test_session, fake_sender, capsys: pytest.CaptureFixture[str]
) -> None:
    save_marks_and_notify(
        db,
        "t1",
        "e1",
        [MarkEntry(student_id="s1", marks=85)],
        SendSelection(send_to_students=False, send_to_parents=False),
    )

    assert preview_exam("e1") == 0
    out = capsys.readouterr().out
    assert "[ 62/65] Rahim Uddin: Got 85/100 marks in Chapter 1 MCQ Test -Belal Sir" in out


def test_preview_unknown_exam(use_test_session, capsys: pytest.CaptureFixture[str]) -> None:
    assert preview_exam("nope") == 1
    assert "No exam" in capsys.readouterr().out


def test_preview_exam_without_marks(use_test_session, capsys: pytest.CaptureFixture[str]) -> None:
    assert preview_exam("e1") == 0
    assert "No marks entered" in capsys.readouterr().out


def test_print_and_export_logs(
    db: Session,
    use_test_session,
    fake_sender,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    send_bulk_sms(db, "t1", ["s2"], "Holiday tomorrow", SendSelection())

    print_recent_logs(limit=5)
    out = capsys.readouterr().out
    assert "to=8801722222222 (student)" in out
    assert "text: Holiday tomorrow" in out

    csv_path = tmp_path / "logs.csv"
    assert export_recent_logs_csv(limit=5, csv_path=str(csv_path)) == 1
    with csv_path.open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 1
    assert rows[0]["status"] == "sent"
    assert rows[0]["sms_type"] == "general"


def test_export_reports_rows_written_not_limit(
    db: Session,
    use_test_session,
    fake_sender,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    send_bulk_sms(db, "t1", ["s1", "s2"], "Exam on Sunday", SendSelection())
    csv_path = tmp_path / "logs.csv"
    monkeypatch.setattr(
        "sys.argv", ["coach-sms-logs", "--limit", "20", "--csv", str(csv_path)]
    )

    main()

    assert capsys.readouterr().out.strip() == f"Exported 2 logs to {csv_path}"
