from __future__ import annotations

import argparse
import csv
from collections.abc import Iterable

from sqlalchemy import select

from .db import SessionLocal, SmsLog


def _format_str(value: str | None) -> str:
    """Normalise None/whitespace for display."""
    if value is None:
        return ""
    return value.strip()


def iter_recent_logs(limit: int) -> Iterable[SmsLog]:
    """Yield recent SMS logs ordered by newest first."""
    db = SessionLocal()
    try:
        logs = db.scalars(select(SmsLog).order_by(SmsLog.id.desc()).limit(limit)).all()
        yield from logs
    finally:
        db.close()


def print_recent_logs(limit: int) -> None:
    """Print recent SMS logs in a human-readable form."""
    for log in iter_recent_logs(limit):
        print("-" * 80)
        print(
            f"SMS #{log.id} | {log.status} | {log.sms_type} | "
            f"to={log.phone} ({log.recipient_type}) | at={log.created_at}"
        )
        print(f"name: {_format_str(log.recipient_name)} | credits: {log.credits}")
        print(f"text: {_format_str(log.message)}")
        print()


def export_recent_logs_csv(limit: int, csv_path: str) -> int:
    """Write recent logs to `csv_path` and return how many rows were written."""
    written = 0
    with open(csv_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(
            [
                "id",
                "created_at",
                "recipient_type",
                "phone",
                "recipient_name",
                "student_id",
                "sms_type",
                "status",
                "credits",
                "sent_by",
                "message",
            ]
        )
        for log in iter_recent_logs(limit):
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat() if log.created_at else "",
                    log.recipient_type,
                    log.phone,
                    _format_str(log.recipient_name),
                    log.student_id or "",
                    log.sms_type,
                    log.status,
                    log.credits,
                    log.sent_by,
                    _format_str(log.message),
                ]
            )
            written += 1
    return written


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Inspect recent SMS logs stored in the coach-sms database."
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of most recent logs to show/export (default: 20).",
    )
    parser.add_argument(
        "--csv",
        type=str,
        default="",
        help="Optional path to export logs as CSV. If omitted, only prints to stdout.",
    )
    args = parser.parse_args()

    if args.csv:
        written = export_recent_logs_csv(limit=args.limit, csv_path=args.csv)
        print(f"Exported {written} logs to {args.csv}")
    else:
        print_recent_logs(limit=args.limit)


if __name__ == "__main__":
    main()
