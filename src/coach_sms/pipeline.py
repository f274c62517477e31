from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from .billing import (
    Exclusion,
    GateReason,
    GateResult,
    Target,
    estimate_cost,
    excluded_recipients,
    format_attendance_message,
    format_result_message,
    gate,
    is_valid_mark,
    iter_targets,
)
from .config import get_settings
from .db import (
    Attendance,
    get_credits,
    get_exam,
    get_teacher,
    replace_attendance,
    students_by_id,
    upsert_mark,
)
from .dispatch import DispatchResult, Sender, dispatch_batch
from .sms import AttendanceEntry, MarkEntry, OutboundSms, Recipient, SendSelection

logger = logging.getLogger(__name__)

PARENTS_ONLY = SendSelection(send_to_students=False, send_to_parents=True)

EntryT = TypeVar("EntryT", MarkEntry, AttendanceEntry)


@dataclass
class NotifyOutcome:
    saved: int
    required: int
    available: int
    gate: GateResult | None = None
    dispatch: DispatchResult | None = None
    excluded: list[Exclusion] = field(default_factory=list)
    notice: str | None = None
    summary: dict[str, int] | None = None

    @property
    def sms_sent(self) -> bool:
        return self.dispatch is not None and self.dispatch.sent > 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.gate is not None:
            data["gate"] = {
                "allowed": self.gate.allowed,
                "reason": str(self.gate.reason),
                "shortfall": self.gate.shortfall,
            }
        data["excluded"] = [
            {
                "recipient_id": e.recipient_id,
                "display_name": e.display_name,
                "reason": str(e.reason),
                "channel": str(e.channel) if e.channel else None,
            }
            for e in self.excluded
        ]
        data["sms_sent"] = self.sms_sent
        return data


def latest_per_student(entries: Sequence[EntryT]) -> list[EntryT]:
    """One entry per student_id; a later entry replaces an earlier one."""
    by_student: dict[str, EntryT] = {}
    for entry in entries:
        by_student.pop(entry.student_id, None)
        by_student[entry.student_id] = entry
    return list(by_student.values())


def skip_notice(saved_what: str | None, result: GateResult) -> str:
    """Tell the user their data is safe but no SMS went out, and why."""
    prefix = f"{saved_what} saved, but SMS was not sent" if saved_what else "SMS was not sent"
    if result.reason is GateReason.ZERO_BALANCE:
        return f"{prefix}: your SMS balance is empty."
    return (
        f"{prefix}: {result.required} SMS needed but only {result.available} credits available."
    )


def _gate_and_send(
    db: Session,
    teacher_id: str,
    recipients: list[Recipient],
    selection: SendSelection,
    render: Callable[[Target], str],
    sms_type: str,
    saved: int,
    saved_what: str | None,
    sender: Sender | None,
) -> NotifyOutcome:
    required = estimate_cost(recipients, selection)
    available = get_credits(db, teacher_id)
    decision = gate(required, available)

    outcome = NotifyOutcome(
        saved=saved,
        required=required,
        available=available,
        gate=decision,
        excluded=excluded_recipients(recipients, selection),
    )

    if not decision.allowed:
        logger.info(
            "Skipping %s SMS for %s: %s (need %d, have %d)",
            sms_type,
            teacher_id,
            decision.reason,
            required,
            available,
        )
        outcome.notice = skip_notice(saved_what, decision)
        return outcome

    if required == 0:
        return outcome

    messages: list[tuple[OutboundSms, str]] = [
        (
            OutboundSms(
                phone=target.phone,
                message=render(target),
                recipient_name=target.recipient.display_name,
                student_id=target.recipient.id,
            ),
            str(target.channel),
        )
        for target in iter_targets(recipients, selection)
    ]
    outcome.dispatch = dispatch_batch(db, teacher_id, messages, sms_type, sender=sender)
    return outcome


def save_marks_and_notify(
    db: Session,
    teacher_id: str,
    exam_id: str,
    entries: Sequence[MarkEntry],
    selection: SendSelection,
    sender: Sender | None = None,
) -> NotifyOutcome:
    """
    Store exam marks, then text results to students and/or parents.

    Marks are saved whatever the credit balance is. The SMS step only runs
    when the balance covers every message; otherwise the outcome carries a
    notice explaining the shortfall.
    """
    settings = get_settings()
    get_teacher(db, teacher_id)
    exam = get_exam(db, exam_id)
    entries = latest_per_student(entries)
    roster = students_by_id(db, [e.student_id for e in entries])

    recipients: list[Recipient] = []
    saved = 0
    for entry in entries:
        student = roster.get(entry.student_id)
        if student is None:
            logger.warning("Ignoring marks for unknown student %s", entry.student_id)
            continue
        mark: float | None = None
        if is_valid_mark(entry.marks) and float(entry.marks) <= exam.total_marks:  # type: ignore[arg-type]
            mark = float(entry.marks)  # type: ignore[arg-type]
            upsert_mark(db, exam.id, student.id, mark, entry.feedback)
            saved += 1
        recipients.append(
            Recipient(
                id=student.id,
                display_name=student.name,
                student_phone=student.phone,
                parent_phone=student.parent_phone,
                mark=mark,
            )
        )
    db.commit()
    logger.info("Saved %d marks for exam %s", saved, exam.id)

    def render(target: Target) -> str:
        return format_result_message(
            target.recipient.display_name,
            target.recipient.mark,  # type: ignore[arg-type]
            exam.total_marks,
            exam.title,
            signature=settings.sms_signature,
            max_chars=settings.sms_max_chars,
        )

    return _gate_and_send(
        db,
        teacher_id,
        recipients,
        selection,
        render,
        sms_type="exam_result",
        saved=saved,
        saved_what="Marks",
        sender=sender,
    )


def record_attendance_and_notify(
    db: Session,
    teacher_id: str,
    batch: str,
    subject: str,
    on: date,
    entries: Sequence[AttendanceEntry],
    send_sms: bool = True,
    sender: Sender | None = None,
) -> NotifyOutcome:
    """Replace the attendance sheet for batch+date and text each parent the result."""
    settings = get_settings()
    get_teacher(db, teacher_id)
    entries = latest_per_student(entries)
    roster = students_by_id(db, [e.student_id for e in entries])

    rows = [
        Attendance(
            student_id=e.student_id,
            batch=batch,
            subject=subject,
            taken_on=on,
            is_present=e.is_present,
            created_by=teacher_id,
        )
        for e in entries
        if e.student_id in roster
    ]
    replace_attendance(db, batch, on, rows)

    present = sum(1 for r in rows if r.is_present)
    summary = {"total": len(rows), "present": present, "absent": len(rows) - present}
    logger.info("Attendance for %s on %s: %s", batch, on, summary)

    if not send_sms:
        outcome = NotifyOutcome(saved=len(rows), required=0, available=get_credits(db, teacher_id))
        outcome.summary = summary
        return outcome

    status_by_id = {r.student_id: r.is_present for r in rows}
    # Attendance carries no mark; a recorded student is always countable.
    recipients = [
        Recipient(
            id=student_id,
            display_name=roster[student_id].name,
            parent_phone=roster[student_id].parent_phone,
            mark=0,
        )
        for student_id in status_by_id
    ]

    def render(target: Target) -> str:
        return format_attendance_message(
            target.recipient.display_name,
            status_by_id[target.recipient.id],
            subject,
            batch,
            signature=settings.sms_signature,
        )

    outcome = _gate_and_send(
        db,
        teacher_id,
        recipients,
        PARENTS_ONLY,
        render,
        sms_type="attendance",
        saved=len(rows),
        saved_what="Attendance",
        sender=sender,
    )
    outcome.summary = summary
    return outcome


def send_bulk_sms(
    db: Session,
    teacher_id: str,
    student_ids: Sequence[str],
    message: str,
    selection: SendSelection,
    sender: Sender | None = None,
) -> NotifyOutcome:
    get_teacher(db, teacher_id)
    roster = students_by_id(db, list(student_ids))
    recipients = [
        Recipient(
            id=s.id,
            display_name=s.name,
            student_phone=s.phone,
            parent_phone=s.parent_phone,
            mark=0,
        )
        for s in roster.values()
    ]
    return _gate_and_send(
        db,
        teacher_id,
        recipients,
        selection,
        lambda _target: message,
        sms_type="general",
        saved=0,
        saved_what=None,
        sender=sender,
    )
