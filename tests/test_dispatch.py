from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from coach_sms.db import SmsLog, add_credits, consume_credits, get_credits
from coach_sms.dispatch import dispatch_batch
from coach_sms.sms import OutboundSms


def _batch() -> list[tuple[OutboundSms, str]]:
    return [
        (OutboundSms(phone="01711111111", message="hi A", recipient_name="A", student_id="s1"), "student"),
        (OutboundSms(phone="01811111111", message="hi A", recipient_name="A", student_id="s1"), "parent"),
        (OutboundSms(phone="01722222222", message="hi B", recipient_name="B", student_id="s2"), "student"),
    ]


def test_consume_credits_is_conditional(db: Session) -> None:
    assert consume_credits(db, "t1", 11) is False
    assert get_credits(db, "t1") == 10

    assert consume_credits(db, "t1", 4) is True
    assert get_credits(db, "t1") == 6


def test_consume_zero_is_noop(db: Session) -> None:
    assert consume_credits(db, "t1", 0) is True
    assert get_credits(db, "t1") == 10


def test_add_credits(db: Session) -> None:
    assert add_credits(db, "t1", 25) == 35


def test_dispatch_charges_one_credit_per_sent(db: Session, fake_sender) -> None:
    sender = fake_sender
    result = dispatch_batch(db, "t1", _batch(), "exam_result", sender=sender)

    assert result.sent == 3
    assert result.failed == 0
    assert result.credits_used == 3
    assert result.remaining_credits == 7
    assert [to for to, _ in sender.sent] == ["8801711111111", "8801811111111", "8801722222222"]

    logs = db.scalars(select(SmsLog)).all()
    assert len(logs) == 3
    assert {log.recipient_type for log in logs} == {"student", "parent"}
    assert all(log.status == "sent" and log.credits == 1 for log in logs)
    assert all(log.sent_by == "t1" for log in logs)


def test_failed_send_costs_nothing(db: Session, fake_sender) -> None:
    sender = fake_sender
    sender.fail_for.add("8801722222222")

    result = dispatch_batch(db, "t1", _batch(), "exam_result", sender=sender)

    assert result.sent == 2
    assert result.failed == 1
    assert result.credits_used == 2
    assert result.remaining_credits == 8
    assert result.failures[0].phone == "8801722222222"
    assert "Invalid Number" in result.failures[0].error

    failed = db.scalars(select(SmsLog).where(SmsLog.status == "failed")).one()
    assert failed.credits == 0
    assert failed.student_id == "s2"


def test_dispatch_does_not_overdraw(db: Session, set_credits, fake_sender) -> None:
    # Balance dropped after the gate was checked: messages go out but nothing is debited.
    set_credits(1)
    result = dispatch_batch(db, "t1", _batch(), "general", sender=fake_sender)

    assert result.sent == 3
    assert result.credits_used == 0
    assert result.remaining_credits == 1
    logs = db.scalars(select(SmsLog)).all()
    assert len(logs) == 3
    assert all(log.status == "sent" and log.credits == 0 for log in logs)
