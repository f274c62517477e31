from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from .db import SmsLog, consume_credits, get_credits
from .sms import OutboundSms, normalize_phone
from .twilio_client import send_sms

logger = logging.getLogger(__name__)

Sender = Callable[[str, str], None]


@dataclass
class FailedSms:
    phone: str
    recipient_name: str | None
    error: str


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0
    credits_used: int = 0
    remaining_credits: int = 0
    failures: list[FailedSms] = field(default_factory=list)


def dispatch_batch(
    db: Session,
    teacher_id: str,
    messages: Sequence[tuple[OutboundSms, str]],
    sms_type: str,
    sender: Sender | None = None,
) -> DispatchResult:
    """
    Send a batch of SMS and charge one credit per delivered message.

    `messages` pairs each OutboundSms with its recipient type ("student" or
    "parent"). Every attempt is written to sms_logs; failed sends cost
    nothing. Callers run the credit gate first.
    """
    send = sender or send_sms
    result = DispatchResult()

    logs: list[SmsLog] = []

    logger.info("Dispatching %d %s SMS for %s", len(messages), sms_type, teacher_id)

    for sms, recipient_type in messages:
        phone = normalize_phone(sms.phone)
        try:
            send(phone, sms.message)
        except Exception as exc:  # provider and config errors both count as a failed send
            result.failed += 1
            result.failures.append(FailedSms(phone, sms.recipient_name, str(exc)))
            logger.warning("SMS to %s failed: %s", phone, exc)
            status, credits = "failed", 0
        else:
            result.sent += 1
            status, credits = "sent", 1

        logs.append(
            SmsLog(
                recipient_type=recipient_type,
                phone=phone,
                recipient_name=sms.recipient_name,
                student_id=sms.student_id,
                sms_type=sms_type,
                message=sms.message,
                status=status,
                credits=credits,
                sent_by=teacher_id,
            )
        )

    if result.sent:
        if consume_credits(db, teacher_id, result.sent):
            result.credits_used = result.sent
        else:
            # Balance moved under us between the gate and the debit; the log records no charge.
            logger.warning(
                "Could not debit %d credits for %s: balance changed during send",
                result.sent,
                teacher_id,
            )
            for log in logs:
                log.credits = 0

    db.add_all(logs)
    db.commit()

    result.remaining_credits = get_credits(db, teacher_id)
    logger.info(
        "SMS batch done: %d sent, %d failed, %d credits used, %d remaining",
        result.sent,
        result.failed,
        result.credits_used,
        result.remaining_credits,
    )
    return result
