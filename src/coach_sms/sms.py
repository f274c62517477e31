from __future__ import annotations

import re
from datetime import date as Date

from pydantic import BaseModel, Field

NON_DIGIT_RE = re.compile(r"\D")

# Operator prefixes for Bangladeshi mobile numbers
BD_MOBILE_PREFIXES = ("013", "014", "015", "016", "017", "018", "019")


class Recipient(BaseModel):
    id: str
    display_name: str
    student_phone: str | None = None
    parent_phone: str | None = None
    # Raw mark as entered; may be None or "" when the teacher left it blank.
    mark: float | str | None = None


class SendSelection(BaseModel):
    send_to_students: bool = True
    send_to_parents: bool = False


class OutboundSms(BaseModel):
    phone: str
    message: str
    recipient_name: str | None = None
    student_id: str | None = None


class MarkEntry(BaseModel):
    student_id: str
    marks: float | str | None = None
    feedback: str | None = None


class MarksRequest(BaseModel):
    teacher_id: str | None = None
    student_marks: list[MarkEntry]
    sms: SendSelection = Field(default_factory=SendSelection)


class AttendanceEntry(BaseModel):
    student_id: str
    is_present: bool = True


class AttendanceRequest(BaseModel):
    teacher_id: str | None = None
    batch: str
    subject: str
    date: Date
    attendance: list[AttendanceEntry]
    send_sms: bool = True


class BulkSmsRequest(BaseModel):
    teacher_id: str | None = None
    student_ids: list[str]
    message: str = Field(min_length=1)
    sms: SendSelection = Field(default_factory=SendSelection)


class EstimateRequest(BaseModel):
    teacher_id: str | None = None
    recipients: list[Recipient]
    sms: SendSelection = Field(default_factory=SendSelection)


class PurchaseRequest(BaseModel):
    teacher_id: str | None = None
    credits: int = Field(gt=0)


def normalize_phone(raw: str | None) -> str:
    """
    Bring a phone number into the 8801XXXXXXXXX form expected by the gateway.

    Numbers already carrying the 88 country code are kept, local mobile
    numbers get the prefix, anything else is returned as bare digits.
    """
    if not raw:
        return ""
    cleaned = NON_DIGIT_RE.sub("", raw)
    if cleaned.startswith("88"):
        return cleaned
    if cleaned.startswith(BD_MOBILE_PREFIXES):
        return "88" + cleaned
    if len(cleaned) == 11 and cleaned.startswith("01"):
        return "88" + cleaned
    return cleaned
