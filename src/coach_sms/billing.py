"""
SMS cost estimation, credit gating and result-message formatting.

These are pure functions shared by the marks, attendance and bulk-SMS
flows. Nothing here touches the database or the SMS provider: callers read
the roster and the credit balance, ask this module what a send would cost
and whether it may proceed, and act on the answer.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from .sms import Recipient, SendSelection

SMS_SEGMENT_CHARS: Final[int] = 160
DEFAULT_MAX_CHARS: Final[int] = 65
DEFAULT_SIGNATURE: Final[str] = " -Belal Sir"

# ": " after the name, " " before the exam title, plus one spare character.
SEPARATOR_CHARS: Final[int] = 4


class Channel(StrEnum):
    STUDENT = "student"
    PARENT = "parent"


class GateReason(StrEnum):
    OK = "OK"
    ZERO_BALANCE = "ZERO_BALANCE"
    INSUFFICIENT = "INSUFFICIENT"


class ExclusionReason(StrEnum):
    MARK_MISSING = "MARK_MISSING"
    INVALID_RECIPIENT = "INVALID_RECIPIENT"


@dataclass(frozen=True)
class Target:
    recipient: Recipient
    channel: Channel
    phone: str


@dataclass(frozen=True)
class Exclusion:
    recipient_id: str
    display_name: str
    reason: ExclusionReason
    channel: Channel | None = None


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    reason: GateReason
    required: int
    available: int

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


def is_valid_mark(mark: object) -> bool:
    """
    True for any non-negative number, zero included.

    None, blank strings, non-numeric strings, NaN and negatives are not
    valid marks.
    """
    if mark is None or isinstance(mark, bool):
        return False
    if isinstance(mark, str):
        if not mark.strip():
            return False
        try:
            value = float(mark)
        except ValueError:
            return False
    elif isinstance(mark, int | float):
        value = float(mark)
    else:
        return False
    return not math.isnan(value) and value >= 0


def _has_phone(phone: str | None) -> bool:
    return bool(phone and phone.strip())


def iter_targets(recipients: Iterable[Recipient], selection: SendSelection) -> Iterable[Target]:
    """Yield one target per (recipient, selected channel) that would receive an SMS."""
    for recipient in recipients:
        if not is_valid_mark(recipient.mark):
            continue
        if selection.send_to_students and _has_phone(recipient.student_phone):
            yield Target(recipient, Channel.STUDENT, recipient.student_phone.strip())  # type: ignore[union-attr]
        if selection.send_to_parents and _has_phone(recipient.parent_phone):
            yield Target(recipient, Channel.PARENT, recipient.parent_phone.strip())  # type: ignore[union-attr]


def estimate_cost(recipients: Iterable[Recipient], selection: SendSelection) -> int:
    """
    Number of SMS a send would need.

    Student and parent channels are counted independently and added, so a
    recipient with both phones costs two SMS when both channels are on.
    """
    return sum(1 for _ in iter_targets(recipients, selection))


def excluded_recipients(
    recipients: Iterable[Recipient], selection: SendSelection
) -> list[Exclusion]:
    """Recipients (and channels) that will silently not be notified."""
    out: list[Exclusion] = []
    for recipient in recipients:
        if not is_valid_mark(recipient.mark):
            out.append(Exclusion(recipient.id, recipient.display_name, ExclusionReason.MARK_MISSING))
            continue
        if selection.send_to_students and not _has_phone(recipient.student_phone):
            out.append(
                Exclusion(
                    recipient.id,
                    recipient.display_name,
                    ExclusionReason.INVALID_RECIPIENT,
                    Channel.STUDENT,
                )
            )
        if selection.send_to_parents and not _has_phone(recipient.parent_phone):
            out.append(
                Exclusion(
                    recipient.id,
                    recipient.display_name,
                    ExclusionReason.INVALID_RECIPIENT,
                    Channel.PARENT,
                )
            )
    return out


def gate(required_count: int, available_credits: int) -> GateResult:
    if required_count > 0 and available_credits <= 0:
        return GateResult(False, GateReason.ZERO_BALANCE, required_count, available_credits)
    if available_credits < required_count:
        return GateResult(False, GateReason.INSUFFICIENT, required_count, available_credits)
    return GateResult(True, GateReason.OK, required_count, available_credits)


def _format_number(value: float | int | str) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return f"{number:g}"


def format_result_message(
    recipient_name: str,
    mark: float | int | str,
    total_marks: float | int,
    exam_title: str,
    signature: str = DEFAULT_SIGNATURE,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> str:
    """
    Render "{name}: Got {mark}/{total} marks in {exam}{signature}".

    The exam title is cut (no ellipsis) so the message fits in max_chars.
    When the name alone leaves no room, the title is dropped and the
    message may exceed max_chars.
    """
    score_text = f"Got {_format_number(mark)}/{_format_number(total_marks)} marks in"
    budget = max_chars - len(recipient_name) - len(score_text) - len(signature) - SEPARATOR_CHARS
    budget = max(budget, 0)
    exam_name = exam_title[:budget] if len(exam_title) > budget else exam_title
    return f"{recipient_name}: {score_text} {exam_name}{signature}"


def segment_count(text: str) -> int:
    """How many 160-character SMS units a free-text message occupies (display only)."""
    return math.ceil(len(text) / SMS_SEGMENT_CHARS)


def format_attendance_message(
    recipient_name: str,
    is_present: bool,
    subject: str,
    batch: str,
    signature: str = DEFAULT_SIGNATURE,
) -> str:
    status = "present" if is_present else "absent"
    return f"{recipient_name} was {status} in {subject} class today. Batch: {batch}.{signature}"
