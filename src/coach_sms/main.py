from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from .billing import estimate_cost, excluded_recipients, gate
from .config import get_settings
from .db import (
    ExamNotFound,
    SessionLocal,
    SmsLog,
    TeacherNotFound,
    add_credits,
    get_credits,
    init_db,
    list_students,
)
from .pipeline import record_attendance_and_notify, save_marks_and_notify, send_bulk_sms
from .sms import (
    AttendanceRequest,
    BulkSmsRequest,
    EstimateRequest,
    MarksRequest,
    PurchaseRequest,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: runs once before the app starts serving requests
    logging.basicConfig(level=logging.INFO)
    init_db()
    yield


app = FastAPI(title="coach-sms", version="0.1.0", lifespan=lifespan)

# --- Admin protection ---

ALLOWED_ADMIN_IPS = {"127.0.0.1", "::1"}


def verify_admin(request: Request) -> None:
    """
    Simple protection for /admin endpoints:
    - only allow requests from ALLOWED_ADMIN_IPS
    - require X-Admin-Token header that matches ADMIN_TOKEN env var
    """
    client_host = request.client.host if request.client else None

    if client_host not in ALLOWED_ADMIN_IPS:
        raise HTTPException(status_code=403, detail="Forbidden")

    admin_token = get_settings().admin_token
    if not admin_token:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")

    if request.headers.get("X-Admin-Token") != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


# --- DB dependency ---


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _teacher_id(requested: str | None) -> str:
    return requested or get_settings().default_teacher_id


@app.exception_handler(TeacherNotFound)
async def teacher_not_found(request: Request, exc: TeacherNotFound) -> JSONResponse:
    return JSONResponse({"detail": f"Teacher not found: {exc}"}, status_code=404)


@app.exception_handler(ExamNotFound)
async def exam_not_found(request: Request, exc: ExamNotFound) -> JSONResponse:
    return JSONResponse({"detail": f"Exam not found: {exc}"}, status_code=404)


# --- Routes ---


@app.get("/api/students")
def students(batch: str | None = None, db: Session = Depends(get_db)) -> JSONResponse:
    return JSONResponse(
        [
            {
                "id": s.id,
                "name": s.name,
                "phone": s.phone,
                "parent_phone": s.parent_phone,
                "batch": s.batch,
            }
            for s in list_students(db, batch)
        ]
    )


@app.get("/api/sms/credits")
def sms_credits(teacher_id: str | None = None, db: Session = Depends(get_db)) -> JSONResponse:
    """Current balance; the dashboard polls this every few seconds."""
    tid = _teacher_id(teacher_id)
    return JSONResponse({"teacher_id": tid, "sms_credits": get_credits(db, tid)})


@app.post("/api/sms/estimate")
def sms_estimate(payload: EstimateRequest, db: Session = Depends(get_db)) -> JSONResponse:
    """Preview what a send would cost without saving or sending anything."""
    required = estimate_cost(payload.recipients, payload.sms)
    available = get_credits(db, _teacher_id(payload.teacher_id))
    decision = gate(required, available)
    return JSONResponse(
        {
            "required": required,
            "available": available,
            "allowed": decision.allowed,
            "reason": str(decision.reason),
            "shortfall": decision.shortfall,
            "excluded": [
                {"recipient_id": e.recipient_id, "reason": str(e.reason)}
                for e in excluded_recipients(payload.recipients, payload.sms)
            ],
        }
    )


@app.post("/api/exams/{exam_id}/marks")
def exam_marks(exam_id: str, payload: MarksRequest, db: Session = Depends(get_db)) -> JSONResponse:
    """
    Save marks for an exam and text the results.

    Marks are always stored; the response's "notice" explains when SMS was
    skipped for lack of credits.
    """
    outcome = save_marks_and_notify(
        db=db,
        teacher_id=_teacher_id(payload.teacher_id),
        exam_id=exam_id,
        entries=payload.student_marks,
        selection=payload.sms,
    )
    return JSONResponse(outcome.to_dict())


@app.post("/api/attendance/take")
def take_attendance(payload: AttendanceRequest, db: Session = Depends(get_db)) -> JSONResponse:
    outcome = record_attendance_and_notify(
        db=db,
        teacher_id=_teacher_id(payload.teacher_id),
        batch=payload.batch,
        subject=payload.subject,
        on=payload.date,
        entries=payload.attendance,
        send_sms=payload.send_sms,
    )
    return JSONResponse(outcome.to_dict())


@app.post("/api/sms/send-bulk")
def sms_send_bulk(payload: BulkSmsRequest, db: Session = Depends(get_db)) -> JSONResponse:
    outcome = send_bulk_sms(
        db=db,
        teacher_id=_teacher_id(payload.teacher_id),
        student_ids=payload.student_ids,
        message=payload.message,
        selection=payload.sms,
    )
    return JSONResponse(outcome.to_dict())


@app.post("/api/sms/purchase")
def sms_purchase(payload: PurchaseRequest, db: Session = Depends(get_db)) -> JSONResponse:
    tid = _teacher_id(payload.teacher_id)
    balance = add_credits(db, tid, payload.credits)
    return JSONResponse({"teacher_id": tid, "sms_credits": balance})


@app.get("/admin/sms-logs")
def admin_sms_logs(
    limit: int = 50,
    db: Session = Depends(get_db),
    _: None = Depends(verify_admin),
) -> JSONResponse:
    """
    Recent SMS attempts, newest first.

    Example:
      GET /admin/sms-logs?limit=10
    """
    # Clamp limit to a reasonable range
    safe_limit = max(1, min(limit, 200))
    logs = db.scalars(select(SmsLog).order_by(SmsLog.id.desc()).limit(safe_limit)).all()

    payload = [
        {
            "id": log.id,
            "created_at": log.created_at.isoformat() if log.created_at else None,
            "recipient_type": log.recipient_type,
            "phone": log.phone,
            "recipient_name": log.recipient_name,
            "student_id": log.student_id,
            "sms_type": log.sms_type,
            "message": log.message,
            "status": log.status,
            "credits": log.credits,
            "sent_by": log.sent_by,
        }
        for log in logs
    ]
    return JSONResponse(payload)
