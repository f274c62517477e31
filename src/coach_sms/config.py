from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel


class Settings(BaseModel):
    # Project root (repo root in local dev, /app in Docker)
    project_root: Path = Path(__file__).resolve().parents[2]

    # Database URL:
    # - Default for local dev: sqlite file in the project root (coach_sms.db)
    # - Override in Docker / production using the DATABASE_URL env var
    database_url: str = os.getenv(
        "DATABASE_URL",
        f"sqlite:///{(Path(__file__).resolve().parents[2] / 'coach_sms.db')}",
    )

    # --- Twilio settings for outbound SMS ---
    twilio_account_sid: str | None = os.getenv("TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = os.getenv("TWILIO_AUTH_TOKEN")
    twilio_from_number: str | None = os.getenv("TWILIO_FROM_NUMBER")

    # --- Result message template ---
    # Appended verbatim, so it carries its own leading space.
    sms_signature: str = " -Belal Sir"
    sms_max_chars: int = 65

    # Teacher whose credits are used when a request does not name one
    default_teacher_id: str = "teacher-belal-sir"

    admin_token: str | None = None

    def model_post_init(self, __context: object) -> None:  # type: ignore[override]
        # Read at construction time so get_settings.cache_clear() picks up monkeypatched env vars.
        env = os.environ
        if "DATABASE_URL" in env:
            object.__setattr__(self, "database_url", env["DATABASE_URL"])
        if "SMS_SIGNATURE" in env:
            object.__setattr__(self, "sms_signature", env["SMS_SIGNATURE"])
        if env.get("SMS_MAX_CHARS"):
            object.__setattr__(self, "sms_max_chars", int(env["SMS_MAX_CHARS"]))
        if env.get("DEFAULT_TEACHER_ID"):
            object.__setattr__(self, "default_teacher_id", env["DEFAULT_TEACHER_ID"])
        if env.get("ADMIN_TOKEN"):
            object.__setattr__(self, "admin_token", env["ADMIN_TOKEN"])
        for field, var in (
            ("twilio_account_sid", "TWILIO_ACCOUNT_SID"),
            ("twilio_auth_token", "TWILIO_AUTH_TOKEN"),
            ("twilio_from_number", "TWILIO_FROM_NUMBER"),
        ):
            if var in env:
                object.__setattr__(self, field, env[var])


@lru_cache
def get_settings() -> Settings:
    return Settings()
