from __future__ import annotations

from twilio.rest import Client

from .config import get_settings


def get_twilio_client() -> Client:
    settings = get_settings()

    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise RuntimeError(
            "Twilio credentials are not configured (TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN)"
        )

    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


def to_e164(phone: str) -> str:
    """Numbers are stored as bare digits with country code; Twilio wants a leading '+'."""
    return phone if phone.startswith("+") else f"+{phone}"


def send_sms(to: str, body: str) -> None:
    """
    Send an SMS using the configured Twilio account.

    Raises on misconfiguration or provider errors; the dispatcher counts
    that as a failed message.
    """
    settings = get_settings()
    if not settings.twilio_from_number:
        raise RuntimeError("TWILIO_FROM_NUMBER is not configured")

    client = get_twilio_client()
    client.messages.create(
        to=to_e164(to),
        from_=settings.twilio_from_number,
        body=body,
    )
