"""Transactional email via the Resend HTTP API."""

import html
from typing import Any

import httpx

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


async def send_email(
    to: str | list[str],
    subject: str,
    html_body: str,
    text_body: str | None = None,
) -> dict[str, Any]:
    """
    Send a transactional email.

    Returns:
        Dict with message_id and status

    Raises:
        ValueError: If RESEND_API_KEY is not configured
        httpx.HTTPStatusError: If Resend rejects the request
    """
    settings = get_settings()
    if not settings.RESEND_API_KEY:
        raise ValueError("RESEND_API_KEY not configured")

    to_list = [to] if isinstance(to, str) else to
    payload: dict[str, Any] = {
        "from": f"{settings.RESEND_FROM_NAME} <{settings.RESEND_FROM_EMAIL}>",
        "to": to_list,
        "subject": subject,
        "html": html_body,
    }
    if text_body:
        payload["text"] = text_body

    async with httpx.AsyncClient(timeout=15) as client:
        response = await client.post(
            RESEND_API_URL,
            headers={
                "Authorization": f"Bearer {settings.RESEND_API_KEY}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        response.raise_for_status()
        message_id = response.json().get("id", "")

    logger.info(f"Email sent to {len(to_list)} recipients, subject='{subject}', message_id={message_id}")
    return {"message_id": message_id, "status": "sent"}


def _layout(heading: str, body_html: str) -> str:
    return (
        "<div style=\"font-family: sans-serif; max-width: 560px; margin: 0 auto;\">"
        f"<h2>{html.escape(heading)}</h2>{body_html}</div>"
    )


async def send_invitation_email(
    to: str,
    invite_url: str,
    invited_by: str | None = None,
    name: str | None = None,
) -> dict[str, Any]:
    greeting = f"Hi {html.escape(name)}," if name else "Hi,"
    inviter = html.escape(invited_by) if invited_by else "A member of the team"
    body = (
        f"<p>{greeting}</p>"
        f"<p>{inviter} has invited you to join the knowledge base.</p>"
        f"<p><a href=\"{html.escape(invite_url)}\">Accept your invitation</a></p>"
        "<p>This invitation expires in 7 days.</p>"
    )
    text = f"{inviter} has invited you to join the knowledge base. Accept here: {invite_url}"
    return await send_email(to, "You're invited", _layout("You're invited", body), text)


async def send_deletion_scheduled_email(
    to: str,
    cancel_url: str,
    deletion_date: str,
) -> dict[str, Any]:
    body = (
        f"<p>Your account is scheduled for permanent deletion on {html.escape(deletion_date)}.</p>"
        f"<p>Changed your mind? <a href=\"{html.escape(cancel_url)}\">Cancel the deletion</a>.</p>"
    )
    text = f"Your account will be deleted on {deletion_date}. Cancel: {cancel_url}"
    return await send_email(
        to, "Your account deletion is scheduled", _layout("Account deletion scheduled", body), text
    )
