"""Transactional email via the Resend HTTP API.

One attempt per message. A failed send is reported to the caller and is
not retried; callers decide whether to record or surface it.
"""

from __future__ import annotations

import html as html_module
import logging
import re
from dataclasses import dataclass

import httpx

from willtank.core.config import settings
from willtank.services.audit_service import hash_email

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"


@dataclass
class EmailResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


def is_configured() -> bool:
    return bool(settings.RESEND_API_KEY)


def html_to_text(content: str) -> str:
    """Convert HTML into readable text for the plain-text alternative."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<br\s*/?>|</p>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*", "\n", text).strip()
    return html_module.unescape(text)


def _error_detail(response: httpx.Response) -> str:
    detail = None
    try:
        data = response.json()
        if isinstance(data, dict):
            detail = data.get("message") or data.get("error")
    except ValueError:
        detail = None
    if detail:
        return f"Resend API error: {response.status_code} ({detail})"
    return f"Resend API error: {response.status_code}"


async def send_email(
    *,
    to_email: str,
    subject: str,
    html: str,
    text: str | None = None,
    tags: dict[str, str] | None = None,
    high_priority: bool = False,
    idempotency_key: str | None = None,
) -> EmailResult:
    """
    Send one email.

    When RESEND_API_KEY is not set the send is logged as a dry run and
    reported as a success.
    """
    if not is_configured():
        logger.info("[DRY RUN] Email send skipped for recipient=%s", hash_email(to_email))
        return EmailResult(success=True, message_id=None)

    payload: dict[str, object] = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": subject,
        "html": html,
        "text": text or html_to_text(html),
    }
    if tags:
        payload["tags"] = [{"name": k, "value": v} for k, v in tags.items()]
    if high_priority:
        payload["headers"] = {"X-Priority": "1", "Importance": "high"}

    headers = {
        "Authorization": f"Bearer {settings.RESEND_API_KEY}",
        "Content-Type": "application/json",
    }
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key

    try:
        async with httpx.AsyncClient(timeout=settings.EMAIL_TIMEOUT_SECONDS) as client:
            response = await client.post(RESEND_SEND_URL, headers=headers, json=payload)
    except httpx.HTTPError as e:
        logger.warning(
            "Email send failed for recipient=%s: %s", hash_email(to_email), type(e).__name__
        )
        return EmailResult(success=False, error=f"Email transport error: {type(e).__name__}")

    if 200 <= response.status_code < 300:
        message_id = None
        try:
            data = response.json()
            if isinstance(data, dict) and isinstance(data.get("id"), str):
                message_id = data["id"]
        except ValueError:
            message_id = None
        logger.info(
            "Email sent recipient=%s message_id=%s", hash_email(to_email), message_id
        )
        return EmailResult(success=True, message_id=message_id)

    error = _error_detail(response)
    logger.warning("Email send failed for recipient=%s: %s", hash_email(to_email), error)
    return EmailResult(success=False, error=error)
