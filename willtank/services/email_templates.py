"""HTML email bodies for the death-verification workflow.

Every interpolated value is HTML-escaped. Subjects are returned alongside
the body so callers never build them ad hoc.
"""

from html import escape

from willtank.core.config import settings

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="text-align: center;">{title}</h2>
  {content}
  <p style="margin-top: 40px; font-size: 12px; color: #666; text-align: center;">
    This is an automated message from WillTank. Please do not reply to this email.
  </p>
</body>
</html>
"""

_PIN_BLOCK = (
    '<p style="text-align: center; margin: 30px 0;">'
    '<span style="font-size: 32px; font-weight: bold; letter-spacing: 5px; color: #4F46E5; '
    'background-color: #f8f9fa; padding: 15px; border-radius: 4px;">{pin}</span></p>'
)


def _layout(title: str, content: str) -> str:
    return _LAYOUT.format(title=escape(title), content=content)


def unlock_url(unlock_token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/will-unlock/{unlock_token}"


def checkin_reminder(user_name: str, days_left_in_grace: int) -> tuple[str, str]:
    """Sent once when a check-in becomes overdue but is still within grace."""
    subject = "WillTank: your check-in is overdue"
    content = (
        f"<p>Hello {escape(user_name)},</p>"
        "<p>We have not heard from you since your last scheduled check-in.</p>"
        f"<p>Please check in within <strong>{days_left_in_grace} day(s)</strong>. "
        "After that, your executor and trusted contacts will be asked to verify your status.</p>"
        f'<p><a href="{escape(settings.FRONTEND_URL)}/check-ins">Check in now</a></p>'
    )
    return subject, _layout("Check-in Reminder", content)


def contact_pin(contact_name: str, deceased_name: str, executor_name: str, pin: str) -> tuple[str, str]:
    """PIN for a beneficiary or trusted contact, to be relayed to the executor."""
    subject = f"Urgent: Executor Verification PIN for {deceased_name}'s Will"
    content = (
        f"<p>Hello {escape(contact_name)},</p>"
        f"<p>{escape(executor_name)} is attempting to access {escape(deceased_name)}'s will "
        "documents as their executor.</p>"
        f"<p>To verify this request, please provide the following PIN code to {escape(executor_name)}:</p>"
        + _PIN_BLOCK.format(pin=escape(pin))
        + f'<p style="color: #dc3545; font-weight: bold;">IMPORTANT: Only share this PIN with the '
        f"executor if you have confirmed {escape(deceased_name)}'s passing.</p>"
        "<p>The executor needs PIN codes from all contacts to access the will documents.</p>"
    )
    return subject, _layout("Executor Access Verification", content)


def executor_pin(
    executor_name: str,
    deceased_name: str,
    pin: str,
    unlock_token: str,
    pins_required: int,
) -> tuple[str, str]:
    """Executor's own PIN plus the unlock link."""
    subject = f"Action required: unlock {deceased_name}'s will"
    link = unlock_url(unlock_token)
    content = (
        f"<p>Hello {escape(executor_name)},</p>"
        f"<p>You are named as executor of {escape(deceased_name)}'s will. "
        f"{escape(deceased_name)} has missed their scheduled check-ins and the grace period has ended.</p>"
        "<p>Your PIN is:</p>"
        + _PIN_BLOCK.format(pin=escape(pin))
        + f"<p>Unlocking requires <strong>{pins_required}</strong> PIN(s). The other PINs were sent "
        "to the beneficiaries and trusted contacts; please collect them before continuing.</p>"
        f'<p><a href="{escape(link)}">Open the unlock page</a></p>'
    )
    return subject, _layout("Executor Verification", content)


def status_check_url(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/status-check/{token}"


def status_check(
    contact_name: str,
    user_name: str,
    token: str,
    executor_name: str | None = None,
    executor_email: str | None = None,
) -> tuple[str, str]:
    """Ask a contact whether the user is still alive."""
    subject = f"Important: Missed Check-in by {user_name}"
    link = status_check_url(token)
    if executor_name and executor_email:
        note = (
            f"If you learn that {escape(user_name)} has passed away or is unable to manage "
            f"their affairs, please contact the will executor, {escape(executor_name)}, "
            f"at {escape(executor_email)}."
        )
    else:
        note = (
            "If the missed check-in turns out to be an emergency, please contact WillTank support."
        )
    content = (
        f"<p>Hello {escape(contact_name)},</p>"
        f"<p>We're reaching out because <strong>{escape(user_name)}</strong> has missed their "
        "regular check-in on WillTank. They might be traveling, busy, or may simply have "
        "forgotten to log in.</p>"
        f"<p>Please try to contact {escape(user_name)} directly, then let us know what you "
        "found out:</p>"
        f'<p style="text-align: center;"><a href="{escape(link)}">Respond to this status check</a></p>'
        '<div style="margin-top: 20px; padding: 15px; border-left: 4px solid #f59e0b; '
        f'background-color: #fffbeb;"><p>{note}</p></div>'
        f"<p>Thank you for being a trusted contact for {escape(user_name)}.</p>"
    )
    return subject, _layout("Missed Check-in Notification", content)
