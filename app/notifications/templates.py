"""Plain text and HTML bodies for outgoing emails."""

from html import escape
from typing import Tuple

from app.notifications.base import GuardianCredentialsEmail


def _format_expiry(message: GuardianCredentialsEmail) -> str:
    return message.expiry_date.strftime("%A, %B %d, %Y")


def guardian_credentials(message: GuardianCredentialsEmail, portal_url: str) -> Tuple[str, str, str]:
    """Return (subject, text, html)."""
    subject = f"Student portal access for {message.student_name} - {message.organization_name}"
    expiry = _format_expiry(message)

    text = (
        f"Dear {message.guardian_name},\n\n"
        f"Your ward, {message.student_name}, has been enrolled at {message.organization_name}. "
        "Below are the temporary login credentials for the student portal.\n\n"
        f"Temporary code: {message.temp_code}\n"
        f"Temporary password: {message.temp_password}\n\n"
        f"These credentials expire on {expiry} and can only be used once. "
        "On first login you will be asked to choose a permanent username and password.\n\n"
        f"Portal: {portal_url}\n"
    )

    html = f"""<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h2>Welcome to {escape(message.organization_name)}</h2>
    <p>Dear {escape(message.guardian_name)},</p>
    <p>Your ward, <strong>{escape(message.student_name)}</strong>, has been enrolled at
       <strong>{escape(message.organization_name)}</strong>. Below are the temporary login
       credentials for the student portal.</p>
    <p>Temporary code: <code>{escape(message.temp_code)}</code><br/>
       Temporary password: <code>{escape(message.temp_password)}</code></p>
    <p style="color: #c53030;">These credentials expire on {escape(expiry)} and can only be used once.</p>
    <p><a href="{escape(portal_url)}">Open the student portal</a></p>
  </body>
</html>
"""
    return subject, text, html
