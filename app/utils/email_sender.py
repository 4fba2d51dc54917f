"""
SES / SendGrid email sending wrapper.

Configure via env:
- EMAIL_PROVIDER: "ses" | "sendgrid" (default: "sendgrid" if SENDGRID_API_KEY is set, else "ses" if AWS creds/region are set)
- For SES: AWS_REGION, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY (or default creds)
- For SendGrid: SENDGRID_API_KEY
- FROM_EMAIL, FROM_NAME: sender identity for receipts and organizer notices

send_email never raises: it returns (provider, message_id) on success and
(None, error_message) on failure so callers can log and move on.
"""

from __future__ import annotations
import os
from typing import Optional, Tuple

DEFAULT_FROM_EMAIL = os.getenv("FROM_EMAIL", "no-reply@example.com")
DEFAULT_FROM_NAME = os.getenv("FROM_NAME", "Donations")

SendResult = Tuple[Optional[str], Optional[str]]


def _pick_provider() -> Optional[str]:
    provider = os.getenv("EMAIL_PROVIDER", "").lower()
    if provider:
        return provider
    if os.getenv("SENDGRID_API_KEY"):
        return "sendgrid"
    if os.getenv("AWS_REGION") or os.getenv("AWS_ACCESS_KEY_ID"):
        return "ses"
    return None


def send_email(
    *,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: Optional[str] = None,
    from_email: Optional[str] = None,
    from_name: Optional[str] = None,
) -> SendResult:
    from_addr = from_email or DEFAULT_FROM_EMAIL
    from_display = from_name or DEFAULT_FROM_NAME

    provider = _pick_provider()
    if provider is None:
        return None, "EMAIL_PROVIDER not set and no SENDGRID_API_KEY or AWS creds"
    if provider == "sendgrid":
        sender = _send_via_sendgrid
    elif provider == "ses":
        sender = _send_via_ses
    else:
        return None, f"Unknown EMAIL_PROVIDER: {provider}"

    try:
        return sender(
            to_email=to_email,
            subject=subject,
            body_text=body_text,
            body_html=body_html,
            from_email=from_addr,
            from_name=from_display,
        )
    except Exception as e:
        return None, f"{provider}: {e}"


def _send_via_sendgrid(
    *,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: Optional[str],
    from_email: str,
    from_name: str,
) -> SendResult:
    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Mail, Email, To, Content

    api_key = os.getenv("SENDGRID_API_KEY", "").strip()
    if not api_key:
        return None, "SENDGRID_API_KEY not set"

    message = Mail(
        from_email=Email(from_email, from_name),
        to_emails=To(to_email),
        subject=subject,
        plain_text_content=Content("text/plain", body_text),
        html_content=Content("text/html", body_html or f"<pre>{body_text}</pre>"),
    )
    response = SendGridAPIClient(api_key).send(message)
    if response.status_code >= 400:
        return None, f"sendgrid status {response.status_code}"

    msg_id = None
    if response.headers:
        msg_id = response.headers.get("X-Message-Id")
    return "sendgrid", msg_id or str(response.status_code)


def _send_via_ses(
    *,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: Optional[str],
    from_email: str,
    from_name: str,
) -> SendResult:
    import boto3
    from botocore.exceptions import ClientError

    client = boto3.client("ses", region_name=os.getenv("AWS_REGION", "us-east-1"))

    body = {"Text": {"Data": body_text, "Charset": "UTF-8"}}
    if body_html:
        body["Html"] = {"Data": body_html, "Charset": "UTF-8"}

    try:
        response = client.send_email(
            Source=f"{from_name} <{from_email}>",
            Destination={"ToAddresses": [to_email]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": body,
            },
        )
    except ClientError as e:
        return None, str(e.response.get("Error", {}).get("Message", str(e)))
    return "ses", response.get("MessageId") or "unknown"
