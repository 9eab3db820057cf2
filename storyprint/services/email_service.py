import base64
import logging
import re
from typing import List, Optional, Tuple, Union

import requests

from storyprint.config import settings

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


def is_valid_email(email):
    if isinstance(email, list):
        return all(is_valid_email(e) for e in email)

    if not email:
        return False

    return re.match(r"[^@]+@[^@]+\.[^@]+", email) is not None


def send_email(
    to: Union[str, List[str]],
    subject: str,
    html: str,
    attachments: Optional[List[Tuple[str, bytes, str]]] = None,
) -> bool:
    """
    Send email via Brevo.

    attachments: List of tuples
        (filename, file_bytes, mime_type)

    Never raises: a failed email is logged and reported as False so it can
    not undo the state change that triggered it.
    """

    # Normalize recipients into a list of valid addresses
    if isinstance(to, list):
        valid_emails = [e for e in to if is_valid_email(e)]
    else:
        valid_emails = [to] if is_valid_email(to) else []

    if not valid_emails:
        logger.warning(f"No valid emails found: {to}")
        return False

    if not settings.BREVO_API_KEY:
        logger.info(f"BREVO_API_KEY not set, skipping email '{subject}' to {valid_emails}")
        return False

    payload = {
        "sender": {
            "email": settings.MAIL_FROM,
            "name": settings.STORE_NAME,
        },
        "to": [{"email": email} for email in valid_emails],
        "subject": subject,
        "htmlContent": html,
    }

    if attachments:
        payload["attachment"] = [
            {
                "name": filename,
                "content": base64.b64encode(file_bytes).decode("utf-8"),
            }
            for filename, file_bytes, mime_type in attachments
        ]

    headers = {
        "api-key": settings.BREVO_API_KEY,
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(
            BREVO_API_URL,
            json=payload,
            headers=headers,
            timeout=10,
        )

        if response.status_code >= 400:
            logger.error(
                f"Brevo email failed ({response.status_code}): {response.text}"
            )
            return False

        logger.info(f"Brevo email sent to {valid_emails}")
        return True

    except requests.RequestException:
        logger.exception("Brevo email exception")
        return False
