"""
Validation utilities for caller-supplied identifiers and recipients
"""

import re
from typing import Tuple

from email_validator import validate_email, EmailNotValidError

from ..errors import InvalidIdentifier, InvalidRecipient

JOB_ID_RE = re.compile(r"^[a-f0-9]{32}$")
TEMPLATE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}\.html$")
_UNSAFE_NAME_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_UNSAFE_ATTACHMENT_RE = re.compile(r"[^a-zA-Z0-9_\-]")


def validate_job_id(job_id: str) -> str:
    """
    Validate an export job identifier before it addresses storage.

    Returns the id unchanged, raises InvalidIdentifier otherwise.
    """
    if not isinstance(job_id, str) or not JOB_ID_RE.match(job_id):
        raise InvalidIdentifier("Invalid job id")
    return job_id


def is_valid_template_name(name: str) -> bool:
    if not name or not isinstance(name, str):
        return False
    if ".." in name:
        return False
    return bool(TEMPLATE_NAME_RE.match(name))


def check_recipient(recipient: str) -> Tuple[bool, str]:
    """
    Check an e-mail recipient address (syntax only, no DNS lookups)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not recipient or not recipient.strip():
        return False, "empty address"
    try:
        validate_email(recipient, check_deliverability=False)
    except EmailNotValidError as e:
        return False, str(e)
    return True, ""


def validate_recipient(recipient: str) -> str:
    ok, error = check_recipient(recipient)
    if not ok:
        raise InvalidRecipient(error)
    return recipient


def clean_name(value: str, fallback: str = "signature") -> str:
    """Lowercase and replace anything outside [a-z0-9] with underscores"""
    cleaned = _UNSAFE_NAME_RE.sub("_", (value or "").lower())
    return cleaned if cleaned.strip("_") else fallback


def attachment_filename(person_name: str, template_name: str) -> str:
    """'John Doe' + 'modern.html' -> 'John_Doe_modern.html'"""
    safe = _UNSAFE_ATTACHMENT_RE.sub("", (person_name or "").replace(" ", "_"))
    return f"{safe or 'signature'}_{template_name}"
