"""Reusable input validators.

- Email validation (magic-link sign-in)
- String trimming for free-text form fields
"""

import re

# Regex patterns
EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def is_valid_email(value: str | None) -> bool:
    if not isinstance(value, str):
        return False
    return bool(EMAIL_REGEX.match(value.strip()))


def normalize_email(value: str) -> str:
    """Trim and lowercase an email address for lookup and storage."""
    return value.strip().lower()


def has_value(value) -> bool:
    """True for a non-empty list or a string that isn't blank.

    Numbers count as values (estimated_size may arrive as an int).
    """
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return len(str(value).strip()) > 0
