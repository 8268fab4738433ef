"""Utilities to normalize and validate user-entered labels."""

from __future__ import annotations

import re
from typing import Optional

from .errors import ValidationError

_WHITESPACE_RUN = re.compile(r"\s{2,}")


def normalize_label(value: Optional[str]) -> str:
    """Trim a label and collapse inner whitespace runs to a single space."""
    if not value:
        return ""
    return _WHITESPACE_RUN.sub(" ", value.strip())


def validate_name(value: Optional[str], max_length: int = 40) -> str:
    """Return the normalized meter name or raise ``ValidationError``."""
    name = normalize_label(value)
    if not name or len(name) > max_length:
        raise ValidationError(f"Meter name must be between 1 and {max_length} characters.")
    return name


def validate_comment(
    value: Optional[str], *, required: bool, max_length: int = 250
) -> str:
    comment = (value or "").strip()
    if not comment:
        if required:
            raise ValidationError("A comment is required to start this activity.")
        return ""
    if len(comment) > max_length:
        raise ValidationError(f"Comment must be between 1 and {max_length} characters.")
    return comment
