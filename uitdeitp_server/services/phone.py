# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Romanian phone number normalization (canonical form +40XXXXXXXXX)."""

import re

from uitdeitp_server.errors import ValidationError

COUNTRY_CODE = "40"
SUBSCRIBER_DIGITS = 9
CANONICAL_RE = re.compile(r"^\+40\d{9}$", re.ASCII)

_NON_DIGITS = re.compile(r"\D", re.ASCII)


def normalize_phone(raw: str) -> str:
    """
    Canonicalize a Romanian phone number.

    "0712 345 678", "712345678", "40712345678" and "+40 712-345-678"
    all become "+40712345678". Raises ValidationError otherwise.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) == SUBSCRIBER_DIGITS + 2 and digits.startswith(COUNTRY_CODE):
        subscriber = digits[2:]
    elif len(digits) == SUBSCRIBER_DIGITS + 1 and digits.startswith("0"):
        subscriber = digits[1:]
    elif len(digits) == SUBSCRIBER_DIGITS:
        subscriber = digits
    else:
        raise ValidationError("Invalid phone number (format: +40XXXXXXXXX).")
    return f"+{COUNTRY_CODE}{subscriber}"


def is_valid_phone(raw: str) -> bool:
    try:
        return bool(CANONICAL_RE.match(normalize_phone(raw)))
    except ValidationError:
        return False


def display_phone(phone: str) -> str:
    """Format for humans: +40712345678 -> 0712 345 678. Unparseable input is returned as-is."""
    try:
        subscriber = normalize_phone(phone)[3:]
    except ValidationError:
        return phone
    return f"0{subscriber[:3]} {subscriber[3:6]} {subscriber[6:]}"


def mask_phone(phone: str) -> str:
    """Mask the middle digits for log lines: +40712345678 -> +40712***678."""
    if len(phone) < 9:
        return "***"
    return f"{phone[:6]}***{phone[-3:]}"
