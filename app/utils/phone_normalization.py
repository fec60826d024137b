"""
Phone normalization utilities for WhatsApp template delivery.

The WhatsApp Cloud API expects Mexican mobile numbers as 521 + 10 digits.
Customers and staff type numbers in every imaginable shape, so normalization
is total: anything it does not recognize is forwarded unchanged and the
provider's rejection is handled at the dispatch boundary.
"""

import re
from typing import Iterable, Optional


COUNTRY_CODE = "52"
MOBILE_INDICATOR = "1"
NATIONAL_MOBILE_PREFIX = COUNTRY_CODE + MOBILE_INDICATOR

_NON_DIGITS = re.compile(r"\D")


def digits_only(raw: Optional[str]) -> str:
    """Strip everything except digits."""
    if not raw:
        return ""
    return _NON_DIGITS.sub("", str(raw))


def normalize_phone(raw: Optional[str]) -> str:
    """
    Convert a raw phone string into the provider's international format.

    Examples:
        >>> normalize_phone("55 1234 5678")
        '5215512345678'
        >>> normalize_phone("+52 55 1234 5678")
        '5215512345678'
        >>> normalize_phone("5215512345678")
        '5215512345678'
        >>> normalize_phone("+1 (415) 555-0100")
        '14155550100'
    """
    digits = digits_only(raw)

    if len(digits) == 10:
        return NATIONAL_MOBILE_PREFIX + digits

    if len(digits) == 12 and digits.startswith(COUNTRY_CODE):
        return NATIONAL_MOBILE_PREFIX + digits[len(COUNTRY_CODE):]

    return digits


def collect_alert_phones(*sources: Iterable[Optional[str]]) -> list[str]:
    """
    Normalize and deduplicate phones from several lists, keeping first-seen order.

    Two inputs that normalize to the same number ("5512345678" and
    "+52 55 1234 5678") produce a single destination.
    """
    seen: set[str] = set()
    phones: list[str] = []

    for source in sources:
        for raw in source or []:
            phone = normalize_phone(raw)
            if not phone or phone in seen:
                continue
            seen.add(phone)
            phones.append(phone)

    return phones
