"""Phone number normalization to an E.164-like ``+<digits>`` form."""
import re
from collections.abc import Iterable

_NON_DIALABLE = re.compile(r"[^\d+]")
_NON_DIGIT = re.compile(r"\D")


def extract_digits(value: str | None) -> str:
    return _NON_DIGIT.sub("", value or "")


def normalize(value: str | None) -> str | None:
    """Return ``+<digits>`` or None when the value is not a plausible number.

    Ten-digit numbers are treated as North American and get a ``+1`` prefix.
    """
    if not value or not value.strip():
        return None
    cleaned = _NON_DIALABLE.sub("", value.strip())
    if cleaned.startswith("+"):
        digits = extract_digits(cleaned)
        return f"+{digits}" if 8 <= len(digits) <= 15 else None

    digits = cleaned.replace("+", "").lstrip("0")
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    if 8 <= len(digits) <= 15:
        return f"+{digits}"
    return None


def normalize_many(values: Iterable[str] | None) -> list[str]:
    """Normalize, drop invalid entries and de-duplicate, keeping order."""
    result: list[str] = []
    for value in values or ():
        normalized = normalize(value)
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def matches(stored: str | None, search: str | None) -> bool:
    """Loose match: either digit string contains the other."""
    stored_digits = extract_digits(stored)
    search_digits = extract_digits(search)
    if not stored_digits or not search_digits:
        return False
    return search_digits in stored_digits or stored_digits in search_digits
