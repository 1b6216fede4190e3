import re

from atende.config import settings

_NON_DIGITS = re.compile(r"\D+")


def digits_only(number: str | None) -> str:
    return _NON_DIGITS.sub("", number or "")


def agent_key(number: str | None, size: int | None = None) -> str:
    """Trailing digits used to match a phone number regardless of country code or 9th digit."""
    digits = digits_only(number)
    size = size or settings.agent_match_digits
    return digits[-size:] if len(digits) >= size else ""


def same_number(a: str | None, b: str | None) -> bool:
    key_a = agent_key(a)
    return bool(key_a) and key_a == agent_key(b)
