import re
from datetime import UTC, datetime

TRAILING_DIGITS_RE = re.compile(r"(.*?)([0-9]+)", re.DOTALL)
DIGITS_RE = re.compile(r"[0-9]+")


def now() -> datetime:
    return datetime.now(UTC)


def split_numeric_suffix(value: str, separator: str | None = None) -> tuple[str, str]:
    """Split a string id into (prefix, numeric suffix).

    With a separator the suffix is everything after its last occurrence and the
    prefix keeps the separator. Without one (or when the separator is absent
    from the value) the suffix is the trailing run of digits.

    Raises:
        ValueError: If there is no numeric suffix to increment
    """
    if separator and separator in value:
        head, sep, suffix = value.rpartition(separator)
        if not DIGITS_RE.fullmatch(suffix):
            raise ValueError(f"Segment after last {separator!r} in {value!r} is not numeric")
        return head + sep, suffix

    match = TRAILING_DIGITS_RE.fullmatch(value)
    if match is None:
        raise ValueError(f"{value!r} has no numeric suffix")
    return match.group(1), match.group(2)
