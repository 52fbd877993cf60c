from dataclasses import dataclass
from typing import Optional

SKIP = "skip"
TRUNCATE = "truncate"
TRY = "try"

LENGTH_POLICIES = (SKIP, TRUNCATE, TRY)

PROCEED = "proceed"


@dataclass(frozen=True)
class LengthDecision:
    """Outcome of checking a replacement against a column's declared length.

    action is one of "proceed", "skip" or "truncate"; text is what to write
    (None when skipping).
    """
    action: str
    text: Optional[str]
    original_length: int = 0
    max_length: Optional[int] = None

    @property
    def oversized(self) -> bool:
        return self.max_length is not None and self.original_length > self.max_length


def validate_policy(mode: str) -> str:
    """Return the normalised policy name or raise ValueError."""
    normalised = (mode or "").strip().lower()
    if normalised not in LENGTH_POLICIES:
        raise ValueError(f"Unknown length policy '{mode}'. Expected one of: {', '.join(LENGTH_POLICIES)}")
    return normalised


def decide(replacement: str, max_length: Optional[int], mode: str = SKIP) -> LengthDecision:
    """Decide what to do with a replacement that may not fit in a column.

    Unbounded columns always proceed. Oversized text is skipped, truncated to
    exactly max_length characters, or passed through unchanged for "try" so
    the database gets to reject it.
    """
    mode = validate_policy(mode)
    length = len(replacement)

    if max_length is None or length <= max_length:
        return LengthDecision(PROCEED, replacement, length, max_length)

    if mode == SKIP:
        return LengthDecision(SKIP, None, length, max_length)
    if mode == TRUNCATE:
        # Slicing a str counts code points, so multi-byte characters are never split
        return LengthDecision(TRUNCATE, replacement[:max_length], length, max_length)
    return LengthDecision(PROCEED, replacement, length, max_length)
