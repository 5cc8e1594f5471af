"""Confirmation code generation."""

import random
import string
from collections.abc import Callable

import structlog

from swapstation.utils.exceptions import ExhaustedError

logger = structlog.get_logger(__name__)

CODE_LETTERS = 3
CODE_DIGITS = 3


def generate_code(rng: random.Random | None = None) -> str:
    """Draw a code of three uppercase letters followed by three digits.

    Args:
        rng: Random source. Uses a ``SystemRandom`` when omitted.

    Returns:
        Code such as ``"ABC123"``.
    """
    rng = rng or random.SystemRandom()
    letters = "".join(rng.choice(string.ascii_uppercase) for _ in range(CODE_LETTERS))
    digits = "".join(rng.choice(string.digits) for _ in range(CODE_DIGITS))
    return letters + digits


def is_valid_code(code: str) -> bool:
    """Check that a string has the confirmation code shape."""
    return (
        len(code) == CODE_LETTERS + CODE_DIGITS
        and all(c in string.ascii_uppercase for c in code[:CODE_LETTERS])
        and code[CODE_LETTERS:].isdigit()
    )


def generate_unique_code(
    in_use: Callable[[str], bool],
    max_attempts: int = 10,
    rng: random.Random | None = None,
) -> str:
    """Draw codes until one is not held by an active booking.

    Args:
        in_use: Predicate telling whether an active booking holds a code.
        max_attempts: Number of draws before giving up.
        rng: Random source.

    Returns:
        An unused code.

    Raises:
        ExhaustedError: If every draw collided.
    """
    for attempt in range(1, max_attempts + 1):
        code = generate_code(rng)
        if not in_use(code):
            return code
        logger.debug("Confirmation code collision", attempt=attempt)

    logger.critical(
        "Confirmation code space exhausted",
        alert=True,
        max_attempts=max_attempts,
    )
    raise ExhaustedError(
        f"Could not generate a unique confirmation code after {max_attempts} attempts",
        details={"max_attempts": max_attempts},
    )
