"""Random string generation over the RFC 3986 unreserved alphabet."""

from __future__ import annotations

import logging
import random
import secrets
import string

logger = logging.getLogger(__name__)

UNRESERVED_ALPHABET = string.ascii_letters + string.digits + "-._~"


def _system_rng() -> random.Random:
    try:
        rng = secrets.SystemRandom()
        rng.random()
        return rng
    except NotImplementedError:
        # Portability fallback for platforms without an OS entropy source.
        logger.warning(
            "No cryptographically secure random source available, "
            "falling back to a non-secure PRNG"
        )
        return random.Random()


def random_string(
    min_length: int,
    max_length: int | None = None,
    alphabet: str = UNRESERVED_ALPHABET,
) -> str:
    """Generate a random string with a length drawn from [min_length, max_length].

    Args:
        min_length: Shortest allowed length
        max_length: Longest allowed length, defaults to min_length
        alphabet: Characters to draw from

    Returns:
        Random string over the alphabet
    """
    if max_length is None:
        max_length = min_length
    if min_length < 1 or max_length < min_length:
        raise ValueError(f"Invalid length range [{min_length}, {max_length}]")

    rng = _system_rng()
    length = rng.randint(min_length, max_length)
    return "".join(rng.choice(alphabet) for _ in range(length))
