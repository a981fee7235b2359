"""Cryptographically secure random strings for veiled states."""

from __future__ import annotations

import secrets

from spi_oauth.oauth.errors import GenerationError

ALPHABET = "abcdefghijklmnopqrstuvwxyz1234567890"


def generate_random_string(n: int) -> str:
    """Return `n` symbols drawn uniformly from ALPHABET.

    Raises:
        GenerationError: If the operating system's secure source fails.
        ValueError: If n is not positive.
    """
    if n <= 0:
        raise ValueError("random string length must be positive")
    try:
        return "".join(ALPHABET[secrets.randbelow(len(ALPHABET))] for _ in range(n))
    except (OSError, NotImplementedError) as e:
        raise GenerationError("not able to generate new random string") from e
