"""
Correlation token generation.

A correlation token is created before any remote state exists and embedded
in the dispatch inputs, so the resulting run can be re-identified later.

Token pattern:
    {prefix}-{epoch_ms}-{random_suffix}

Examples:
    - clipper-1700000000000-ab12cd
    - test-1700000004521-0k9zq1

Rule: tokens are opaque - never parsed.
"""

import secrets
import time

# base36, lowercase
ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

SUFFIX_LENGTH = 6


def generate_correlation_token(prefix: str = "clipper") -> str:
    """
    Generate a unique correlation token.

    Args:
        prefix: Leading label for the token

    Returns:
        Token string, e.g. 'clipper-1700000000000-ab12cd'
    """
    timestamp_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{timestamp_ms}-{suffix}"
