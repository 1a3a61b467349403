"""
Time-based freshness policy for cached responses.
"""

from datetime import timedelta

DEFAULT_TTL = timedelta(minutes=5)


def is_fresh(age: timedelta, ttl: timedelta = DEFAULT_TTL) -> bool:
    """An entry is usable while strictly younger than the TTL."""
    return age < ttl
