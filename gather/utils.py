"""Utility helpers for Gather."""

from __future__ import annotations

from datetime import UTC, datetime
import re
import secrets
import string
import unicodedata

_slug_invalid = re.compile(r"[^a-z0-9]+")
_suffix_alphabet = string.digits + string.ascii_lowercase


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def slugify(value: str) -> str:
    """Return a canonical slug suitable for URLs."""
    value = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    value = value.strip().lower()
    value = _slug_invalid.sub("-", value)
    value = value.strip("-")
    return value


def random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_suffix_alphabet) for _ in range(length))


def generate_slug(title: str, *, max_length: int = 40) -> str:
    """Return ``<slugified-title>-<suffix>``, e.g. ``summer-bbq-k3x9qa``.

    The title part is truncated to ``max_length`` characters; titles with no
    usable characters fall back to ``event``.
    """

    base = slugify(title)[:max_length].strip("-") or "event"
    return f"{base}-{random_suffix()}"


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
