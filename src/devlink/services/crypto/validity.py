"""Freshness check for stored device certificates."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from cryptography import x509

__all__ = ["FRESHNESS_MARGIN", "is_valid_certificate", "seconds_until_expiry"]

# certificates closer than this to expiry are re-requested
FRESHNESS_MARGIN = timedelta(days=7)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load(pem: bytes | str | None) -> x509.Certificate | None:
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    if not isinstance(pem, (bytes, bytearray)):
        return None
    try:
        return x509.load_pem_x509_certificate(bytes(pem))
    except ValueError:
        return None


def seconds_until_expiry(pem: bytes | str | None, *, now: datetime | None = None) -> float | None:
    """Return the seconds left before ``not_after``, or ``None`` if ``pem`` does not decode."""

    cert = _load(pem)
    if cert is None:
        return None
    not_after = cert.not_valid_after_utc
    return (not_after - (now or _now())).total_seconds()


def is_valid_certificate(
    pem: bytes | str | None,
    *,
    now: datetime | None = None,
    margin: timedelta = FRESHNESS_MARGIN,
) -> bool:
    """Whether the certificate decodes and outlives ``margin``.

    An undecodable certificate is reported as invalid rather than raising.
    """

    remaining = seconds_until_expiry(pem, now=now)
    if remaining is None:
        return False
    return remaining > margin.total_seconds()
