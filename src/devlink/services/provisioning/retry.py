"""Retry delay strategies for failed provisioning steps."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from .enums import Action

__all__ = ["RetryPolicy", "FixedDelay", "ExponentialBackoff", "policy_from_settings"]


class RetryPolicy(Protocol):
    def delay(self, action: Action, attempt: int) -> float:
        """Seconds to wait before retrying ``action`` after failed ``attempt`` (1-based)."""
        ...


@dataclass(frozen=True, slots=True)
class FixedDelay:
    # local storage recovers quickly; the pairing service is given longer
    keypair: float = 5.0
    certificate: float = 30.0
    info: float = 30.0

    def delay(self, action: Action, attempt: int) -> float:
        if action is Action.GENERATE_KEYPAIR:
            return self.keypair
        if action is Action.REQUEST_CERTIFICATE:
            return self.certificate
        if action is Action.REQUEST_INFO:
            return self.info
        raise ValueError(f"no retry delay for action {action}")


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    base: FixedDelay = field(default_factory=FixedDelay)
    factor: float = 2.0
    max_delay: float = 300.0

    def delay(self, action: Action, attempt: int) -> float:
        exponent = max(0, attempt - 1)
        return min(self.base.delay(action, attempt) * (self.factor**exponent), self.max_delay)


def policy_from_settings(settings) -> RetryPolicy:
    fixed = FixedDelay(
        keypair=float(settings.keypair_retry_delay),
        certificate=float(settings.certificate_retry_delay),
        info=float(settings.info_retry_delay),
    )
    if settings.backoff == "exponential":
        return ExponentialBackoff(base=fixed, max_delay=float(settings.max_backoff_delay))
    return fixed
