"""
Freshness Validator

A decoded read is only accepted if it is at most threshold_s old when
it reaches the validator.
"""

from dataclasses import dataclass

from common.constants import FRESHNESS_THRESHOLD_S


@dataclass(frozen=True)
class FreshnessVerdict:
    accepted: bool
    age_s: float


def validate(captured_at: float, now: float,
             threshold_s: float = FRESHNESS_THRESHOLD_S) -> FreshnessVerdict:
    """
    Judge whether a read captured at captured_at is still fresh at now.

    The boundary is inclusive. A capture time in the future (clock skew)
    counts as age zero.

    Raises:
        ValueError: If threshold_s is negative
    """
    if threshold_s < 0:
        raise ValueError(f"Freshness threshold must be non-negative, got {threshold_s}")

    age_s = max(0.0, now - captured_at)
    return FreshnessVerdict(accepted=age_s <= threshold_s, age_s=age_s)
