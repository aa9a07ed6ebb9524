# Copyright (c) Syntropy Systems
"""Small statistics helpers for comparing variant funnels.

These are documented approximations meant for directional comparison of
browser-automation runs, not publication-grade inference.
"""
from __future__ import annotations

import math
from statistics import NormalDist

from abfunnel.models.report import ConfidenceInterval, SignificanceResult

Z_SCORES = {0.95: 1.96, 0.99: 2.576}

# Legacy constants for alpha=0.05 (two-sided) and power=0.8
LEGACY_Z_ALPHA = 1.96
LEGACY_Z_BETA = 0.84

DEFAULT_SIGNIFICANCE = 0.05

# Abramowitz & Stegun 26.2.17
_CDF_P = 0.2316419
_CDF_B = (0.3193815, -0.3565638, 1.781478, -1.821256, 1.330274)
_CDF_NORM = 0.3989423


def normal_cdf(x: float) -> float:
    """Polynomial approximation of the standard normal CDF."""
    t = 1 / (1 + _CDF_P * abs(x))
    d = _CDF_NORM * math.exp(-x * x / 2)
    b1, b2, b3, b4, b5 = _CDF_B
    prob = d * t * (b1 + t * (b2 + t * (b3 + t * (b4 + t * b5))))
    return 1 - prob if x > 0 else prob


def confidence_interval(
    success_count: int,
    total_count: int,
    confidence_level: float = 0.95,
) -> ConfidenceInterval:
    """Normal-approximation interval for a binomial proportion.

    Bounds are clamped to [0, 1]; ``margin`` is half the clamped width so
    ``upper - lower == 2 * margin`` always holds.

    Args:
        success_count: Number of successes
        total_count: Number of trials
        confidence_level: 0.95 or 0.99

    Returns:
        The interval, or all zeros when total_count is 0

    """
    z = Z_SCORES.get(confidence_level)
    if z is None:
        msg = f"Unsupported confidence level: {confidence_level} (use 0.95 or 0.99)"
        raise ValueError(msg)

    if total_count <= 0:
        return ConfidenceInterval()

    p = success_count / total_count
    half_width = z * math.sqrt(max(p * (1 - p), 0.0) / total_count)
    lower = min(max(0.0, p - half_width), 1.0)
    upper = max(min(1.0, p + half_width), lower)

    return ConfidenceInterval(lower=lower, upper=upper, margin=(upper - lower) / 2)


def chi_square_test(
    control_success: int,
    control_total: int,
    variant_success: int,
    variant_total: int,
    alpha: float = DEFAULT_SIGNIFICANCE,
    *,
    pearson: bool = False,
) -> SignificanceResult:
    """Chi-square comparison of two conversion rates (1 df).

    By default only the two success cells of the 2x2 table are compared
    with their pooled expected counts, which is the statistic the existing
    reports were built on. ``pearson=True`` sums all four cells (the
    textbook Pearson statistic, roughly twice as large on small funnels).

    The p-value is approximated as ``1 - Phi(sqrt(chi2))`` using the
    polynomial normal CDF. Tables with a zero expected count in a summed
    cell, or counts out of range, report p=1.0.
    """
    n = control_total + variant_total
    successes = control_success + variant_success
    failures = n - successes

    if (
        not 0 <= control_success <= control_total
        or not 0 <= variant_success <= variant_total
        or control_total <= 0
        or variant_total <= 0
        or successes <= 0
        or (pearson and failures <= 0)
    ):
        return SignificanceResult(p_value=1.0, significant=False)

    # (observed, row total, column total)
    cells = [
        (control_success, control_total, successes),
        (variant_success, variant_total, successes),
    ]
    if pearson:
        cells += [
            (control_total - control_success, control_total, failures),
            (variant_total - variant_success, variant_total, failures),
        ]

    chi_square = 0.0
    for observed, row_total, col_total in cells:
        expected = row_total * col_total / n
        chi_square += (observed - expected) ** 2 / expected

    p_value = 1 - normal_cdf(math.sqrt(chi_square))
    return SignificanceResult(p_value=p_value, significant=p_value < alpha)


def calculate_uplift(control_rate: float, variant_rate: float) -> float:
    """Relative change of variant over control, in percent.

    A zero control rate returns 0 rather than an infinite uplift.
    """
    if control_rate == 0:
        return 0.0
    return (variant_rate - control_rate) / control_rate * 100


def required_sample_size(
    baseline_rate: float,
    mde: float,
    alpha: float = 0.05,
    power: float = 0.8,
    *,
    fixed_z: bool = False,
) -> int:
    """Per-variant sample size for a two-proportion test.

    Args:
        baseline_rate: Control conversion rate, in (0, 1)
        mde: Minimum detectable effect, relative (0.1 for +10%)
        alpha: Two-sided significance level
        power: Desired statistical power
        fixed_z: Use the legacy 1.96/0.84 constants and ignore alpha/power

    Returns:
        Number of samples needed in each group

    """
    if not 0 < baseline_rate < 1:
        msg = f"baseline_rate must be in (0, 1), got {baseline_rate}"
        raise ValueError(msg)
    if mde <= 0:
        msg = f"mde must be positive, got {mde}"
        raise ValueError(msg)

    if fixed_z:
        z_alpha, z_beta = LEGACY_Z_ALPHA, LEGACY_Z_BETA
    else:
        if not 0 < alpha < 1 or not 0 < power < 1:
            msg = "alpha and power must be in (0, 1)"
            raise ValueError(msg)
        dist = NormalDist()
        z_alpha = dist.inv_cdf(1 - alpha / 2)
        z_beta = dist.inv_cdf(power)

    p1 = baseline_rate
    p2 = baseline_rate * (1 + mde)
    if p2 >= 1:
        msg = f"baseline_rate * (1 + mde) must stay below 1, got {p2}"
        raise ValueError(msg)
    p_avg = (p1 + p2) / 2

    n = (z_alpha + z_beta) ** 2 * 2 * p_avg * (1 - p_avg) / (p2 - p1) ** 2
    return max(1, math.ceil(n))
