"""Fixed scoring and reporting reference points.

These values are product constants rather than deployment settings: the
recommendation bands, risk styling, benchmark figures and framework
checklist are the same for every installation. Every consumer reads
them from here.
"""

from typing import NamedTuple, Sequence, Tuple

# Categories scoring below this get a recommendation.
RECOMMENDATION_THRESHOLD = 80.0

# (upper bound exclusive, priority) checked in order.
PRIORITY_BANDS: Tuple[Tuple[float, str], ...] = (
    (40.0, "High"),
    (60.0, "Medium"),
    (RECOMMENDATION_THRESHOLD, "Low"),
)

# (lower bound inclusive, risk level) checked in order; anything lower is "high".
RISK_BANDS: Tuple[Tuple[float, str], ...] = (
    (80.0, "low"),
    (60.0, "medium"),
)
DEFAULT_RISK = "high"

BENCHMARKS = {
    "industry": 75.0,
    "peers": 68.0,
    "top_performers": 92.0,
}

BENCHMARK_LABELS = {
    "industry": "Industry Average",
    "peers": "Similar Users",
    "top_performers": "Top Performers",
}


class Framework(NamedTuple):
    name: str
    threshold: float
    met_status: str
    unmet_status: str


COMPLIANCE_FRAMEWORKS: Sequence[Framework] = (
    Framework("NIST Framework", 80.0, "Compliant", "Partial"),
    Framework("ISO 27001", 85.0, "Compliant", "Non-Compliant"),
    Framework("GDPR", 75.0, "Compliant", "Partial"),
    Framework("SOC 2", 70.0, "Partial", "Non-Compliant"),
)

RANK_BANDS: Tuple[Tuple[float, str], ...] = (
    (90.0, "Gold"),
    (70.0, "Silver"),
)
DEFAULT_RANK = "Bronze"

# Company dashboards.
EMPLOYEE_STATUS_BANDS: Tuple[Tuple[float, str], ...] = (
    (85.0, "compliant"),
    (70.0, "needs-attention"),
)
DEFAULT_EMPLOYEE_STATUS = "at-risk"
NOT_ASSESSED = "not-assessed"
WEAK_AREA_THRESHOLD = 70.0
WEAK_AREA_LIMIT = 3
LEADERBOARD_SIZE = 10


def _band(score: float, bands, default: str) -> str:
    for lower, label in bands:
        if score >= lower:
            return label
    return default


def priority_for(score: float) -> str:
    """Return the recommendation priority for a category score below the threshold."""
    for upper, label in PRIORITY_BANDS:
        if score < upper:
            return label
    raise ValueError(f"score {score} does not need a recommendation")


def risk_level(score: float) -> str:
    return _band(score, RISK_BANDS, DEFAULT_RISK)


def rank_for(score: float) -> str:
    return _band(score, RANK_BANDS, DEFAULT_RANK)


def employee_status(score: float) -> str:
    return _band(score, EMPLOYEE_STATUS_BANDS, DEFAULT_EMPLOYEE_STATUS)


def framework_statuses(score: float):
    """Return `[(framework name, status)]` for the overall score."""
    return [
        (f.name, f.met_status if score >= f.threshold else f.unmet_status)
        for f in COMPLIANCE_FRAMEWORKS
    ]
