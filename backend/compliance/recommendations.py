"""Derive improvement suggestions from a category snapshot."""

from typing import List, Mapping

from .schemas import Recommendation
from . import thresholds


def generate_recommendations(snapshot: Mapping[str, float]) -> List[Recommendation]:
    """Return one recommendation per category scoring below the threshold.

    Recommendations follow the iteration order of `snapshot`. An empty
    list means every category met the threshold.
    """
    out = []
    for category, score in snapshot.items():
        if score >= thresholds.RECOMMENDATION_THRESHOLD:
            continue
        out.append(Recommendation(
            category=category,
            issue=f"Low score in {category}",
            description=(
                f"Your score of {score:.2f}% in {category} is below the "
                f"recommended threshold of {thresholds.RECOMMENDATION_THRESHOLD:.0f}%."
            ),
            action=f"Review {category} best practices and implement stronger measures.",
            priority=thresholds.priority_for(score),
        ))
    return out
