"""Weighted scoring arithmetic.

An answer earns `option.weight / 100 * question.weight` points. Answers
are tallied per compliance category (in the order categories are first
seen) and overall; percentages are `100 * scored / weighted` and are
defined as 0 whenever nothing was weighted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable


def score_earned(option_weight: float, question_weight: float) -> float:
    return (option_weight / 100.0) * question_weight


def percentage(scored: float, weighted: float) -> float:
    """Return `100 * scored / weighted`, or 0 for an empty or non-finite tally."""
    if weighted <= 0 or not math.isfinite(scored) or not math.isfinite(weighted):
        return 0.0
    return 100.0 * scored / weighted


@dataclass
class ScoredAnswer:
    question_id: int
    question_text: str
    compliance_category: str
    selected_option: str
    option_weight: float
    question_weight: float
    score_earned: float


def score_answer(question, label: str) -> ScoredAnswer:
    """Score `label` against `question`; raises `InvalidOption` for unknown labels."""
    option = question.option_for(label)
    weight = float(question.weight)
    return ScoredAnswer(
        question_id=question.id,
        question_text=question.text,
        compliance_category=question.compliance_category or 'General',
        selected_option=option.label,
        option_weight=float(option.weight),
        question_weight=weight,
        score_earned=score_earned(float(option.weight), weight),
    )


@dataclass
class CategoryTally:
    compliance_category: str
    total_scored: float = 0.0
    total_weighted: float = 0.0
    questions_answered: int = 0

    @property
    def percentage_score(self) -> float:
        return percentage(self.total_scored, self.total_weighted)

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.total_scored) and math.isfinite(self.total_weighted)


@dataclass
class Tally:
    categories: Dict[str, CategoryTally] = field(default_factory=dict)
    total_scored: float = 0.0
    total_weighted: float = 0.0

    def add(self, answer: ScoredAnswer) -> None:
        cat = self.categories.get(answer.compliance_category)
        if cat is None:
            cat = self.categories[answer.compliance_category] = CategoryTally(answer.compliance_category)
        cat.total_scored += answer.score_earned
        cat.total_weighted += answer.question_weight
        cat.questions_answered += 1
        self.total_scored += answer.score_earned
        self.total_weighted += answer.question_weight

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.total_scored) and math.isfinite(self.total_weighted)

    @property
    def overall_percentage(self) -> float:
        return percentage(self.total_scored, self.total_weighted)


def tally_answers(answers: Iterable[ScoredAnswer]) -> Tally:
    tally = Tally()
    for answer in answers:
        tally.add(answer)
    return tally
