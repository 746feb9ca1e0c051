"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Accounts hold login and permission data, questions carry their ordered
answer options, and each account owns a single progress record that
aggregates every answer, category score and submission summary.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON
from datetime import datetime, timezone
from enum import Enum
from typing import List

from .errors import InvalidOption


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_notifications() -> dict:
    return {"email": True, "assessment": True, "achievements": True, "security": True}


def default_privacy() -> dict:
    return {"show_on_leaderboard": True, "share_progress": False, "public_profile": False}


class UserType(str, Enum):
    USER = "user"
    COMPANY = "company"
    ADMIN = "admin"


class TargetAudience(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    BOTH = "both"


class Account(SQLModel, table=True):
    """A registered login.

    Fields:
    - `email`: unique login name, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    - `company_code`: shared code linking employees to their company
    - `can_*`: permission flags derived from `user_type` at creation
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    user_type: UserType = Field(default=UserType.USER, index=True)
    name: str
    phone: Optional[str] = None
    company_name: Optional[str] = None
    department: Optional[str] = None
    company_code: Optional[str] = Field(default=None, index=True)
    is_active: bool = True
    can_create_questions: bool = False
    can_view_all_users: bool = False
    can_manage_company: bool = False
    can_access_analytics: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    last_login: Optional[datetime] = None

    @property
    def audience(self) -> TargetAudience:
        if self.user_type == UserType.COMPANY:
            return TargetAudience.COMPANY
        return TargetAudience.INDIVIDUAL


class Question(SQLModel, table=True):
    """A weighted multiple-choice question belonging to a compliance category."""
    id: Optional[int] = Field(default=None, primary_key=True)
    text: str
    compliance_category: str = Field(index=True)
    weight: float
    target_audience: TargetAudience = Field(default=TargetAudience.INDIVIDUAL, index=True)
    active: bool = Field(default=True, index=True)
    responses: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    options: List['QuestionOption'] = Relationship(
        back_populates='question',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'QuestionOption.position'},
    )

    def option_for(self, label: str) -> 'QuestionOption':
        """Return the option carrying `label` or raise `InvalidOption`."""
        for option in self.options:
            if option.label == label:
                return option
        raise InvalidOption(label, self.id)

    @property
    def option_labels(self) -> List[str]:
        return [o.label for o in self.options]


class QuestionOption(SQLModel, table=True):
    """An answer choice; `weight` is the percentage of the question weight it earns."""
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: Optional[int] = Field(default=None, foreign_key='question.id', index=True)
    position: int = 0
    label: str
    text: str
    weight: float
    question: Optional[Question] = Relationship(back_populates='options')


_CHILD_KWARGS = {'cascade': 'all, delete-orphan'}


class UserProgress(SQLModel, table=True):
    """The assessment record of one account across all of its attempts.

    `total_score`, `total_possible_score` and `overall_percentage` mirror
    the most recent submission. `revision` increases on every save.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='account.id', index=True, unique=True)
    name: str = 'Default User'
    email: str = ''
    company_code: Optional[str] = Field(default=None, index=True)
    assessment_attempts: int = 0
    total_score: float = 0.0
    total_possible_score: float = 0.0
    overall_percentage: float = 0.0
    revision: int = 0
    notifications: dict = Field(default_factory=default_notifications, sa_column=Column(JSON))
    privacy: dict = Field(default_factory=default_privacy, sa_column=Column(JSON))
    last_activity: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    question_history: List['AnswerRecord'] = Relationship(
        back_populates='progress',
        sa_relationship_kwargs={**_CHILD_KWARGS, 'order_by': 'AnswerRecord.id'},
    )
    category_scores: List['CategoryScore'] = Relationship(
        back_populates='progress',
        sa_relationship_kwargs={**_CHILD_KWARGS, 'order_by': 'CategoryScore.id'},
    )
    assessment_history: List['AttemptSummary'] = Relationship(
        back_populates='progress',
        sa_relationship_kwargs={**_CHILD_KWARGS, 'order_by': 'AttemptSummary.id'},
    )


class AnswerRecord(SQLModel, table=True):
    """A single answer given during an attempt.

    The question text and category are copied at answer time so history
    survives later edits of the question.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    progress_id: Optional[int] = Field(default=None, foreign_key='userprogress.id', index=True)
    question_id: int = Field(index=True)
    question_text: str = ''
    compliance_category: str = ''
    selected_option: str
    option_weight: float
    score_earned: float
    question_weight: float
    attempt_number: int
    answered_at: datetime = Field(default_factory=_utcnow)
    progress: Optional[UserProgress] = Relationship(back_populates='question_history')


class CategoryScore(SQLModel, table=True):
    """Per-category totals of one attempt."""
    id: Optional[int] = Field(default=None, primary_key=True)
    progress_id: Optional[int] = Field(default=None, foreign_key='userprogress.id', index=True)
    compliance_category: str
    total_scored: float = 0.0
    total_weighted: float = 0.0
    percentage_score: float = 0.0
    questions_answered: int = 0
    attempt_number: int
    last_activity: datetime = Field(default_factory=_utcnow)
    progress: Optional[UserProgress] = Relationship(back_populates='category_scores')


class AttemptSummary(SQLModel, table=True):
    """One row per completed submission."""
    id: Optional[int] = Field(default=None, primary_key=True)
    progress_id: Optional[int] = Field(default=None, foreign_key='userprogress.id', index=True)
    attempt_number: int
    overall_percentage: float
    completed_at: datetime = Field(default_factory=_utcnow)
    user_name: Optional[str] = None
    progress: Optional[UserProgress] = Relationship(back_populates='assessment_history')
