"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Question schemas reject malformed option
lists at the boundary so the scoring code only ever sees well-formed
questions.
"""

from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional

from .models import TargetAudience, UserType
from . import thresholds


class RegisterIn(BaseModel):
    """Payload for the self-service registration endpoint."""
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    user_type: UserType = UserType.USER
    company_code: Optional[str] = None
    company_name: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None


class AdminRegisterIn(RegisterIn):
    """Registration payload for administrators, gated by a shared key."""
    admin_key: str


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    user_type: UserType


class OptionIn(BaseModel):
    """A single answer choice of a question."""
    label: str = Field(min_length=1, max_length=8)
    text: str = Field(min_length=1)
    weight: float = Field(ge=0, le=100, allow_inf_nan=False)


class QuestionIn(BaseModel):
    """Request format for creating or replacing a question."""
    text: str = Field(min_length=1)
    compliance_category: str = Field(min_length=1)
    weight: float = Field(gt=0, allow_inf_nan=False)
    target_audience: TargetAudience = TargetAudience.INDIVIDUAL
    active: bool = True
    options: List[OptionIn] = Field(min_length=2)

    @field_validator('options')
    @classmethod
    def _unique_labels(cls, options: List[OptionIn]) -> List[OptionIn]:
        labels = [o.label for o in options]
        if len(set(labels)) != len(labels):
            raise ValueError('option labels must be unique')
        return options


class SaveAnswerIn(BaseModel):
    """Payload for recording a single answer."""
    question_id: int
    selected_option: str = Field(min_length=1)
    attempt_number: int = Field(ge=1)


class SubmitAssessmentIn(BaseModel):
    """Payload for submitting a whole attempt.

    `answers` maps question id to selected option label. Keys are kept
    as strings so unresolvable ids reach the recorder and are reported
    back as skipped rather than failing validation.
    """
    answers: Dict[str, str]
    attempt_number: int = Field(ge=1)
    name: Optional[str] = None


class SendReportIn(BaseModel):
    recipient_email: str = Field(min_length=3)
    recipient_name: str = Field(min_length=1)
    test_name: str = 'Security Assessment'


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    notifications: Optional[Dict[str, bool]] = None
    privacy: Optional[Dict[str, bool]] = None


class AccountUpdateIn(BaseModel):
    """Admin-side account update; only provided fields are applied."""
    name: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    department: Optional[str] = None
    user_type: Optional[UserType] = None
    is_active: Optional[bool] = None


class EmployeeStatusIn(BaseModel):
    is_active: bool


class Recommendation(BaseModel):
    """An improvement suggestion for a category below the threshold."""
    category: str
    issue: str
    description: str
    action: str
    priority: str


class AttemptRow(BaseModel):
    """One history row of the report with its change versus the previous row."""
    attempt_number: int
    overall_percentage: float
    completed_at: Optional[datetime] = None
    user_name: Optional[str] = None
    change: float = 0.0


class ReportData(BaseModel):
    """Everything the report renderer needs; only `overall_score` is mandatory."""
    user_name: str = 'Default User'
    email: str = ''
    overall_score: float
    previous_score: float = 0.0
    score_change: float = 0.0
    last_assessment: str = 'No assessments yet'
    total_assessments: int = 0
    attempts: List[AttemptRow] = Field(default_factory=list)
    category_scores: Dict[str, float] = Field(default_factory=dict)
    recommendations: List[Recommendation] = Field(default_factory=list)
    benchmarks: Dict[str, float] = Field(default_factory=lambda: dict(thresholds.BENCHMARKS))
    join_date: Optional[str] = None
    rank: str = thresholds.DEFAULT_RANK
    achievements: int = 0
