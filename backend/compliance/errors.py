"""Error taxonomy shared by services and controllers.

Every error carries an `ErrorKind` so callers can tell "fix your input"
(validation), "nothing there" (not_found), "the numbers are broken"
(numeric_integrity), "someone else wrote first" (conflict), "not yours"
(forbidden) and "try again later" (transient) apart without parsing
messages. All errors subclass `ValueError` so existing `except ValueError`
handlers keep working.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NUMERIC_INTEGRITY = "numeric_integrity"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    TRANSIENT = "transient"


class AssessmentError(ValueError):
    """Base class for domain errors raised by the compliance services."""
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def as_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value}


class QuestionNotFound(AssessmentError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, question_id):
        super().__init__(f"Question not found: {question_id}")
        self.question_id = question_id


class InvalidOption(AssessmentError):
    kind = ErrorKind.VALIDATION

    def __init__(self, label, question_id=None):
        super().__init__(f"Invalid option selected: {label}")
        self.label = label
        self.question_id = question_id


class AttemptLimitReached(AssessmentError):
    kind = ErrorKind.VALIDATION

    def __init__(self, limit: int):
        super().__init__(f"Maximum assessment attempts ({limit}) reached")
        self.limit = limit


class InvalidQuestion(AssessmentError):
    kind = ErrorKind.VALIDATION


class NonFiniteScore(AssessmentError):
    kind = ErrorKind.NUMERIC_INTEGRITY


class AccountNotFound(AssessmentError):
    kind = ErrorKind.NOT_FOUND


class ProgressNotFound(AssessmentError):
    kind = ErrorKind.NOT_FOUND


class ReportDataError(AssessmentError):
    kind = ErrorKind.VALIDATION


class RenderError(AssessmentError):
    kind = ErrorKind.TRANSIENT


class RenderTimeout(RenderError):
    pass


class ConcurrentUpdateError(AssessmentError):
    kind = ErrorKind.CONFLICT


class AccessDenied(AssessmentError):
    kind = ErrorKind.FORBIDDEN
