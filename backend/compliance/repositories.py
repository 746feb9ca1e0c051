"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (accounts,
questions, progress records). Repositories return SQLModel objects and
perform commits/refreshes where appropriate.
"""

from datetime import datetime, timezone
from typing import List, Optional
from sqlmodel import Session, select, or_, col
from sqlalchemy import func
from . import models, errors


class AccountRepository:
    """CRUD operations for `Account` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, account: models.Account) -> models.Account:
        """Persist a new account and return the managed instance."""
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def save(self, account: models.Account) -> models.Account:
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def get_by_email(self, email: str) -> Optional[models.Account]:
        """Return an `Account` by e-mail or `None` if not found."""
        stmt = select(models.Account).where(models.Account.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def get(self, account_id: int) -> Optional[models.Account]:
        """Get an `Account` by primary key."""
        return self.session.get(models.Account, account_id)

    def list_all(self) -> List[models.Account]:
        stmt = select(models.Account).order_by(col(models.Account.created_at).desc())
        return self.session.exec(stmt).all()

    def company_exists(self, company_code: str) -> bool:
        stmt = select(models.Account.id).where(
            models.Account.company_code == company_code,
            models.Account.user_type == models.UserType.COMPANY,
        )
        return self.session.exec(stmt).first() is not None

    def list_company_members(self, company_code: str) -> List[models.Account]:
        """Employees and company admins sharing `company_code`, ordered by name."""
        stmt = select(models.Account).where(
            models.Account.company_code == company_code,
            col(models.Account.user_type).in_([models.UserType.USER, models.UserType.COMPANY]),
        ).order_by(models.Account.name)
        return self.session.exec(stmt).all()

    def delete(self, account: models.Account) -> None:
        self.session.delete(account)
        self.session.commit()


class QuestionRepository:
    """CRUD operations for `Question` and related `QuestionOption` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, question: models.Question, options: List[models.QuestionOption]) -> models.Question:
        """Create a question with its options in display order."""
        for position, option in enumerate(options):
            option.position = position
        question.options = options
        self.session.add(question)
        self.session.commit()
        self.session.refresh(question)
        return question

    def save(self, question: models.Question) -> models.Question:
        question.updated_at = datetime.now(timezone.utc)
        self.session.add(question)
        self.session.commit()
        self.session.refresh(question)
        return question

    def get(self, question_id: int) -> Optional[models.Question]:
        """Fetch a question by id."""
        return self.session.get(models.Question, question_id)

    def get_many(self, question_ids: List[int]) -> List[models.Question]:
        if not question_ids:
            return []
        stmt = select(models.Question).where(col(models.Question.id).in_(question_ids))
        return self.session.exec(stmt).all()

    def list_by_filter(
        self,
        active: Optional[bool] = None,
        audience: Optional[models.TargetAudience] = None,
        compliance_category: Optional[str] = None,
    ) -> List[models.Question]:
        """Return questions matching every provided filter.

        An `audience` filter also matches questions targeted at `both`.
        """
        stmt = select(models.Question)
        if active is not None:
            stmt = stmt.where(models.Question.active == active)
        if compliance_category:
            stmt = stmt.where(models.Question.compliance_category == compliance_category)
        if audience is not None:
            stmt = stmt.where(or_(
                models.Question.target_audience == audience,
                models.Question.target_audience == models.TargetAudience.BOTH,
            ))
        return self.session.exec(stmt.order_by(models.Question.id)).all()

    def list_recent(self) -> List[models.Question]:
        stmt = select(models.Question).order_by(
            col(models.Question.updated_at).desc(), col(models.Question.created_at).desc()
        )
        return self.session.exec(stmt).all()

    def exists_by_category_and_text(self, compliance_category: str, text: str) -> bool:
        """Return True if a question with the same category/text already exists."""
        stmt = select(models.Question.id).where(
            models.Question.compliance_category == compliance_category,
            models.Question.text == text,
        )
        return self.session.exec(stmt).first() is not None

    def is_referenced(self, question_id: int) -> bool:
        """True when any recorded answer points at the question."""
        stmt = select(func.count(models.AnswerRecord.id)).where(models.AnswerRecord.question_id == question_id)
        return (self.session.exec(stmt).one() or 0) > 0

    def delete(self, question: models.Question) -> None:
        self.session.delete(question)
        self.session.commit()


class ProgressRepository:
    """Load and store `UserProgress` aggregates.

    `save` writes the whole record back. With `check_revision` the stored
    revision must still match the one that was loaded, otherwise the
    write is refused with `ConcurrentUpdateError`; without it the last
    writer wins.
    """
    def __init__(self, session: Session):
        self.session = session

    def get_by_user(self, user_id: int) -> Optional[models.UserProgress]:
        stmt = select(models.UserProgress).where(models.UserProgress.user_id == user_id)
        return self.session.exec(stmt).first()

    def get_or_create(self, account: models.Account) -> models.UserProgress:
        """Return the account's progress record, creating (unsaved) if absent."""
        progress = self.get_by_user(account.id)
        if progress is None:
            progress = models.UserProgress(
                user_id=account.id,
                name=account.name or 'Default User',
                email=account.email or f"{account.id}@example.com",
                company_code=account.company_code,
                last_activity=datetime.now(timezone.utc),
            )
            self.session.add(progress)
        return progress

    def list_for_users(self, user_ids: List[int]) -> List[models.UserProgress]:
        if not user_ids:
            return []
        stmt = select(models.UserProgress).where(col(models.UserProgress.user_id).in_(user_ids))
        return self.session.exec(stmt).all()

    def stored_revision(self, progress_id: int) -> Optional[int]:
        with self.session.no_autoflush:
            stmt = select(models.UserProgress.revision).where(models.UserProgress.id == progress_id)
            return self.session.exec(stmt).first()

    def save(self, progress: models.UserProgress, check_revision: bool = False) -> models.UserProgress:
        if check_revision and progress.id is not None:
            stored = self.stored_revision(progress.id)
            if stored is not None and stored != progress.revision:
                loaded = progress.revision
                self.session.rollback()
                raise errors.ConcurrentUpdateError(
                    f"progress record changed concurrently (loaded revision {loaded}, stored {stored})"
                )
        progress.revision = (progress.revision or 0) + 1
        progress.last_activity = datetime.now(timezone.utc)
        self.session.add(progress)
        self.session.commit()
        self.session.refresh(progress)
        return progress
