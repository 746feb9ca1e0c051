"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
scoring and auxiliary logic. Services are intentionally thin: they
perform validation, execute domain logic and persist aggregates via
repositories. Domain failures are raised as `errors.AssessmentError`
subclasses; controllers translate them into HTTP responses.
"""

from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
import jwt
import logging
import secrets
from typing import Dict, List, Optional
from . import models, repositories, errors, reporting, scoring, thresholds
from .config import settings
from .schemas import QuestionIn, ReportData
from sqlmodel import Session
from .utils.parsers import parse_file_to_questions

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

logger = logging.getLogger("compliance.scoring")

_PERMISSIONS = {
    models.UserType.USER: {},
    models.UserType.COMPANY: {"can_manage_company": True, "can_access_analytics": True},
    models.UserType.ADMIN: {
        "can_create_questions": True,
        "can_view_all_users": True,
        "can_access_analytics": True,
    },
}


def apply_permissions(account: models.Account) -> None:
    """Reset the permission flags to the defaults of the account's type."""
    account.can_create_questions = False
    account.can_view_all_users = False
    account.can_manage_company = False
    account.can_access_analytics = False
    for flag, value in _PERMISSIONS[account.user_type].items():
        setattr(account, flag, value)


def account_out(account: models.Account) -> dict:
    return {
        'id': account.id,
        'email': account.email,
        'user_type': account.user_type.value,
        'name': account.name,
        'phone': account.phone,
        'company_name': account.company_name,
        'department': account.department,
        'company_code': account.company_code,
        'is_active': account.is_active,
        'permissions': {
            'can_create_questions': account.can_create_questions,
            'can_view_all_users': account.can_view_all_users,
            'can_manage_company': account.can_manage_company,
            'can_access_analytics': account.can_access_analytics,
        },
        'created_at': account.created_at,
        'last_login': account.last_login,
    }


def question_out(q: models.Question, include_weights: bool = True) -> dict:
    return {
        'id': q.id,
        'text': q.text,
        'compliance_category': q.compliance_category,
        'weight': q.weight,
        'target_audience': q.target_audience.value,
        'active': q.active,
        'responses': q.responses,
        'options': [
            {'label': o.label, 'text': o.text, **({'weight': o.weight} if include_weights else {})}
            for o in q.options
        ],
    }


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.account_repo = repositories.AccountRepository(session)

    def register(self, email: str, password: str, name: str, user_type: models.UserType = models.UserType.USER,
                 company_code: Optional[str] = None, **profile) -> models.Account:
        """Create a new account with a hashed password.

        Company accounts get a fresh company code when none is supplied;
        employees may only join a company code that already exists.
        """
        email = email.strip().lower()
        if self.account_repo.get_by_email(email):
            raise errors.AssessmentError('User already exists with this email')
        if user_type == models.UserType.COMPANY:
            company_code = company_code or secrets.token_hex(4).upper()
            if self.account_repo.company_exists(company_code):
                raise errors.AssessmentError('Company code already in use')
        elif company_code and not self.account_repo.company_exists(company_code):
            raise errors.AssessmentError(f'Unknown company code: {company_code}', errors.ErrorKind.NOT_FOUND)
        account = models.Account(
            email=email,
            password_hash=PWD_CTX.hash(password),
            user_type=user_type,
            name=name,
            company_code=company_code,
            **{k: v for k, v in profile.items() if k in ('phone', 'company_name', 'department')},
        )
        apply_permissions(account)
        return self.account_repo.create(account)

    def authenticate(self, email: str, password: str):
        """Verify credentials and return `(token, account)` on success.

        Returns `None` if authentication fails or the account is disabled.
        """
        account = self.account_repo.get_by_email(email)
        if not account or not account.is_active:
            return None
        if not PWD_CTX.verify(password, account.password_hash):
            return None
        account.last_login = datetime.now(timezone.utc)
        self.account_repo.save(account)
        return issue_token(account), account


def issue_token(account: models.Account) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {
        "user_id": account.id,
        "email": account.email,
        "user_type": account.user_type.value,
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class QuestionService:
    """Question bank administration."""
    def __init__(self, session: Session):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)

    def create(self, payload: QuestionIn) -> models.Question:
        q = models.Question(
            text=payload.text,
            compliance_category=payload.compliance_category,
            weight=payload.weight,
            target_audience=payload.target_audience,
            active=payload.active,
        )
        options = [models.QuestionOption(label=o.label, text=o.text, weight=o.weight) for o in payload.options]
        return self.q_repo.create(q, options)

    def get(self, question_id: int) -> models.Question:
        q = self.q_repo.get(question_id)
        if not q:
            raise errors.QuestionNotFound(question_id)
        return q

    def update(self, question_id: int, payload: QuestionIn) -> models.Question:
        """Replace the question's content and options."""
        q = self.get(question_id)
        q.text = payload.text
        q.compliance_category = payload.compliance_category
        q.weight = payload.weight
        q.target_audience = payload.target_audience
        q.active = payload.active
        q.options = [
            models.QuestionOption(label=o.label, text=o.text, weight=o.weight, position=i)
            for i, o in enumerate(payload.options)
        ]
        return self.q_repo.save(q)

    def delete(self, question_id: int) -> dict:
        """Remove a question, or deactivate it when answers still reference it."""
        q = self.get(question_id)
        if self.q_repo.is_referenced(q.id):
            q.active = False
            self.q_repo.save(q)
            logger.info("question %s is referenced by answers; deactivated instead of deleted", q.id)
            return {'id': q.id, 'deleted': False, 'deactivated': True}
        self.q_repo.delete(q)
        return {'id': question_id, 'deleted': True, 'deactivated': False}

    def list_for_assessment(self, audience: Optional[models.TargetAudience], compliance_category: Optional[str]):
        return self.q_repo.list_by_filter(active=True, audience=audience, compliance_category=compliance_category)


class ImportService:
    """Import questions from files and persist them to the DB."""
    def __init__(self, session: Session):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)

    def import_file(self, file_bytes: bytes, filename: str, deduplicate: bool = True, dry_run: bool = False):
        """Parse `filename` contents and create `Question` rows.

        Returns a dictionary with the number of created questions, skipped
        duplicates and any validation `errors` encountered per item. When
        `deduplicate` is True, questions with identical category/text are
        skipped.
        """
        parsed = parse_file_to_questions(file_bytes, filename)
        created = 0
        skipped = 0
        errs = []
        for idx, item in enumerate(parsed):
            try:
                payload = QuestionIn.model_validate(item)
            except ValueError as e:
                errs.append({'index': idx, 'error': str(e)})
                continue
            if deduplicate and self.q_repo.exists_by_category_and_text(payload.compliance_category, payload.text):
                skipped += 1
                continue
            if not dry_run:
                QuestionService(self.session).create(payload)
            created += 1
        return {'created': created, 'skipped': skipped, 'errors': errs}


class AssessmentService:
    """Record answers and submissions against a user's progress record.

    Validation always happens before the record is touched, so a failed
    call never leaves partial state behind.
    """
    def __init__(self, session: Session, max_attempts: Optional[int] = None,
                 optimistic_locking: Optional[bool] = None):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)
        self.progress_repo = repositories.ProgressRepository(session)
        self.max_attempts = max_attempts if max_attempts is not None else settings.MAX_ASSESSMENT_ATTEMPTS
        self.optimistic_locking = (
            optimistic_locking if optimistic_locking is not None else settings.PROGRESS_OPTIMISTIC_LOCKING
        )

    def _check_attempts(self, progress: models.UserProgress) -> None:
        if (progress.assessment_attempts or 0) >= self.max_attempts:
            logger.warning("attempt limit reached for user %s", progress.user_id)
            raise errors.AttemptLimitReached(self.max_attempts)

    def questions_for(self, account: models.Account, compliance_category: Optional[str] = None) -> dict:
        """Active questions for the account's audience, with the attempt budget left."""
        progress = self.progress_repo.get_by_user(account.id)
        if progress is None:
            progress = self.progress_repo.save(self.progress_repo.get_or_create(account))
        self._check_attempts(progress)
        used = progress.assessment_attempts
        questions = self.q_repo.list_by_filter(
            active=True, audience=account.audience, compliance_category=compliance_category
        )
        if not questions:
            raise errors.AssessmentError('No questions found for the selected filters', errors.ErrorKind.NOT_FOUND)
        return {
            'questions': questions,
            'attempts_used': used,
            'attempts_remaining': self.max_attempts - used,
            'next_attempt_number': used + 1,
        }

    @staticmethod
    def _record_answer(progress: models.UserProgress, answer: scoring.ScoredAnswer, attempt_number: int) -> bool:
        """Overwrite the answer for (question, attempt) or append it. Returns True when appended."""
        now = datetime.now(timezone.utc)
        for existing in progress.question_history:
            if existing.question_id == answer.question_id and existing.attempt_number == attempt_number:
                existing.selected_option = answer.selected_option
                existing.option_weight = answer.option_weight
                existing.score_earned = answer.score_earned
                existing.question_weight = answer.question_weight
                existing.answered_at = now
                return False
        progress.question_history.append(models.AnswerRecord(
            question_id=answer.question_id,
            question_text=answer.question_text,
            compliance_category=answer.compliance_category,
            selected_option=answer.selected_option,
            option_weight=answer.option_weight,
            score_earned=answer.score_earned,
            question_weight=answer.question_weight,
            attempt_number=attempt_number,
            answered_at=now,
        ))
        return True

    def save_answer(self, account: models.Account, question_id: int, selected_option: str, attempt_number: int) -> dict:
        """Score and store a single answer; re-answering overwrites in place."""
        question = self.q_repo.get(question_id)
        if not question or not question.active:
            raise errors.QuestionNotFound(question_id)
        answer = scoring.score_answer(question, selected_option)
        progress = self.progress_repo.get_or_create(account)
        self._check_attempts(progress)
        if self._record_answer(progress, answer, attempt_number):
            question.responses = (question.responses or 0) + 1
            self.session.add(question)
        self.progress_repo.save(progress, check_revision=self.optimistic_locking)
        logger.info("saved answer user=%s question=%s option=%s attempt=%s score=%.2f",
                    account.id, question_id, selected_option, attempt_number, answer.score_earned)
        return {'success': True, 'score_earned': answer.score_earned}

    def _resolve(self, answers: Dict[str, str]):
        """Split submitted answers into scored entries and skipped ids.

        Keys that resolve to the same question id ("5", "05", " 5") are
        scored once; later aliases are skipped as duplicates.
        """
        ids = {}
        skipped = []
        for raw_id in answers:
            try:
                qid = int(raw_id)
            except (TypeError, ValueError):
                skipped.append({'question_id': raw_id, 'reason': 'invalid question id'})
                continue
            if qid in ids.values():
                skipped.append({'question_id': raw_id, 'reason': 'duplicate question id'})
                continue
            ids[raw_id] = qid
        questions = {q.id: q for q in self.q_repo.get_many(list(set(ids.values())))}
        scored = []
        for raw_id, label in answers.items():
            if raw_id not in ids:
                continue
            question = questions.get(ids[raw_id])
            if question is None:
                skipped.append({'question_id': raw_id, 'reason': 'question not found'})
                continue
            try:
                scored.append(scoring.score_answer(question, label))
            except errors.InvalidOption:
                skipped.append({'question_id': raw_id, 'reason': f'invalid option {label!r}'})
        for s in skipped:
            logger.warning("skipping submitted answer %s: %s", s['question_id'], s['reason'])
        return scored, skipped, questions

    def submit_assessment(self, account: models.Account, answers: Dict[str, str], attempt_number: int,
                          name: Optional[str] = None) -> dict:
        """Score a whole attempt and append it to the user's history.

        Unresolvable question ids and invalid options are skipped and
        reported in the result. Category rows for `attempt_number` are
        replaced, so re-submitting an attempt never duplicates them.
        """
        progress = self.progress_repo.get_or_create(account)
        self._check_attempts(progress)
        scored, skipped, questions = self._resolve(answers)
        tally = scoring.tally_answers(scored)
        if not tally.is_finite:
            logger.error("non-finite totals for user %s: scored=%s weighted=%s",
                         account.id, tally.total_scored, tally.total_weighted)
            raise errors.NonFiniteScore('Invalid score calculations: non-finite totals')

        for answer in scored:
            if self._record_answer(progress, answer, attempt_number):
                q = questions[answer.question_id]
                q.responses = (q.responses or 0) + 1
                self.session.add(q)

        now = datetime.now(timezone.utc)
        new_rows = [
            models.CategoryScore(
                compliance_category=cat.compliance_category,
                total_scored=cat.total_scored,
                total_weighted=cat.total_weighted,
                percentage_score=cat.percentage_score,
                questions_answered=cat.questions_answered,
                attempt_number=attempt_number,
                last_activity=now,
            )
            for cat in tally.categories.values()
        ]
        kept = [cs for cs in progress.category_scores if cs.attempt_number != attempt_number]
        progress.category_scores = kept + new_rows

        overall = tally.overall_percentage
        display_name = name or progress.name
        progress.assessment_history.append(models.AttemptSummary(
            attempt_number=attempt_number,
            overall_percentage=overall,
            completed_at=now,
            user_name=display_name,
        ))
        progress.assessment_attempts = (progress.assessment_attempts or 0) + 1
        progress.total_score = tally.total_scored
        progress.total_possible_score = tally.total_weighted
        progress.overall_percentage = overall
        progress.name = display_name
        self.progress_repo.save(progress, check_revision=self.optimistic_locking)
        logger.info("assessment submitted user=%s attempt=%s overall=%.2f skipped=%d",
                    account.id, attempt_number, overall, len(skipped))
        return {
            'success': True,
            'overall_percentage': overall,
            'category_scores': [
                {
                    'compliance_category': r.compliance_category,
                    'total_scored': r.total_scored,
                    'total_weighted': r.total_weighted,
                    'percentage_score': r.percentage_score,
                    'questions_answered': r.questions_answered,
                    'attempt_number': r.attempt_number,
                }
                for r in new_rows
            ],
            'attempt_number': attempt_number,
            'assessment_attempts': progress.assessment_attempts,
            'skipped': skipped,
        }


class ReportService:
    """Build report payloads for a user's progress record."""
    def __init__(self, session: Session):
        self.session = session
        self.progress_repo = repositories.ProgressRepository(session)

    def report_for(self, account: models.Account, create: bool = True) -> ReportData:
        """Return the report data, creating an empty progress record when asked."""
        if create:
            progress = self.progress_repo.get_by_user(account.id)
            if progress is None:
                progress = self.progress_repo.save(self.progress_repo.get_or_create(account))
        else:
            progress = self.progress_repo.get_by_user(account.id)
            if progress is None:
                raise errors.ProgressNotFound(f'No assessment record for user {account.id}')
        return reporting.build_report_data(progress)


class ProfileService:
    """Read and update the profile and preference maps of a progress record."""
    def __init__(self, session: Session):
        self.session = session
        self.progress_repo = repositories.ProgressRepository(session)

    def get(self, account: models.Account) -> dict:
        progress = self.progress_repo.get_by_user(account.id)
        if progress is None:
            raise errors.ProgressNotFound(f'No assessment record for user {account.id}')
        return {
            'name': progress.name,
            'email': progress.email,
            'notifications': progress.notifications,
            'privacy': progress.privacy,
        }

    def update(self, account: models.Account, name: Optional[str] = None, email: Optional[str] = None,
               notifications: Optional[dict] = None, privacy: Optional[dict] = None) -> dict:
        progress = self.progress_repo.get_by_user(account.id)
        if progress is None:
            raise errors.ProgressNotFound(f'No assessment record for user {account.id}')
        if name:
            progress.name = name
        if email:
            progress.email = email
        # JSON columns are reassigned, not mutated, so the change is detected
        if notifications:
            merged = dict(progress.notifications or models.default_notifications())
            merged.update({k: v for k, v in notifications.items() if k in merged})
            progress.notifications = merged
        if privacy:
            merged = dict(progress.privacy or models.default_privacy())
            merged.update({k: v for k, v in privacy.items() if k in merged})
            progress.privacy = merged
        self.progress_repo.save(progress)
        return self.get(account)


class AccountAdminService:
    """Administrator operations on accounts."""
    def __init__(self, session: Session):
        self.session = session
        self.account_repo = repositories.AccountRepository(session)

    def get(self, account_id: int) -> models.Account:
        account = self.account_repo.get(account_id)
        if not account:
            raise errors.AccountNotFound(f'User not found: {account_id}')
        return account

    def update(self, account_id: int, changes: dict) -> models.Account:
        account = self.get(account_id)
        for field, value in changes.items():
            if value is not None:
                setattr(account, field, value)
        if changes.get('user_type') is not None:
            apply_permissions(account)
        return self.account_repo.save(account)

    def delete(self, account_id: int) -> models.Account:
        """Delete an account that has no assessment history."""
        account = self.get(account_id)
        progress = repositories.ProgressRepository(self.session).get_by_user(account.id)
        if progress is not None:
            raise errors.AssessmentError(
                'User has assessment history; deactivate the account instead', errors.ErrorKind.CONFLICT
            )
        self.account_repo.delete(account)
        return account


class CompanyService:
    """Company dashboards over the progress records of a company's members."""
    def __init__(self, session: Session):
        self.session = session
        self.account_repo = repositories.AccountRepository(session)
        self.progress_repo = repositories.ProgressRepository(session)

    def _members(self, company_code: str):
        if not company_code:
            raise errors.AssessmentError('Company code missing')
        members = self.account_repo.list_company_members(company_code)
        progress = {p.user_id: p for p in self.progress_repo.list_for_users([m.id for m in members])}
        return members, progress

    @staticmethod
    def _assessed(p: Optional[models.UserProgress]) -> bool:
        return p is not None and (p.total_possible_score or 0) > 0

    @staticmethod
    def _employee_row(member: models.Account, p: Optional[models.UserProgress]) -> dict:
        assessed = CompanyService._assessed(p)
        pct = p.overall_percentage if assessed else 0.0
        return {
            'id': member.id,
            'name': member.name,
            'email': member.email,
            'department': member.department or 'Unassigned',
            'role': 'Company Admin' if member.user_type == models.UserType.COMPANY else 'Employee',
            'security_score': round(pct),
            'status': thresholds.employee_status(pct) if assessed else thresholds.NOT_ASSESSED,
            'last_assessment': p.last_activity if assessed else None,
            'last_login': member.last_login,
            'is_active': member.is_active,
            'weak_areas': reporting.weak_areas(p) if assessed else [],
        }

    @staticmethod
    def _category_averages(progress_records) -> List[dict]:
        stats: Dict[str, dict] = {}
        for p in progress_records:
            latest = reporting.latest_attempt_number(p)
            for row in p.category_scores:
                if row.attempt_number != latest:
                    continue
                s = stats.setdefault(row.compliance_category, {
                    'name': row.compliance_category, 'scored': 0.0, 'weighted': 0.0,
                    'employees': 0, 'questions_answered': 0,
                })
                s['scored'] += row.total_scored or 0.0
                s['weighted'] += row.total_weighted or 0.0
                s['employees'] += 1
                s['questions_answered'] += row.questions_answered or 0
        return [
            {
                'name': s['name'],
                'average_score': round(scoring.percentage(s['scored'], s['weighted'])),
                'employees': s['employees'],
                'questions_answered': s['questions_answered'],
            }
            for s in stats.values()
        ]

    def analytics(self, company_code: str) -> dict:
        members, progress = self._members(company_code)
        assessed = [p for p in progress.values() if self._assessed(p)]
        total_scored = sum(p.total_score or 0.0 for p in assessed)
        total_possible = sum(p.total_possible_score or 0.0 for p in assessed)
        overall = round(scoring.percentage(total_scored, total_possible))
        employees = [self._employee_row(m, progress.get(m.id)) for m in members]
        ranked = sorted((e for e in employees if e['security_score'] > 0),
                        key=lambda e: e['security_score'], reverse=True)[:thresholds.LEADERBOARD_SIZE]
        return {
            'company_code': company_code,
            'overall_score': overall,
            'risk_level': thresholds.risk_level(overall).title(),
            'assessed_employees': len(assessed),
            'total_employees': len(members),
            'categories': self._category_averages(assessed),
            'employees': employees,
            'leaderboard': [{**e, 'rank': i + 1} for i, e in enumerate(ranked)],
        }

    def employees(self, company_code: str, department: Optional[str] = None, status: Optional[str] = None,
                  search: Optional[str] = None) -> dict:
        members, progress = self._members(company_code)
        departments = sorted({m.department for m in members if m.department})
        if department and department != 'all':
            members = [m for m in members if m.department == department]
        if search:
            needle = search.lower()
            members = [m for m in members if needle in (m.name or '').lower() or needle in m.email.lower()]
        rows = [self._employee_row(m, progress.get(m.id)) for m in members]
        if status and status != 'all':
            rows = [r for r in rows if r['status'] == status]
        return {'employees': rows, 'total': len(rows), 'departments': departments}

    def reports(self, company_code: str) -> dict:
        members, progress = self._members(company_code)
        departments: Dict[str, dict] = {}
        for m in members:
            name = m.department or 'Unassigned'
            d = departments.setdefault(name, {
                'name': name, 'total_employees': 0, 'assessed_employees': 0,
                'scored': 0.0, 'possible': 0.0,
            })
            d['total_employees'] += 1
            p = progress.get(m.id)
            if self._assessed(p):
                d['assessed_employees'] += 1
                d['scored'] += p.total_score or 0.0
                d['possible'] += p.total_possible_score or 0.0
        assessed = [p for p in progress.values() if self._assessed(p)]
        overall = round(sum(p.overall_percentage for p in assessed) / len(assessed)) if assessed else 0
        return {
            'company_code': company_code,
            'total_employees': len(members),
            'assessed_employees': len(assessed),
            'departments': [
                {
                    'name': d['name'],
                    'total_employees': d['total_employees'],
                    'assessed_employees': d['assessed_employees'],
                    'average_score': round(scoring.percentage(d['scored'], d['possible'])),
                }
                for d in departments.values()
            ],
            'categories': self._category_averages(assessed),
            'overall_score': overall,
        }

    def leaderboard(self, company_code: str) -> dict:
        members, progress = self._members(company_code)
        by_id = {m.id: m for m in members}
        ranked = sorted(
            (p for p in progress.values() if (p.overall_percentage or 0) > 0),
            key=lambda p: p.overall_percentage, reverse=True,
        )
        board = []
        for i, p in enumerate(ranked):
            m = by_id[p.user_id]
            board.append({
                'rank': i + 1,
                'id': m.id,
                'name': m.name,
                'email': m.email,
                'department': m.department or 'Unassigned',
                'security_score': round(p.overall_percentage),
                'total_score': p.total_score,
                'total_possible': p.total_possible_score,
                'last_activity': p.last_activity,
                'categories': reporting.latest_category_snapshot(p),
            })
        return {'leaderboard': board, 'total_participants': len(board), 'company_code': company_code}

    def set_employee_status(self, manager: models.Account, employee_id: int, is_active: bool) -> dict:
        employee = self.account_repo.get(employee_id)
        if not employee:
            raise errors.AccountNotFound(f'Employee not found: {employee_id}')
        if employee.company_code != manager.company_code:
            raise errors.AccessDenied('Access denied: Employee not in your company')
        employee.is_active = is_active
        self.account_repo.save(employee)
        return {'id': employee.id, 'name': employee.name, 'is_active': employee.is_active}
