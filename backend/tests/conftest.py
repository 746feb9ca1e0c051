import os
import tempfile
from pathlib import Path

# Settings are read at import time, so the environment must be ready first.
_TMP = Path(tempfile.mkdtemp(prefix="compliance-tests-"))
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ALLOW_INSECURE_JWT", "true")
os.environ.setdefault("SEED_QUESTIONS_ON_STARTUP", "false")
os.environ.setdefault("ADMIN_REGISTRATION_KEY", "test-admin-key")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'app.db'}")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from compliance import models, services
from compliance.database import create_db_and_tables, get_session, make_engine
from compliance.main import app, get_mailer
from compliance.schemas import OptionIn, QuestionIn


class FakeMailer:
    """Records sent reports instead of talking to SMTP."""
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    @property
    def is_configured(self):
        return True

    async def send_report(self, recipient_email, recipient_name, test_name, pdf_bytes):
        self.sent.append({
            'recipient_email': recipient_email,
            'recipient_name': recipient_name,
            'test_name': test_name,
            'pdf_bytes': pdf_bytes,
        })
        return self.succeed


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite file database per test."""
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(engine, mailer):
    def _session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_mailer] = lambda: mailer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_account(session):
    counter = {'n': 0}

    def _make(user_type=models.UserType.USER, name=None, email=None, company_code=None,
              department=None, password='pass123'):
        counter['n'] += 1
        n = counter['n']
        account = models.Account(
            email=email or f"user{n}@example.com",
            password_hash=services.PWD_CTX.hash(password),
            user_type=user_type,
            name=name or f"User {n}",
            company_code=company_code,
            department=department,
        )
        services.apply_permissions(account)
        session.add(account)
        session.commit()
        session.refresh(account)
        return account
    return _make


@pytest.fixture
def auth_headers():
    def _headers(account):
        return {'Authorization': f'Bearer {services.issue_token(account)}'}
    return _headers


@pytest.fixture
def make_question(session):
    def _make(category='Password Management', weight=10, options=None, text=None,
              audience=models.TargetAudience.INDIVIDUAL, active=True):
        options = options or [('A', 100), ('B', 60), ('C', 30), ('D', 10)]
        payload = QuestionIn(
            text=text or f"{category} question {weight}",
            compliance_category=category,
            weight=weight,
            target_audience=audience,
            active=active,
            options=[OptionIn(label=label, text=f"Option {label}", weight=w) for label, w in options],
        )
        return services.QuestionService(session).create(payload)
    return _make
