"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the compliance assessment
backend. Controllers are intentionally thin: they accept requests,
delegate to services, and return JSON (or HTML/PDF) responses.

Endpoint groups:
- /auth: register, register-admin, login, profile
- /user: questions, save-answer, submit-assessment, report (JSON, HTML,
  PDF), send-report, profile
- /questions: public listing and seeding
- /admin: question and account administration
- /company: analytics, employees, reports, leaderboard, employee status
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, UploadFile, File, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import Optional
import json
import logging
import queue
import re
import secrets
import threading
import time
import uuid
from .database import engine, create_db_and_tables, get_session
from . import services, repositories, models, errors
from .auth import get_current_user, require_permission
from .schemas import (
    AccountUpdateIn, AdminRegisterIn, EmployeeStatusIn, LoginIn, ProfileUpdateIn, QuestionIn,
    RegisterIn, ReportData, SaveAnswerIn, SendReportIn, SubmitAssessmentIn, TokenOut,
)
from .utils.mailer import ReportMailer
from .utils.question_seed import QuestionSeeder
from .utils.report_pdf import render_pdf
from .utils.report_renderer import build_report_document, render_html
from .config import settings

logger = logging.getLogger("compliance.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

_LOGGED_PREFIXES = ("/user", "/company")

_STATUS_BY_KIND = {
    errors.ErrorKind.VALIDATION: 400,
    errors.ErrorKind.NOT_FOUND: 404,
    errors.ErrorKind.NUMERIC_INTEGRITY: 422,
    errors.ErrorKind.CONFLICT: 409,
    errors.ErrorKind.FORBIDDEN: 403,
    errors.ErrorKind.TRANSIENT: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    if settings.SEED_QUESTIONS_ON_STARTUP:
        with Session(engine) as session:
            QuestionSeeder(session).reconcile()
    app.state.mailer = ReportMailer(settings)
    yield
    engine.dispose()


app = FastAPI(title="Compliance Assessment API", lifespan=lifespan)

# Wide-open CORS keeps local dashboard builds working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        if request.url.path.startswith(_LOGGED_PREFIXES):
            logger.exception(
                "request_failed %s",
                json.dumps(
                    {
                        "request_id": req_id,
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": elapsed_ms,
                        "client": request.client.host if request.client else "unknown",
                    },
                    ensure_ascii=True,
                ),
            )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith(_LOGGED_PREFIXES):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


def _http_error(e: errors.AssessmentError) -> HTTPException:
    """Translate a domain error into an HTTPException with a structured detail."""
    if isinstance(e, errors.RenderTimeout):
        status = 504
    elif isinstance(e, errors.RenderError):
        status = 500
    else:
        status = _STATUS_BY_KIND.get(e.kind, 400)
    return HTTPException(status_code=status, detail=e.as_dict())


def _render_pdf_with_timeout(report: ReportData, timeout_s: float) -> bytes:
    """Render the report PDF in a daemon thread and return promptly on timeout."""
    document = build_report_document(report)
    out: queue.Queue = queue.Queue(maxsize=1)

    def _work():
        try:
            out.put((True, render_pdf(document)))
        except Exception as exc:
            out.put((False, exc))

    t = threading.Thread(target=_work, daemon=True)
    t.start()
    try:
        ok, value = out.get(timeout=timeout_s)
    except queue.Empty as exc:
        logger.error("PDF rendering timed out after %.0fs", timeout_s)
        raise errors.RenderTimeout(f"PDF rendering timed out after {timeout_s:.0f}s") from exc
    if ok:
        return value
    logger.error("PDF rendering failed: %s", value)
    raise errors.RenderError(f"PDF rendering failed: {value}") from value


def _pdf_filename(name: str) -> str:
    slug = re.sub(r'[^A-Za-z0-9]+', '_', name or '').strip('_') or 'report'
    return f"Compliance_Report_{slug}.pdf"


def get_mailer(request: Request) -> ReportMailer:
    """Dependency returning the mailer created in the application lifespan."""
    return request.app.state.mailer


# --- auth -----------------------------------------------------------------

@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register an individual or company account.

    Company accounts without a company code get a generated one; an
    employee's company code must belong to an existing company.
    """
    if payload.user_type == models.UserType.ADMIN:
        raise HTTPException(status_code=400, detail='use /auth/register-admin for admin accounts')
    auth = services.AuthService(db)
    try:
        account = auth.register(**payload.model_dump())
    except errors.AssessmentError as e:
        raise _http_error(e)
    return services.account_out(account)


@app.post('/auth/register-admin')
def register_admin(payload: AdminRegisterIn, db: Session = Depends(get_session)):
    """Register an administrator; requires the configured registration key."""
    key = settings.ADMIN_REGISTRATION_KEY
    if not key or not secrets.compare_digest(payload.admin_key, key):
        raise HTTPException(status_code=403, detail='invalid admin registration key')
    data = payload.model_dump(exclude={'admin_key', 'user_type'})
    try:
        account = services.AuthService(db).register(user_type=models.UserType.ADMIN, **data)
    except errors.AssessmentError as e:
        raise _http_error(e)
    return services.account_out(account)


@app.post('/auth/login', response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate and return a JWT carrying `user_id`, `email` and `user_type`."""
    result = services.AuthService(db).authenticate(payload.email, payload.password)
    if not result:
        raise HTTPException(status_code=401, detail='invalid credentials')
    token, account = result
    return TokenOut(access_token=token, user_type=account.user_type)


@app.get('/auth/profile')
def auth_profile(user: models.Account = Depends(get_current_user)):
    return services.account_out(user)


# --- assessment -----------------------------------------------------------

@app.get('/user/questions')
def user_questions(compliance_category: Optional[str] = None, db: Session = Depends(get_session),
                   user: models.Account = Depends(get_current_user)):
    """Active questions for the caller's audience. Option weights are not exposed."""
    try:
        result = services.AssessmentService(db).questions_for(user, compliance_category)
    except errors.AssessmentError as e:
        raise _http_error(e)
    result['questions'] = [services.question_out(q, include_weights=False) for q in result['questions']]
    return result


@app.post('/user/save-answer')
def save_answer(payload: SaveAnswerIn, db: Session = Depends(get_session),
                user: models.Account = Depends(get_current_user)):
    svc = services.AssessmentService(db)
    try:
        return svc.save_answer(user, payload.question_id, payload.selected_option, payload.attempt_number)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.post('/user/submit-assessment')
def submit_assessment(payload: SubmitAssessmentIn, db: Session = Depends(get_session),
                      user: models.Account = Depends(get_current_user)):
    """Score a whole attempt.

    Unknown question ids and invalid options are skipped and listed in
    the `skipped` field of the response.
    """
    svc = services.AssessmentService(db)
    try:
        return svc.submit_assessment(user, payload.answers, payload.attempt_number, payload.name)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get('/user/report', response_model=ReportData)
def user_report(db: Session = Depends(get_session), user: models.Account = Depends(get_current_user)):
    return services.ReportService(db).report_for(user)


@app.get('/user/report/html', response_class=HTMLResponse)
def user_report_html(db: Session = Depends(get_session), user: models.Account = Depends(get_current_user)):
    data = services.ReportService(db).report_for(user)
    try:
        return render_html(build_report_document(data))
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get('/user/generateReport')
def generate_report(db: Session = Depends(get_session), user: models.Account = Depends(get_current_user)):
    """Download the report as a PDF attachment."""
    data = services.ReportService(db).report_for(user)
    try:
        pdf = _render_pdf_with_timeout(data, settings.REPORT_RENDER_TIMEOUT_SECONDS)
    except errors.AssessmentError as e:
        raise _http_error(e)
    return Response(
        content=pdf,
        media_type='application/pdf',
        headers={'Content-Disposition': f'attachment; filename="{_pdf_filename(data.user_name)}"'},
    )


@app.post('/user/send-report')
async def send_report(payload: SendReportIn, db: Session = Depends(get_session),
                      user: models.Account = Depends(get_current_user),
                      mailer: ReportMailer = Depends(get_mailer)):
    """Render the caller's report PDF and e-mail it to `recipient_email`."""
    try:
        data = await run_in_threadpool(services.ReportService(db).report_for, user)
        pdf = await run_in_threadpool(_render_pdf_with_timeout, data, settings.REPORT_RENDER_TIMEOUT_SECONDS)
    except errors.AssessmentError as e:
        raise _http_error(e)
    sent = await mailer.send_report(payload.recipient_email, payload.recipient_name, payload.test_name, pdf)
    if not sent:
        raise HTTPException(status_code=503, detail={'error': 'Failed to send report email', 'kind': 'transient'})
    return {'success': True, 'message': f'Report sent to {payload.recipient_email}'}


@app.get('/user/profile')
def user_profile(db: Session = Depends(get_session), user: models.Account = Depends(get_current_user)):
    try:
        return services.ProfileService(db).get(user)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.post('/user/profile/update')
def user_profile_update(payload: ProfileUpdateIn, db: Session = Depends(get_session),
                        user: models.Account = Depends(get_current_user)):
    try:
        return services.ProfileService(db).update(user, **payload.model_dump())
    except errors.AssessmentError as e:
        raise _http_error(e)


# --- question bank --------------------------------------------------------

@app.get('/questions')
def list_questions(compliance_category: Optional[str] = None, db: Session = Depends(get_session)):
    """List active questions, optionally for one category."""
    qs = repositories.QuestionRepository(db).list_by_filter(active=True, compliance_category=compliance_category)
    return [services.question_out(q, include_weights=False) for q in qs]


@app.post('/questions/seed')
def seed_questions(db: Session = Depends(get_session),
                   user: models.Account = Depends(require_permission('can_create_questions'))):
    return QuestionSeeder(db).reconcile()


@app.post('/questions/seed/force')
def force_seed_questions(db: Session = Depends(get_session),
                         user: models.Account = Depends(require_permission('can_create_questions'))):
    """Delete every question and re-insert the default bank."""
    return QuestionSeeder(db).force_seed()


@app.post('/admin/add-question', status_code=201)
def add_question(payload: QuestionIn, db: Session = Depends(get_session),
                 user: models.Account = Depends(require_permission('can_create_questions'))):
    q = services.QuestionService(db).create(payload)
    logger.info("question %s created by %s", q.id, user.email)
    return services.question_out(q)


@app.put('/admin/update-question/{question_id}')
def update_question(question_id: int, payload: QuestionIn, db: Session = Depends(get_session),
                    user: models.Account = Depends(require_permission('can_create_questions'))):
    try:
        q = services.QuestionService(db).update(question_id, payload)
    except errors.AssessmentError as e:
        raise _http_error(e)
    return services.question_out(q)


@app.delete('/admin/delete-question/{question_id}')
def delete_question(question_id: int, db: Session = Depends(get_session),
                    user: models.Account = Depends(require_permission('can_create_questions'))):
    """Delete a question; answered questions are deactivated instead."""
    try:
        return services.QuestionService(db).delete(question_id)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get('/admin/question/{question_id}')
def get_question(question_id: int, db: Session = Depends(get_session),
                 user: models.Account = Depends(require_permission('can_create_questions'))):
    try:
        return services.question_out(services.QuestionService(db).get(question_id))
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get('/admin/questions')
def admin_questions(db: Session = Depends(get_session),
                    user: models.Account = Depends(require_permission('can_create_questions'))):
    """All questions, active or not, most recently updated first."""
    return [services.question_out(q) for q in repositories.QuestionRepository(db).list_recent()]


@app.post('/admin/import-questions')
def import_questions(file: UploadFile = File(...), dry_run: bool = False, db: Session = Depends(get_session),
                     user: models.Account = Depends(require_permission('can_create_questions'))):
    """Upload a JSON or CSV file and import the questions it contains.

    Returns a summary with created / skipped counts and per-item errors.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail='no file')
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    svc = services.ImportService(db)
    try:
        res = svc.import_file(content, file.filename, dry_run=dry_run)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("import of %s by %s: %s", file.filename, user.email, res)
    return res


# --- account administration ----------------------------------------------

@app.get('/admin/users')
def admin_users(db: Session = Depends(get_session),
                user: models.Account = Depends(require_permission('can_view_all_users'))):
    return [services.account_out(a) for a in repositories.AccountRepository(db).list_all()]


@app.get('/admin/users/{account_id}')
def admin_get_user(account_id: int, db: Session = Depends(get_session),
                   user: models.Account = Depends(require_permission('can_view_all_users'))):
    try:
        return services.account_out(services.AccountAdminService(db).get(account_id))
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.put('/admin/users/{account_id}')
def admin_update_user(account_id: int, payload: AccountUpdateIn, db: Session = Depends(get_session),
                      user: models.Account = Depends(require_permission('can_view_all_users'))):
    try:
        account = services.AccountAdminService(db).update(account_id, payload.model_dump())
    except errors.AssessmentError as e:
        raise _http_error(e)
    return services.account_out(account)


@app.delete('/admin/users/{account_id}')
def admin_delete_user(account_id: int, db: Session = Depends(get_session),
                      user: models.Account = Depends(require_permission('can_view_all_users'))):
    if account_id == user.id:
        raise HTTPException(status_code=400, detail='cannot delete your own account')
    try:
        services.AccountAdminService(db).delete(account_id)
    except errors.AssessmentError as e:
        raise _http_error(e)
    return {'id': account_id, 'deleted': True}


@app.post('/admin/add-user', status_code=201)
def admin_add_user(payload: RegisterIn, db: Session = Depends(get_session),
                   user: models.Account = Depends(require_permission('can_view_all_users'))):
    """Create an account of any type, admins included."""
    try:
        account = services.AuthService(db).register(**payload.model_dump())
    except errors.AssessmentError as e:
        raise _http_error(e)
    return services.account_out(account)


# --- company dashboards ---------------------------------------------------

@app.get('/company/analytics')
def company_analytics(db: Session = Depends(get_session),
                      user: models.Account = Depends(require_permission('can_manage_company'))):
    try:
        return services.CompanyService(db).analytics(user.company_code)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get('/company/employees')
def company_employees(department: Optional[str] = None, status: Optional[str] = None, search: Optional[str] = None,
                      db: Session = Depends(get_session),
                      user: models.Account = Depends(require_permission('can_manage_company'))):
    """Company members with score and status; filter by department, status or name/e-mail search."""
    try:
        return services.CompanyService(db).employees(user.company_code, department, status, search)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get('/company/reports')
def company_reports(db: Session = Depends(get_session),
                    user: models.Account = Depends(require_permission('can_manage_company'))):
    try:
        return services.CompanyService(db).reports(user.company_code)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get('/company/leaderboard')
def company_leaderboard(db: Session = Depends(get_session),
                        user: models.Account = Depends(require_permission('can_manage_company'))):
    try:
        return services.CompanyService(db).leaderboard(user.company_code)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.put('/company/employee/{employee_id}/status')
def company_employee_status(employee_id: int, payload: EmployeeStatusIn, db: Session = Depends(get_session),
                            user: models.Account = Depends(require_permission('can_manage_company'))):
    try:
        return services.CompanyService(db).set_employee_status(user, employee_id, payload.is_active)
    except errors.AssessmentError as e:
        raise _http_error(e)


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>Compliance Assessment API</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        a { color: #0a6; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>Compliance Assessment API</h1>
        <ul>
          <li><a href="/docs">Swagger UI</a></li>
          <li><a href="/questions">Question bank</a></li>
        </ul>
        <p>Use <code>/auth/register</code> + <code>/auth/login</code> to get a token, then answer
        <code>/user/questions</code> and post them to <code>/user/submit-assessment</code>.
        Your report is at <code>/user/report/html</code>.</p>
      </div>
    </body>
    </html>
    """


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
