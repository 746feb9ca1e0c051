import pytest

from compliance import errors, models, repositories
from compliance.services import AssessmentService
from compliance.utils.question_seed import QuestionSeeder


def _progress(session, account):
    session.expire_all()
    return repositories.ProgressRepository(session).get_by_user(account.id)


def test_save_answer_scores_and_stores(session, make_account, make_question):
    user = make_account()
    q = make_question(weight=8, options=[('A', 100), ('B', 60)])
    out = AssessmentService(session).save_answer(user, q.id, 'B', 1)
    assert out == {'success': True, 'score_earned': pytest.approx(4.8)}
    p = _progress(session, user)
    assert len(p.question_history) == 1
    rec = p.question_history[0]
    assert (rec.selected_option, rec.option_weight, rec.question_weight) == ('B', 60, 8)
    assert rec.question_text == q.text
    assert p.revision == 1


def test_save_answer_is_idempotent_per_attempt(session, make_account, make_question):
    user = make_account()
    q = make_question()
    svc = AssessmentService(session)
    svc.save_answer(user, q.id, 'A', 1)
    svc.save_answer(user, q.id, 'C', 1)
    p = _progress(session, user)
    assert [(r.selected_option, r.attempt_number) for r in p.question_history] == [('C', 1)]
    session.refresh(q)
    assert q.responses == 1
    svc.save_answer(user, q.id, 'A', 2)
    assert len(_progress(session, user).question_history) == 2


def test_save_answer_unknown_question_leaves_no_record(session, make_account):
    user = make_account()
    with pytest.raises(errors.QuestionNotFound) as exc:
        AssessmentService(session).save_answer(user, 999, 'A', 1)
    assert exc.value.kind == errors.ErrorKind.NOT_FOUND
    assert _progress(session, user) is None


def test_save_answer_inactive_question_is_not_found(session, make_account, make_question):
    q = make_question(active=False)
    with pytest.raises(errors.QuestionNotFound):
        AssessmentService(session).save_answer(make_account(), q.id, 'A', 1)


def test_save_answer_invalid_option(session, make_account, make_question):
    user = make_account()
    q = make_question()
    with pytest.raises(errors.InvalidOption):
        AssessmentService(session).save_answer(user, q.id, 'E', 1)
    assert _progress(session, user) is None


def test_submit_end_to_end_password_management(session, make_account):
    QuestionSeeder(session).force_seed()
    qs = repositories.QuestionRepository(session).list_by_filter(compliance_category='Password Management')
    by_text = {q.text: q for q in qs}
    q1 = by_text['How do you manage your passwords across platforms?']
    q2 = by_text['How often do you change your passwords?']
    user = make_account(name='Dana')
    out = AssessmentService(session).submit_assessment(user, {str(q1.id): 'A', str(q2.id): 'D'}, 1)
    assert out['overall_percentage'] == pytest.approx(77.78, abs=0.01)
    assert out['skipped'] == []
    [cat] = out['category_scores']
    assert cat['compliance_category'] == 'Password Management'
    assert (cat['total_scored'], cat['total_weighted']) == (pytest.approx(14), 18)
    p = _progress(session, user)
    assert p.assessment_attempts == 1
    assert p.total_score == pytest.approx(14)
    assert p.total_possible_score == 18
    assert [h.attempt_number for h in p.assessment_history] == [1]
    assert p.assessment_history[0].user_name == 'Dana'


def test_submit_reports_skipped_ids(session, make_account, make_question):
    user = make_account()
    q = make_question(weight=10)
    out = AssessmentService(session).submit_assessment(
        user, {str(q.id): 'A', '999': 'A', 'abc': 'B', str(make_question().id): 'Z'}, 1
    )
    reasons = {s['question_id']: s['reason'] for s in out['skipped']}
    assert set(reasons) == {'999', 'abc', str(q.id + 1)}
    assert reasons['999'] == 'question not found'
    assert out['overall_percentage'] == 100
    assert len(_progress(session, user).question_history) == 1


def test_submit_scores_aliased_question_ids_once(session, make_account, make_question):
    q1 = make_question(text='first')
    q2 = make_question(text='second')
    user = make_account()
    answers = {str(q1.id): 'A', f'0{q1.id}': 'A', f' {q1.id}': 'B', str(q2.id): 'D'}
    out = AssessmentService(session).submit_assessment(user, answers, 1)
    [cat] = out['category_scores']
    assert (cat['total_scored'], cat['total_weighted']) == (pytest.approx(11), 20)
    assert cat['percentage_score'] == pytest.approx(55)
    assert cat['questions_answered'] == 2
    assert out['overall_percentage'] == pytest.approx(55)
    assert out['skipped'] == [
        {'question_id': f'0{q1.id}', 'reason': 'duplicate question id'},
        {'question_id': f' {q1.id}', 'reason': 'duplicate question id'},
    ]
    assert len(_progress(session, user).question_history) == 2


def test_submit_with_nothing_valid_still_records_attempt(session, make_account):
    user = make_account()
    out = AssessmentService(session).submit_assessment(user, {'12345': 'A'}, 1)
    assert out['overall_percentage'] == 0
    assert out['category_scores'] == []
    assert _progress(session, user).assessment_attempts == 1


def test_attempt_history_is_monotonic(session, make_account, make_question):
    user = make_account()
    q = make_question()
    svc = AssessmentService(session)
    for n, label in enumerate(['D', 'B', 'A'], start=1):
        svc.submit_assessment(user, {str(q.id): label}, n)
    p = _progress(session, user)
    assert p.assessment_attempts == 3
    assert [h.overall_percentage for h in p.assessment_history] == [10, 60, 100]
    assert p.overall_percentage == 100


def test_resubmitting_an_attempt_replaces_category_rows(session, make_account, make_question):
    user = make_account()
    q = make_question()
    svc = AssessmentService(session)
    svc.submit_assessment(user, {str(q.id): 'D'}, 1)
    svc.submit_assessment(user, {str(q.id): 'A'}, 1)
    p = _progress(session, user)
    rows = [r for r in p.category_scores if r.attempt_number == 1]
    assert [r.percentage_score for r in rows] == [100]
    assert [r.selected_option for r in p.question_history] == ['A']
    assert p.assessment_attempts == 2


def test_attempt_cap_rejects_without_mutation(session, make_account, make_question):
    user = make_account()
    q = make_question()
    svc = AssessmentService(session, max_attempts=10)
    for n in range(1, 11):
        svc.submit_assessment(user, {str(q.id): 'A'}, n)
    before = _progress(session, user)
    snapshot = (before.assessment_attempts, len(before.assessment_history), before.revision)
    with pytest.raises(errors.AttemptLimitReached):
        svc.submit_assessment(user, {str(q.id): 'B'}, 11)
    with pytest.raises(errors.AttemptLimitReached):
        svc.save_answer(user, q.id, 'B', 11)
    after = _progress(session, user)
    assert (after.assessment_attempts, len(after.assessment_history), after.revision) == snapshot


def test_non_finite_totals_are_rejected(session, make_account, make_question):
    user = make_account()
    q = make_question()
    q.weight = float('inf')
    session.add(q)
    session.commit()
    with pytest.raises(errors.NonFiniteScore) as exc:
        AssessmentService(session).submit_assessment(user, {str(q.id): 'A'}, 1)
    assert exc.value.kind == errors.ErrorKind.NUMERIC_INTEGRITY
    session.rollback()
    p = _progress(session, user)
    assert p is None or p.assessment_attempts == 0


def test_questions_for_filters_by_audience(session, make_account, make_question):
    make_question(category='Auth', audience=models.TargetAudience.INDIVIDUAL, text='individual')
    make_question(category='Auth', audience=models.TargetAudience.COMPANY, text='company')
    make_question(category='Data', audience=models.TargetAudience.BOTH, text='both')
    svc = AssessmentService(session)
    texts = [q.text for q in svc.questions_for(make_account())['questions']]
    assert texts == ['individual', 'both']
    company = make_account(user_type=models.UserType.COMPANY, company_code='ACME')
    assert [q.text for q in svc.questions_for(company)['questions']] == ['company', 'both']
    assert [q.text for q in svc.questions_for(company, 'Data')['questions']] == ['both']
    with pytest.raises(errors.AssessmentError) as exc:
        svc.questions_for(company, 'Nothing')
    assert exc.value.kind == errors.ErrorKind.NOT_FOUND
