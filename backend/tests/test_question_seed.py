from collections import Counter

from compliance import repositories
from compliance.services import AssessmentService
from compliance.utils.question_seed import DEFAULT_QUESTIONS, EXPECTED_COUNTS, QuestionSeeder


def _active_counts(session):
    qs = repositories.QuestionRepository(session).list_by_filter(active=True)
    return Counter(q.compliance_category for q in qs)


def test_default_bank_shape():
    assert len(DEFAULT_QUESTIONS) == 10
    assert EXPECTED_COUNTS == {
        'Password Management': 3,
        'Authentication': 2,
        'Device Security': 2,
        'Network Security': 1,
        'Data Protection': 2,
    }
    for item in DEFAULT_QUESTIONS:
        assert [o['label'] for o in item['options']] == ['A', 'B', 'C', 'D']


def test_reconcile_seeds_empty_bank_once(session):
    seeder = QuestionSeeder(session)
    assert seeder.reconcile() == {'added': 10, 'removed': 0, 'total': 10}
    assert seeder.reconcile() == {'added': 0, 'removed': 0, 'total': 10}
    assert _active_counts(session) == Counter(EXPECTED_COUNTS)


def test_reconcile_trims_surplus_and_tops_up(session, make_question):
    seeder = QuestionSeeder(session)
    seeder.reconcile()
    make_question(category='Network Security', text='extra network question')
    repo = repositories.QuestionRepository(session)
    auth = repo.list_by_filter(compliance_category='Authentication')
    repo.delete(auth[0])
    result = seeder.reconcile()
    assert result == {'added': 1, 'removed': 1, 'total': 10}
    texts = {q.text for q in repo.list_by_filter(active=True)}
    assert 'extra network question' not in texts


def test_trim_deactivates_answered_questions(session, make_account, make_question):
    QuestionSeeder(session).reconcile()
    extra = make_question(category='Network Security', text='answered extra')
    AssessmentService(session).save_answer(make_account(), extra.id, 'A', 1)
    QuestionSeeder(session).reconcile()
    session.refresh(extra)
    assert extra.active is False


def test_force_seed_replaces_everything(session, make_question):
    make_question(category='Custom', text='custom question')
    result = QuestionSeeder(session).force_seed()
    assert result == {'deleted': 1, 'deactivated': 0, 'inserted': 10}
    qs = repositories.QuestionRepository(session).list_by_filter()
    assert len(qs) == 10
    assert all(len(q.options) == 4 for q in qs)


def test_force_seed_keeps_answered_questions_as_inactive(session, make_account):
    seeder = QuestionSeeder(session)
    seeder.force_seed()
    repo = repositories.QuestionRepository(session)
    answered = repo.list_by_filter()[0]
    answered_id, answered_text = answered.id, answered.text
    AssessmentService(session).save_answer(make_account(), answered_id, 'A', 1)

    assert seeder.force_seed() == {'deleted': 9, 'deactivated': 1, 'inserted': 10}
    session.expire_all()
    kept = repo.get(answered_id)
    assert kept is not None
    assert kept.active is False
    assert kept.text == answered_text
    assert len(repo.list_by_filter(active=True)) == 10
    assert len(repo.list_by_filter()) == 11
