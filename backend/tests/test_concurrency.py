"""Two overlapping submissions for the same account.

Both sessions load the progress record before either one writes, the
interleaving two concurrent requests can produce.
"""
import pytest
from sqlmodel import Session

from compliance import errors, repositories
from compliance.services import AssessmentService


def _preload(session, account):
    progress = repositories.ProgressRepository(session).get_or_create(account)
    # touch the collections so both sessions hold the same stale state
    list(progress.question_history), list(progress.category_scores), list(progress.assessment_history)
    return progress


@pytest.fixture
def prepared(engine, session, make_account, make_question):
    user = make_account()
    q = make_question()
    AssessmentService(session).submit_assessment(user, {str(q.id): 'D'}, 1)
    return user.id, q.id


def _overlapping_submits(engine, user_id, question_id, locking):
    s1, s2 = Session(engine), Session(engine)
    try:
        a1 = repositories.AccountRepository(s1).get(user_id)
        a2 = repositories.AccountRepository(s2).get(user_id)
        # keep strong references: the identity map only holds objects weakly
        held = (_preload(s1, a1), _preload(s2, a2))  # noqa: F841
        AssessmentService(s1, optimistic_locking=locking).submit_assessment(a1, {str(question_id): 'B'}, 2)
        AssessmentService(s2, optimistic_locking=locking).submit_assessment(a2, {str(question_id): 'A'}, 3)
    finally:
        s1.close()
        s2.close()


def _reload(engine, user_id):
    with Session(engine) as s:
        p = repositories.ProgressRepository(s).get_by_user(user_id)
        return p.assessment_attempts, len(p.assessment_history), p.revision


def test_last_write_wins_loses_a_counter_update(engine, prepared):
    user_id, question_id = prepared
    _overlapping_submits(engine, user_id, question_id, locking=False)
    attempts, history_rows, revision = _reload(engine, user_id)
    # both history rows are inserted, but the second writer overwrote the counter
    assert history_rows == 3
    assert attempts == 2
    assert revision == 2


def test_optimistic_locking_rejects_the_stale_writer(engine, prepared):
    user_id, question_id = prepared
    with pytest.raises(errors.ConcurrentUpdateError) as exc:
        _overlapping_submits(engine, user_id, question_id, locking=True)
    assert exc.value.kind == errors.ErrorKind.CONFLICT
    attempts, history_rows, revision = _reload(engine, user_id)
    assert (attempts, history_rows, revision) == (2, 2, 2)
