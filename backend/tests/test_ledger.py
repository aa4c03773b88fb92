import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from trivia import store
from trivia.errors import TransactionConflict
from trivia.services.games.controllers import sessions
from trivia.services.games.ledger import RejectReason, SubmissionLedger, SubmitOutcome
from trivia.store import SUBMISSIONS

from conftest import T0


def test_first_submission_is_accepted(registry, clock):
    registry.machine.advance('', 'Sepsis')
    clock.advance(2_000)
    result = registry.ledger.submit('team-x', 0, '  sepsis ', 2_000, team_name='Team X')
    assert result.outcome is SubmitOutcome.ACCEPTED
    assert result.is_success
    sub = result.submission
    assert sub.answer_text == 'sepsis'
    assert sub.elapsed_ms == 2_000
    assert sub.accepted_at == T0 + 2_000
    assert sub.correct_answer == 'Sepsis'
    assert store.list(SUBMISSIONS) == [sub]


def test_second_submission_for_same_question_is_already_submitted(registry):
    registry.machine.advance('', 'Sepsis')
    first = registry.ledger.submit('team-x', 0, 'sepsis', 2_000)
    second = registry.ledger.submit('team-x', 0, 'shock', 1_000)
    assert second.outcome is SubmitOutcome.ALREADY_SUBMITTED
    assert second.is_success
    assert second.submission == first.submission
    assert len(registry.ledger.for_question(0)) == 1


def test_same_team_may_answer_each_question(registry):
    registry.machine.advance('', 'a')
    registry.ledger.submit('team-x', 0, 'a', 100)
    registry.machine.advance('', 'b')
    assert registry.ledger.submit('team-x', 1, 'b', 100).outcome is SubmitOutcome.ACCEPTED
    assert len(registry.ledger.history()) == 2


def test_negative_elapsed_is_clock_skew(registry, caplog):
    registry.machine.advance('', 'Sepsis')
    result = registry.ledger.submit('team-x', 0, 'sepsis', -250)
    assert result.outcome is SubmitOutcome.REJECTED
    assert result.reason is RejectReason.CLOCK_SKEW
    assert not result.is_success
    assert store.list(SUBMISSIONS) == []
    assert 'clock_skew' in caplog.text


def test_negative_question_index_is_rejected(registry):
    result = registry.ledger.submit('team-x', -1, 'sepsis', 10)
    assert result.reason is RejectReason.INVALID_QUESTION


def test_late_submission_is_accepted_without_deadline_enforcement(registry, clock):
    registry.machine.advance('', 'Sepsis')
    clock.advance(65_000)
    result = registry.ledger.submit('team-y', 0, 'shock', 65_000)
    assert not registry.ledger.enforces_deadline
    assert result.outcome is SubmitOutcome.ACCEPTED


def test_submission_for_a_superseded_question_has_no_grading_key(registry):
    registry.machine.advance('', 'first')
    registry.machine.advance('', 'second')
    result = registry.ledger.submit('team-x', 0, 'first', 70_000)
    assert result.outcome is SubmitOutcome.ACCEPTED
    assert result.submission.correct_answer is None


def test_deadline_aware_ledger_rejects_late_answers(registry, clock):
    ledger = SubmissionLedger(store, clock, deadline_ms=60_000)
    registry.machine.advance('', 'Sepsis')
    clock.advance(59_000)
    assert ledger.submit('team-x', 0, 'sepsis', 59_000).outcome is SubmitOutcome.ACCEPTED
    clock.advance(6_000)
    late = ledger.submit('team-y', 0, 'shock', 1_000)
    assert late.outcome is SubmitOutcome.REJECTED
    assert late.reason is RejectReason.DEADLINE_PASSED


def test_deadline_aware_ledger_rejects_closed_questions(registry):
    ledger = SubmissionLedger(store, registry.clock, deadline_ms=60_000)
    registry.machine.advance('', 'first')
    registry.machine.advance('', 'second')
    result = ledger.submit('team-x', 0, 'first', 100)
    assert result.reason is RejectReason.QUESTION_CLOSED


def test_deadline_flag_reaches_the_registry_ledger(app_factory):
    app_factory(LEDGER_ENFORCES_DEADLINE=True, QUESTION_DURATION_SEC=30)
    assert sessions().ledger.enforces_deadline
    assert sessions().settings.deadline_ms == 30_000


def test_subscribe_filters_by_question(registry):
    seen = []
    registry.machine.advance('', 'a')
    registry.ledger.subscribe(seen.append, question_index=0)
    registry.ledger.submit('team-x', 0, 'a', 10)
    assert [len(batch) for batch in seen] == [0, 1]


def test_concurrent_submits_accept_exactly_one(file_app):
    workers = 6
    barrier = threading.Barrier(workers)
    with file_app.app_context():
        sessions().machine.advance('Most common cause of shock?', 'Sepsis')

    def _submit(n):
        with file_app.app_context():
            ledger = sessions().ledger
            barrier.wait()
            return ledger.submit('team-x', 0, f'answer {n}', 1_000 + n, team_name='Team X')

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(_submit, range(workers)))

    outcomes = [r.outcome for r in results]
    assert outcomes.count(SubmitOutcome.ACCEPTED) == 1
    assert outcomes.count(SubmitOutcome.ALREADY_SUBMITTED) == workers - 1
    with file_app.app_context():
        stored = sessions().ledger.for_question(0)
    assert len(stored) == 1
    accepted = next(r for r in results if r.outcome is SubmitOutcome.ACCEPTED)
    assert stored[0].id == accepted.submission.id


def test_conflict_without_a_prior_submission_is_not_masked(registry, monkeypatch):
    registry.machine.advance('', 'Sepsis')

    def _conflict(fn):
        raise TransactionConflict('CHECK constraint failed: submission')

    monkeypatch.setattr(store, 'transact', _conflict)
    with pytest.raises(TransactionConflict):
        registry.ledger.submit('team-x', 0, 'sepsis', 100)
    assert store.list(SUBMISSIONS) == []
