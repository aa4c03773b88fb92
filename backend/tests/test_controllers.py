import threading
import time

import pytest
from sqlalchemy.exc import OperationalError

from trivia import db, store
from trivia.entities import AnswerStatus, GameStatus
from trivia.errors import StoreUnavailable, SubmissionLocked, ValidationError
from trivia.services.games.controllers import LocalSubmissionStatus, _SessionController, sessions
from trivia.services.games.ledger import SubmitOutcome
from trivia.store import TEAMS


def _store_offline(monkeypatch):
    def _offline(*args, **kwargs):
        raise StoreUnavailable('Store transaction failed')

    monkeypatch.setattr(store, 'transact', _offline)
    monkeypatch.setattr(store, 'get', _offline)
    monkeypatch.setattr(store, 'list', _offline)


def test_controllers_start_from_the_shared_state(registry):
    host = registry.host('host-1')
    team = registry.team('team-x')
    assert host.available and team.available
    assert host.game_state.status is GameStatus.LOBBY
    assert team.game_state == host.game_state
    assert host.remaining() == 60.0


def test_registry_reuses_controllers_per_identity(registry):
    assert registry.team('team-x') is registry.team('team-x')
    assert registry.team('team-x') is not registry.team('team-y')
    assert registry.host('host-1') is registry.host('host-1')


def test_join_is_idempotent_on_identity(registry, clock):
    team = registry.team('team-x')
    first = team.join('Foo')
    clock.advance(1_000)
    second = team.join('  Bar ')
    assert len(store.list(TEAMS)) == 1
    assert second.name == 'Bar'
    assert second.joined_at == first.joined_at
    assert team.is_joined


def test_join_rejects_short_names_without_touching_the_store(registry):
    team = registry.team('team-x')
    with pytest.raises(ValidationError):
        team.join(' ab ')
    assert store.list(TEAMS) == []


def test_host_sees_roster_and_submissions_as_they_arrive(registry):
    host = registry.host('host-1')
    host.advance_question('Q1', 'Sepsis')
    team = registry.team('team-x')
    team.join('Team X')
    team.submit_answer('sepsis')
    assert [t.name for t in host.teams] == ['Team X']
    assert [s.team_id for s in host.submissions] == ['team-x']


def test_host_advance_requires_an_answer(registry):
    host = registry.host('host-1')
    with pytest.raises(ValidationError):
        host.advance_question('Q1', '')
    assert host.game_state.status is GameStatus.LOBBY


def test_end_to_end_sepsis_round(registry, clock):
    host = registry.host('host-1')
    team_x = registry.team('team-x')
    team_y = registry.team('team-y')
    team_x.join('Team X')
    team_y.join('Team Y')

    t0 = clock()
    host.advance_question('Most common cause of shock?', 'Sepsis')
    assert team_x.game_state.question_start_time == t0

    clock.advance(2_000)
    result = team_x.submit_answer('sepsis')
    assert result.outcome is SubmitOutcome.ACCEPTED
    assert result.submission.elapsed_ms == 2_000
    assert team_x.submission_status is LocalSubmissionStatus.SUBMITTED

    # Team Y's own countdown has run out, so it refuses to submit
    clock.advance(63_000)
    assert team_y.tick() == 0
    assert team_y.submission_status is LocalSubmissionStatus.TIMEOUT
    with pytest.raises(SubmissionLocked):
        team_y.submit_answer('shock')

    # Called directly, the ledger only enforces uniqueness
    late = registry.ledger.submit('team-y', 0, 'shock', clock() - t0, team_name='Team Y')
    assert late.outcome is SubmitOutcome.ACCEPTED
    assert late.submission.elapsed_ms == 65_000

    board = host.leaderboard()
    assert [(r.team_name, r.status) for r in board] == [
        ('Team X', AnswerStatus.CORRECT),
        ('Team Y', AnswerStatus.INCORRECT),
    ]


def test_team_lock_prevents_a_second_attempt(registry, clock):
    registry.host('host-1').advance_question('', 'Sepsis')
    team = registry.team('team-x')
    team.join('Team X')
    team.submit_answer('shock')
    with pytest.raises(SubmissionLocked):
        team.submit_answer('sepsis')
    assert len(registry.ledger.for_question(0)) == 1


def test_team_lock_resets_on_the_next_question(registry, clock):
    host = registry.host('host-1')
    team = registry.team('team-x')
    team.join('Team X')
    host.advance_question('', 'one')
    team.submit_answer('one')
    host.advance_question('', 'two')
    assert team.submission_status is None
    assert team.remaining() == 60.0
    assert team.submit_answer('two').outcome is SubmitOutcome.ACCEPTED


def test_team_must_join_and_answer_properly(registry):
    host = registry.host('host-1')
    team = registry.team('team-x')
    team.join('Team X')
    with pytest.raises(SubmissionLocked):
        team.submit_answer('early')
    host.advance_question('', 'Sepsis')
    with pytest.raises(ValidationError):
        team.submit_answer('s')
    other = registry.team('team-z')
    with pytest.raises(ValidationError):
        other.submit_answer('sepsis')


def test_host_reset_unjoins_teams(registry):
    host = registry.host('host-1')
    team = registry.team('team-x')
    team.join('Team X')
    host.advance_question('', 'Sepsis')
    team.submit_answer('sepsis')

    host.reset_session()
    assert host.game_state.status is GameStatus.LOBBY
    assert host.teams == []
    assert host.submissions == []
    assert not team.is_joined
    assert team.submission_status is None


def test_round_complete_flag(registry):
    host = registry.host('host-1')
    for n in range(4):
        host.advance_question('', f'a{n}')
    assert host.round_complete
    assert host.game_state.status is GameStatus.RESULTS


def test_host_standings_cover_the_whole_round(registry, clock):
    host = registry.host('host-1')
    team = registry.team('team-x')
    team.join('Team X')
    host.advance_question('', 'one')
    clock.advance(1_500)
    team.submit_answer('ONE')
    host.advance_question('', 'two')
    clock.advance(500)
    team.submit_answer('three')
    row = host.standings()[0]
    assert (row.correct_answers, row.answered, row.correct_elapsed_ms) == (1, 2, 1_500)


def test_store_outage_marks_the_controller_unavailable(registry, monkeypatch, caplog):
    host = registry.host('host-1')
    _store_offline(monkeypatch)
    assert host.advance_question('Q1', 'Sepsis') is None
    assert not host.available
    assert host.last_error
    assert host.standings() is None
    assert '[store-unavailable]' in caplog.text


def test_controller_recovers_once_the_store_is_back(registry, monkeypatch):
    team = registry.team('team-x')
    _store_offline(monkeypatch)
    assert team.join('Team X') is None
    assert not team.available
    monkeypatch.undo()
    assert team.join('Team X').name == 'Team X'
    assert team.available


def test_controller_opened_during_an_outage_holds_no_state(registry, monkeypatch):
    def _offline(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('database is gone'))

    monkeypatch.setattr(db.session, 'commit', _offline)
    host = registry.host('host-1')
    assert not host.available
    assert host.game_state is None
    assert host.advance_question('Q1', 'Sepsis') is None


def test_session_controller_base_is_abstract(registry):
    with pytest.raises(TypeError):
        _SessionController(registry.machine, registry.roster, registry.ledger, registry.settings)


def test_reset_releases_controllers_of_teams_that_left(registry):
    first = registry.team('team-0-0')
    counts = []
    for cycle in range(3):
        for n in range(2):
            registry.team(f'team-{cycle}-{n}').join(f'Team {n}')
        registry.host('host-1').advance_question('', 'x')
        registry.host(f'host-visitor-{cycle}')
        registry.reset_session('host-1')
        counts.append(store.subscriber_count)
    assert counts[0] == counts[1] == counts[2]
    assert registry.team('team-0-0') is not first
    assert registry.host('host-1').game_state.status is GameStatus.LOBBY


def test_concurrent_submissions_from_different_teams_reach_the_host(file_app, monkeypatch):
    with file_app.app_context():
        registry = sessions()
        host = registry.host('host-1')
        host.advance_question('Q1', 'Sepsis')
        for team_id in ('team-a', 'team-b'):
            registry.roster.join(team_id, team_id.title())

    first_snapshot_read = threading.Event()
    read = store._read

    def _slow_read(subscription):
        snapshot = read(subscription)
        if (subscription.filters.get('question_index') == 0
                and threading.current_thread().name == 'team-a'):
            first_snapshot_read.set()
            # Hold the older snapshot while the other team commits
            time.sleep(0.5)
        return snapshot

    monkeypatch.setattr(store, '_read', _slow_read)

    def _submit(team_id, after=None):
        if after is not None:
            after.wait(timeout=5)
        with file_app.app_context():
            sessions().ledger.submit(team_id, 0, 'sepsis', 1_000, team_name=team_id.title())

    threads = [
        threading.Thread(target=_submit, args=('team-a',), name='team-a'),
        threading.Thread(target=_submit, args=('team-b', first_snapshot_read), name='team-b'),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    with file_app.app_context():
        stored = registry.ledger.for_question(0)
        board = host.leaderboard()
    assert sorted(s.team_id for s in stored) == ['team-a', 'team-b']
    assert sorted(s.team_id for s in host.submissions) == ['team-a', 'team-b']
    assert [r.status for r in board] == [AnswerStatus.CORRECT, AnswerStatus.CORRECT]
