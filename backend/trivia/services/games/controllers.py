"""Host and team session controllers.

A controller is one participant's view of the game: it keeps the latest
values pushed by the store and exposes that role's operations. Store outages
are caught here; the controller flips ``available`` off and returns ``None``
instead of inventing local state.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from threading import Lock
from typing import Callable

from flask import current_app

from trivia.entities import GameState, GameStatus, LeaderboardRow, StandingRow, Submission, Team
from trivia.errors import StoreUnavailable, SubmissionLocked, ValidationError
from trivia.services.games.clock import countdown, elapsed_ms, now_ms
from trivia.services.games.ledger import SubmissionLedger, SubmitResult
from trivia.services.games.roster import TeamRoster
from trivia.services.games.scoring import rank, standings
from trivia.services.games.state_machine import MISSING_ANSWER_MESSAGE, GameStateMachine
from trivia.settings import GameSettings

logger = logging.getLogger(__name__)

_EXTENSION_KEY = 'trivia_sessions'


class LocalSubmissionStatus(str, Enum):
    SUBMITTED = 'submitted'
    TIMEOUT = 'timeout'
    REJECTED = 'rejected'


class _SessionController(ABC):
    def __init__(self, machine: GameStateMachine, roster: TeamRoster, ledger: SubmissionLedger,
                 settings: GameSettings, clock: Callable[[], int] = now_ms) -> None:
        self._machine = machine
        self._roster = roster
        self._ledger = ledger
        self._settings = settings
        self._clock = clock
        self._unsubscribers: list[Callable[[], None]] = []
        self._opened = False
        self.available = True
        self.last_error: str | None = None
        self.game_state: GameState | None = None
        self.ensure_open()

    def _guarded(self, action, fn, *args, **kwargs):
        try:
            result = fn(*args, **kwargs)
        except StoreUnavailable as exc:
            logger.error(f'[store-unavailable] controller={type(self).__name__} action={action} error={exc}')
            self.available = False
            self.last_error = str(exc)
            return None
        self.available = True
        self.last_error = None
        return result

    def ensure_open(self) -> bool:
        """Subscribe to the store if not yet done. Retried on every call after an outage."""
        if not self._opened:
            self._opened = self._guarded('subscribe', self._subscribe) is not None
            if not self._opened:
                self.close()
        return self._opened

    def _subscribe(self):
        self._machine.bootstrap()
        self._unsubscribers.append(self._machine.subscribe(self._on_state))
        self._unsubscribers.append(self._roster.subscribe(self._on_roster))
        return True

    def _on_state(self, state: GameState | None) -> None:
        self.game_state = state

    @abstractmethod
    def _on_roster(self, teams: list[Team]) -> None:
        ...

    def remaining(self, now: int | None = None) -> float:
        return countdown(self.game_state, self._clock() if now is None else now, self._settings.question_duration_sec)

    @property
    def round_complete(self) -> bool:
        return self.game_state is not None and self.game_state.is_round_complete(self._settings.total_questions)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._opened = False


class HostController(_SessionController):
    """Advances the game and watches the roster and the current question's submissions."""

    def __init__(self, *args, **kwargs) -> None:
        self.teams: list[Team] = []
        self.submissions: list[Submission] = []
        self._submission_index: int | None = None
        self._unsubscribe_submissions: Callable[[], None] | None = None
        super().__init__(*args, **kwargs)

    def _on_state(self, state):
        super()._on_state(state)
        if state is not None and state.question_index != self._submission_index:
            self._watch_submissions(state.question_index)

    def _on_roster(self, teams):
        self.teams = teams

    def _on_submissions(self, submissions):
        self.submissions = submissions

    def _watch_submissions(self, question_index: int) -> None:
        if self._unsubscribe_submissions is not None:
            self._unsubscribe_submissions()
            self._unsubscribe_submissions = None
        self._submission_index = question_index
        self.submissions = []
        if question_index >= 0:
            self._unsubscribe_submissions = self._ledger.subscribe(self._on_submissions, question_index=question_index)

    def advance_question(self, question_text: str, correct_answer: str) -> GameState | None:
        if not (correct_answer or '').strip():
            raise ValidationError(MISSING_ANSWER_MESSAGE)
        if not self.ensure_open():
            return None
        return self._guarded('advance', self._machine.advance, question_text, correct_answer)

    def reset_session(self) -> GameState | None:
        if not self.ensure_open():
            return None
        return self._guarded('reset', self._machine.reset)

    def leaderboard(self) -> list[LeaderboardRow]:
        self.ensure_open()
        state = self.game_state
        if state is None:
            return []
        return rank(self.teams, self.submissions, state.question_index, state.correct_answer)

    def standings(self) -> list[StandingRow] | None:
        history = self._guarded('standings', self._ledger.history)
        if history is None:
            return None
        return standings(self.teams, history)

    def close(self) -> None:
        if self._unsubscribe_submissions is not None:
            self._unsubscribe_submissions()
            self._unsubscribe_submissions = None
        self._submission_index = None
        super().close()


class TeamController(_SessionController):
    """One team's client: joins, runs the local countdown and submits once per question."""

    def __init__(self, team_id: str, *args, **kwargs) -> None:
        self.team_id = team_id
        self.team: Team | None = None
        self.submission_status: LocalSubmissionStatus | None = None
        self.last_result: SubmitResult | None = None
        super().__init__(*args, **kwargs)

    @property
    def is_joined(self) -> bool:
        return self.team is not None

    def _on_state(self, state):
        previous = self.game_state
        super()._on_state(state)
        if state is None:
            return
        if (state.status is GameStatus.LOBBY or previous is None
                or state.question_index != previous.question_index):
            self.submission_status = None
            self.last_result = None

    def _on_roster(self, teams):
        self.team = next((t for t in teams if t.id == self.team_id), None)

    def join(self, name: str) -> Team | None:
        cleaned = (name or '').strip()
        if len(cleaned) < self._settings.min_team_name_length:
            raise ValidationError(
                f'Team name must be at least {self._settings.min_team_name_length} characters.'
            )
        if not self.ensure_open():
            return None
        team = self._guarded('join', self._roster.join, self.team_id, cleaned)
        if team is not None:
            self.team = team
        return team

    def tick(self, now: int | None = None) -> float:
        """Advance the local countdown. Locks the question as timed out at zero."""
        left = self.remaining(now)
        state = self.game_state
        if (state is not None and state.status is GameStatus.QUESTION and state.question_start_time
                and left <= 0 and self.submission_status is None):
            self.submission_status = LocalSubmissionStatus.TIMEOUT
            logger.info(f'[timeout] team={self.team_id} question={state.question_index}')
        return left

    def submit_answer(self, answer_text: str) -> SubmitResult | None:
        text = (answer_text or '').strip()
        if len(text) < self._settings.min_answer_length:
            raise ValidationError(f'Answer must be at least {self._settings.min_answer_length} characters.')
        if not self.is_joined:
            raise ValidationError('Join the game before submitting an answer.')
        state = self.game_state
        if state is None or state.status is not GameStatus.QUESTION:
            raise SubmissionLocked('No question is open.')
        now = self._clock()
        self.tick(now)
        if self.submission_status is LocalSubmissionStatus.TIMEOUT:
            raise SubmissionLocked('Time is up for this question. Your answer was not recorded.')
        if self.submission_status is not None:
            raise SubmissionLocked(f'Answer already {self.submission_status.value} for this question.')

        result = self._guarded(
            'submit', self._ledger.submit,
            self.team_id, state.question_index, text, elapsed_ms(now, state.question_start_time),
            team_name=self.team.name,
        )
        if result is None:
            return None
        self.last_result = result
        if result.is_success:
            self.submission_status = LocalSubmissionStatus.SUBMITTED
        else:
            self.submission_status = LocalSubmissionStatus.REJECTED
        return result


class SessionRegistry:
    """Controllers for every participant identity seen by this application."""

    def __init__(self, store, settings: GameSettings, clock: Callable[[], int] = now_ms) -> None:
        self.settings = settings
        self.clock = clock
        self.machine = GameStateMachine(store, settings, clock)
        self.roster = TeamRoster(store, clock)
        self.ledger = SubmissionLedger(store, clock, deadline_ms=settings.deadline_ms)
        self._hosts: dict[str, HostController] = {}
        self._teams: dict[str, TeamController] = {}
        self._lock = Lock()

    def _services(self):
        return self.machine, self.roster, self.ledger, self.settings, self.clock

    def host(self, participant_id: str) -> HostController:
        with self._lock:
            controller = self._hosts.get(participant_id)
            if controller is None:
                controller = HostController(*self._services())
                self._hosts[participant_id] = controller
            return controller

    def team(self, participant_id: str) -> TeamController:
        with self._lock:
            controller = self._teams.get(participant_id)
            if controller is None:
                controller = TeamController(participant_id, *self._services())
                self._teams[participant_id] = controller
            return controller

    def reset_session(self, host_id: str) -> GameState | None:
        """Reset the game from a host, then release the controllers it made obsolete."""
        state = self.host(host_id).reset_session()
        if state is not None:
            self.prune(keep_host=host_id)
        return state

    def prune(self, keep_host: str | None = None) -> int:
        """Close every team controller whose team is off the roster and every other host.

        A pruned participant gets a fresh controller on its next request.
        """
        with self._lock:
            stale = [(self._teams, pid) for pid, c in self._teams.items() if not c.is_joined]
            stale += [(self._hosts, pid) for pid in self._hosts if pid != keep_host]
            for controllers, pid in stale:
                controllers.pop(pid).close()
        logger.info(f'[prune] controllers_released={len(stale)} kept_host={keep_host}')
        return len(stale)

    def close(self) -> None:
        with self._lock:
            for controller in [*self._hosts.values(), *self._teams.values()]:
                controller.close()
            self._hosts.clear()
            self._teams.clear()


def init_sessions(app, store) -> SessionRegistry:
    registry = SessionRegistry(store, GameSettings.from_config(app.config), app.config.get('GAME_CLOCK') or now_ms)
    app.extensions[_EXTENSION_KEY] = registry
    return registry


def sessions() -> SessionRegistry:
    return current_app.extensions[_EXTENSION_KEY]
