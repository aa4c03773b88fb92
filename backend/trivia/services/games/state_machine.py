"""Host-driven game lifecycle: lobby -> question(i) -> results."""

from __future__ import annotations

import logging
from typing import Callable

from trivia.entities import MASTER_KEY, GameState, GameStatus
from trivia.errors import InvalidTransition, TransactionConflict, ValidationError
from trivia.services.games.clock import now_ms
from trivia.settings import GameSettings
from trivia.store import GAME_STATE, SUBMISSIONS, TEAMS

logger = logging.getLogger(__name__)

ROUND_COMPLETE_TEXT = 'Round complete'
MISSING_ANSWER_MESSAGE = 'advance requested without a correct answer'


def _as_document(state: GameState) -> dict:
    return {
        'status': state.status,
        'question_index': state.question_index,
        'question_text': state.question_text,
        'correct_answer': state.correct_answer,
        'question_start_time': state.question_start_time,
        'updated_at': state.updated_at,
    }


class GameStateMachine:
    """Owns the master game document. The host is its only writer.

    Every transition is a single store transaction that reads the current
    document and writes the next one, so subscribers never observe a
    half-applied transition and a repeated request cannot skip an index.
    """

    def __init__(self, store, settings: GameSettings, clock: Callable[[], int] = now_ms) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    @property
    def total_questions(self) -> int:
        return self._settings.total_questions

    def bootstrap(self) -> GameState:
        """Create the master document in the lobby state if it does not exist yet."""
        def _create(txn):
            state = txn.get(GAME_STATE, MASTER_KEY, for_update=True)
            if state is not None:
                return state, False
            state = GameState.lobby(updated_at=self._clock())
            txn.set(GAME_STATE, MASTER_KEY, _as_document(state))
            return state, True

        try:
            state, created = self._store.transact(_create)
        except TransactionConflict:
            # Another participant created it first
            return self._store.get(GAME_STATE, MASTER_KEY)
        if created:
            logger.info('[bootstrap] created master game state in lobby')
        return state

    def current(self) -> GameState:
        state = self._store.get(GAME_STATE, MASTER_KEY)
        return state if state is not None else self.bootstrap()

    def next_state(self, state: GameState, question_text: str, correct_answer: str, now: int) -> GameState:
        """Pure transition function for one advance."""
        total = self._settings.total_questions
        if state.is_round_complete(total):
            raise InvalidTransition('The round is already complete. Reset to start again.')
        next_index = 0 if state.status is GameStatus.LOBBY else state.question_index + 1
        if next_index >= total:
            return GameState(
                status=GameStatus.RESULTS,
                question_index=total,
                question_text=ROUND_COMPLETE_TEXT,
                correct_answer='',
                question_start_time=0,
                updated_at=now,
            )
        text = (question_text or '').strip()
        if not text:
            text = self._settings.question_text_template.format(number=next_index + 1)
        return GameState(
            status=GameStatus.QUESTION,
            question_index=next_index,
            question_text=text,
            correct_answer=correct_answer,
            question_start_time=now,
            updated_at=now,
        )

    def advance(self, question_text: str, correct_answer: str) -> GameState:
        """Move to the next question, or to the final results after the last one.

        The host may advance before the countdown of the running question ends.
        """
        answer = (correct_answer or '').strip()
        if not answer:
            raise ValidationError(MISSING_ANSWER_MESSAGE)

        def _advance(txn):
            state = txn.get(GAME_STATE, MASTER_KEY, for_update=True) or GameState.lobby()
            following = self.next_state(state, question_text, answer, self._clock())
            txn.set(GAME_STATE, MASTER_KEY, _as_document(following))
            return state, following

        previous, state = self._store.transact(_advance)
        logger.info(
            f'[advance] {previous.status.value}({previous.question_index}) -> '
            f'{state.status.value}({state.question_index}) start={state.question_start_time}'
        )
        return state

    def reset(self) -> GameState:
        """Return to the lobby and delete every team and submission. Irreversible."""
        state = GameState.lobby(updated_at=self._clock())

        def _reset(txn):
            txn.set(GAME_STATE, MASTER_KEY, _as_document(state))
            return txn.clear(TEAMS), txn.clear(SUBMISSIONS)

        teams, submissions = self._store.transact(_reset)
        logger.warning(f'[reset] game returned to lobby teams_deleted={teams} submissions_deleted={submissions}')
        return state

    def subscribe(self, on_change: Callable[[GameState], None], deliver_initial: bool = True):
        return self._store.subscribe(GAME_STATE, on_change, key=MASTER_KEY, deliver_initial=deliver_initial)
