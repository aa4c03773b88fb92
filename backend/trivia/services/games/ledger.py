"""Submission ledger: the authoritative record of accepted answers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from trivia.entities import MASTER_KEY, GameStatus, Submission
from trivia.errors import TransactionConflict
from trivia.services.games.clock import now_ms
from trivia.store import GAME_STATE, SUBMISSIONS

logger = logging.getLogger(__name__)


class SubmitOutcome(str, Enum):
    ACCEPTED = 'accepted'
    ALREADY_SUBMITTED = 'already_submitted'
    REJECTED = 'rejected'


class RejectReason(str, Enum):
    CLOCK_SKEW = 'clock_skew'
    INVALID_QUESTION = 'invalid_question'
    DEADLINE_PASSED = 'deadline_passed'
    QUESTION_CLOSED = 'question_closed'


@dataclass(slots=True, frozen=True)
class SubmitResult:
    outcome: SubmitOutcome
    submission: Submission | None = None
    reason: RejectReason | None = None

    @property
    def is_success(self) -> bool:
        """Already-submitted counts as success: the team's answer is on record."""
        return self.outcome is not SubmitOutcome.REJECTED

    def to_dict(self) -> dict:
        return {
            'outcome': self.outcome.value,
            'reason': self.reason.value if self.reason else None,
            'submission': self.submission.to_dict() if self.submission else None,
        }


class SubmissionLedger:
    """Accepts at most one submission per (team, question).

    The existence check and the insert run in one store transaction, and the
    store backs it with a unique constraint, so concurrent submits for the same
    key produce exactly one ``ACCEPTED``. The countdown is only checked here
    when ``deadline_ms`` is set; otherwise it is left to the team client.
    """

    def __init__(self, store, clock: Callable[[], int] = now_ms, deadline_ms: int | None = None) -> None:
        self._store = store
        self._clock = clock
        self._deadline_ms = deadline_ms

    @property
    def enforces_deadline(self) -> bool:
        return self._deadline_ms is not None

    def submit(self, team_id: str, question_index: int, answer_text: str, elapsed_ms: int,
               team_name: str = '') -> SubmitResult:
        if elapsed_ms < 0:
            logger.warning(
                f'[submit-rejected] team={team_id} question={question_index} '
                f'reason=clock_skew elapsed_ms={elapsed_ms}'
            )
            return SubmitResult(SubmitOutcome.REJECTED, reason=RejectReason.CLOCK_SKEW)
        if question_index < 0:
            return SubmitResult(SubmitOutcome.REJECTED, reason=RejectReason.INVALID_QUESTION)

        def _insert_once(txn):
            existing = txn.find(SUBMISSIONS, team_id=team_id, question_index=question_index)
            if existing:
                return SubmitResult(SubmitOutcome.ALREADY_SUBMITTED, submission=existing[0])
            now = self._clock()
            state = txn.get(GAME_STATE, MASTER_KEY)
            is_active = (
                state is not None
                and state.status is GameStatus.QUESTION
                and state.question_index == question_index
            )
            if self._deadline_ms is not None:
                if not is_active:
                    return SubmitResult(SubmitOutcome.REJECTED, reason=RejectReason.QUESTION_CLOSED)
                if now - state.question_start_time > self._deadline_ms:
                    return SubmitResult(SubmitOutcome.REJECTED, reason=RejectReason.DEADLINE_PASSED)
            value = {
                'team_id': team_id,
                'team_name': team_name,
                'question_index': question_index,
                'answer_text': answer_text.strip(),
                'elapsed_ms': int(elapsed_ms),
                'accepted_at': now,
                'correct_answer': state.correct_answer if is_active else None,
            }
            key = txn.insert(SUBMISSIONS, value)
            return SubmitResult(SubmitOutcome.ACCEPTED, submission=Submission(id=key, **value))

        try:
            result = self._store.transact(_insert_once)
        except TransactionConflict:
            # Lost the race against a concurrent submit for the same key
            existing = self._store.list(SUBMISSIONS, team_id=team_id, question_index=question_index)
            if not existing:
                logger.error(f'[submit-conflict] team={team_id} question={question_index} no prior submission found')
                raise
            result = SubmitResult(SubmitOutcome.ALREADY_SUBMITTED, submission=existing[0])

        if result.outcome is SubmitOutcome.ACCEPTED:
            logger.info(f'[submit-accepted] team={team_id} question={question_index} elapsed_ms={elapsed_ms}')
        elif result.outcome is SubmitOutcome.ALREADY_SUBMITTED:
            logger.info(f'[submit-duplicate] team={team_id} question={question_index}')
        else:
            logger.warning(f'[submit-rejected] team={team_id} question={question_index} reason={result.reason.value}')
        return result

    def for_question(self, question_index: int) -> list[Submission]:
        return self._store.list(SUBMISSIONS, question_index=question_index)

    def history(self) -> list[Submission]:
        return self._store.list(SUBMISSIONS)

    def subscribe(self, on_change: Callable[[list[Submission]], None], question_index: int | None = None,
                  deliver_initial: bool = True):
        filters = {} if question_index is None else {'question_index': question_index}
        return self._store.subscribe(SUBMISSIONS, on_change, deliver_initial=deliver_initial, **filters)
