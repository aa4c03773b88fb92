import time
from typing import Set, Tuple

from trivia import socketio
from trivia.entities import GameState, GameStatus
from trivia.errors import StoreUnavailable
from trivia.services.games.clock import remaining
from trivia.services.games.controllers import sessions
from trivia.services.games.scoring import rank


_scheduled_question_keys: Set[Tuple[int, int]] = set()


def schedule_question_close(app, state: GameState) -> None:
    """Announce the end of the countdown for the question that was just opened.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per (question index, start instant)
    - On firing, aborts if the host has moved on; otherwise broadcasts
      ``question_closed`` with the leaderboard to the game room
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    if state.status is not GameStatus.QUESTION:
        return

    from trivia.socketio_events import GAME_ROOM, NAMESPACE

    key = (state.question_index, state.question_start_time)
    if key in _scheduled_question_keys:
        app.logger.info(f"[timer-skip] question={state.question_index} already scheduled")
        return
    _scheduled_question_keys.add(key)

    duration = int(app.config.get('QUESTION_DURATION_SEC', 60))
    delay = remaining(sessions().clock(), state.question_start_time, duration)
    app.logger.info(
        f"[timer-set] question={state.question_index} duration={duration}s "
        f"deadline={state.question_start_time + duration * 1000}"
    )

    def _worker(expected_index: int, expected_start: int, wait: float):
        time.sleep(wait)
        with app.app_context():
            _scheduled_question_keys.discard((expected_index, expected_start))
            registry = sessions()
            try:
                current = registry.machine.current()
            except StoreUnavailable as exc:
                app.logger.error(f"[timer-error] question={expected_index} error={exc}")
                return
            app.logger.info(
                f"[timer-fire] expected_question={expected_index} actual_status={current.status.value} "
                f"actual_question={current.question_index}"
            )
            if (current.status is not GameStatus.QUESTION or current.question_index != expected_index
                    or current.question_start_time != expected_start):
                app.logger.info(f"[timer-abort] question={expected_index} host already moved on")
                return
            try:
                rows = rank(
                    registry.roster.teams(),
                    registry.ledger.for_question(expected_index),
                    expected_index,
                    current.correct_answer,
                )
            except StoreUnavailable as exc:
                app.logger.error(f"[timer-error] question={expected_index} error={exc}")
                return
            socketio.emit(
                'question_closed',
                {'question_index': expected_index, 'leaderboard': [r.to_dict() for r in rows]},
                to=GAME_ROOM,
                namespace=NAMESPACE,
            )

    if app.config.get('TESTING'):
        _worker(state.question_index, state.question_start_time, delay)
    else:
        socketio.start_background_task(_worker, state.question_index, state.question_start_time, delay)
