"""Countdown arithmetic shared by every participant.

All instants are epoch milliseconds; durations and remaining time are seconds.
"""

from __future__ import annotations

import time

from trivia.entities import GameState, GameStatus


def now_ms() -> int:
    return int(time.time() * 1000)


def remaining(now: int, start_instant: int, duration_seconds: float) -> float:
    """Seconds left before the deadline, never negative.

    A zero ``start_instant`` means no question is running and yields the full
    duration, which is the idle value shown on a countdown.
    """
    if not start_instant:
        return float(duration_seconds)
    return max(0.0, duration_seconds - (now - start_instant) / 1000.0)


def countdown(state: GameState | None, now: int, duration_seconds: float) -> float:
    if state is None or state.status is not GameStatus.QUESTION:
        return float(duration_seconds)
    return remaining(now, state.question_start_time, duration_seconds)


def elapsed_ms(now: int, start_instant: int) -> int:
    return int(now - start_instant)


def format_elapsed(ms: int | None) -> str:
    """Render milliseconds as ``MM:SS.mmm``."""
    if not ms:
        return '00:00.000'
    seconds, millis = divmod(int(ms), 1000)
    minutes, seconds = divmod(seconds, 60)
    return f'{minutes:02d}:{seconds:02d}.{millis:03d}'
