"""Leaderboard derivation. Pure functions over entities, no store access."""

from __future__ import annotations

from typing import Iterable

from trivia.entities import AnswerStatus, LeaderboardRow, StandingRow, Submission, Team


def normalize_answer(text: str | None) -> str:
    return (text or '').strip().lower()


def is_correct(answer_text: str | None, correct_answer: str | None) -> bool:
    expected = normalize_answer(correct_answer)
    return bool(expected) and normalize_answer(answer_text) == expected


def grade(submission: Submission | None, correct_answer: str) -> AnswerStatus:
    if submission is None:
        return AnswerStatus.NO_SUBMISSION
    if is_correct(submission.answer_text, correct_answer):
        return AnswerStatus.CORRECT
    return AnswerStatus.INCORRECT


def _first_per_team(submissions: Iterable[Submission], question_index: int) -> dict[str, Submission]:
    by_team: dict[str, Submission] = {}
    for sub in submissions:
        if sub.question_index != question_index:
            continue
        current = by_team.get(sub.team_id)
        if current is None or (sub.accepted_at, sub.id) < (current.accepted_at, current.id):
            by_team[sub.team_id] = sub
    return by_team


def _row_sort_key(row: LeaderboardRow):
    elapsed = row.elapsed_ms if row.status is not AnswerStatus.NO_SUBMISSION else 0
    return (-row.status, elapsed, row.team_name, row.team_id)


def rank(
    teams: Iterable[Team],
    submissions: Iterable[Submission],
    current_question_index: int,
    correct_answer: str,
) -> list[LeaderboardRow]:
    """Rank the roster for the active question.

    Correct before incorrect before no submission; faster first within a
    status; team name (then id) as the total-order tiebreak. Grading uses the
    ``correct_answer`` passed in, so it follows the live game state.
    Submissions from teams that are not on the roster are ignored.
    """
    by_team = _first_per_team(submissions, current_question_index)
    rows = []
    for team in teams:
        sub = by_team.get(team.id)
        rows.append(LeaderboardRow(
            team_id=team.id,
            team_name=team.name,
            status=grade(sub, correct_answer),
            elapsed_ms=sub.elapsed_ms if sub else None,
            answer_text=sub.answer_text if sub else None,
        ))
    return sorted(rows, key=_row_sort_key)


def standings(teams: Iterable[Team], submissions: Iterable[Submission]) -> list[StandingRow]:
    """Cumulative tally over the whole ledger history.

    Each submission is graded against the key stored with it at acceptance.
    """
    tally: dict[str, list[int]] = {}
    roster = {team.id: team for team in teams}
    for sub in submissions:
        if sub.team_id not in roster:
            continue
        entry = tally.setdefault(sub.team_id, [0, 0, 0])
        entry[1] += 1
        if is_correct(sub.answer_text, sub.correct_answer):
            entry[0] += 1
            entry[2] += sub.elapsed_ms
    rows = []
    for team in roster.values():
        correct, answered, correct_elapsed = tally.get(team.id, (0, 0, 0))
        rows.append(StandingRow(
            team_id=team.id,
            team_name=team.name,
            correct_answers=correct,
            answered=answered,
            correct_elapsed_ms=correct_elapsed,
        ))
    return sorted(rows, key=lambda r: (-r.correct_answers, r.correct_elapsed_ms, r.team_name, r.team_id))
