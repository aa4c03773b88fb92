"""Domain entities shared by the store adapter, the services and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

MASTER_KEY = 'master'


class GameStatus(str, Enum):
    LOBBY = 'lobby'
    QUESTION = 'question'
    RESULTS = 'results'


class AnswerStatus(IntEnum):
    """Grading outcome of a team for one question. Higher ranks first."""

    NO_SUBMISSION = 0
    INCORRECT = 1
    CORRECT = 2

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(slots=True, frozen=True)
class GameState:
    """The single authoritative game document."""

    status: GameStatus = GameStatus.LOBBY
    question_index: int = -1
    question_text: str = ''
    correct_answer: str = ''
    question_start_time: int = 0
    updated_at: int = 0

    @classmethod
    def lobby(cls, updated_at: int = 0) -> GameState:
        return cls(question_text='Awaiting host start', updated_at=updated_at)

    def is_round_complete(self, total_questions: int) -> bool:
        return self.status is GameStatus.RESULTS and self.question_index >= total_questions

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'question_index': self.question_index,
            'question_text': self.question_text,
            'correct_answer': self.correct_answer,
            'start_time': self.question_start_time,
            'updated_at': self.updated_at,
        }


@dataclass(slots=True, frozen=True)
class Team:
    id: str
    name: str
    joined_at: int

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name, 'joined_at': self.joined_at}


@dataclass(slots=True, frozen=True)
class Submission:
    """An accepted answer. At most one exists per (team_id, question_index)."""

    id: str
    team_id: str
    team_name: str
    question_index: int
    answer_text: str
    elapsed_ms: int
    accepted_at: int
    correct_answer: str | None = None  # grading key held by the game state at acceptance

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'team_id': self.team_id,
            'team_name': self.team_name,
            'question_index': self.question_index,
            'answer_text': self.answer_text,
            'elapsed_ms': self.elapsed_ms,
            'accepted_at': self.accepted_at,
        }


@dataclass(slots=True, frozen=True)
class LeaderboardRow:
    team_id: str
    team_name: str
    status: AnswerStatus
    elapsed_ms: int | None = None
    answer_text: str | None = None

    def to_dict(self) -> dict:
        return {
            'team_id': self.team_id,
            'team_name': self.team_name,
            'status': self.status.label,
            'elapsed_ms': self.elapsed_ms,
            'answer_text': self.answer_text,
        }


@dataclass(slots=True, frozen=True)
class StandingRow:
    team_id: str
    team_name: str
    correct_answers: int
    answered: int
    correct_elapsed_ms: int

    def to_dict(self) -> dict:
        return {
            'team_id': self.team_id,
            'team_name': self.team_name,
            'correct_answers': self.correct_answers,
            'answered': self.answered,
            'correct_elapsed_ms': self.correct_elapsed_ms,
        }
