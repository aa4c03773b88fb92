"""Game settings derived from the Flask configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class GameSettings:
    question_duration_sec: int = 60
    total_questions: int = 10
    min_team_name_length: int = 3
    min_answer_length: int = 2
    ledger_enforces_deadline: bool = False
    question_text_template: str = 'Question {number}'

    @classmethod
    def from_config(cls, config) -> GameSettings:
        return cls(
            question_duration_sec=int(config.get('QUESTION_DURATION_SEC', 60)),
            total_questions=int(config.get('TOTAL_QUESTIONS', 10)),
            min_team_name_length=int(config.get('MIN_TEAM_NAME_LENGTH', 3)),
            min_answer_length=int(config.get('MIN_ANSWER_LENGTH', 2)),
            ledger_enforces_deadline=bool(config.get('LEDGER_ENFORCES_DEADLINE', False)),
            question_text_template=config.get('QUESTION_TEXT_TEMPLATE', 'Question {number}'),
        )

    @property
    def deadline_ms(self) -> int | None:
        if not self.ledger_enforces_deadline:
            return None
        return self.question_duration_sec * 1000
