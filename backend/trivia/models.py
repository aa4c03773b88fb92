from flask_login import UserMixin

from trivia import db
from trivia.entities import GameState, GameStatus, Submission, Team


class GameStateDocument(db.Model):
    __tablename__ = 'game_state'
    key = db.Column(db.String(32), primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=GameStatus.LOBBY.value)  # lobby, question, results
    question_index = db.Column(db.Integer, nullable=False, default=-1)
    question_text = db.Column(db.Text, nullable=False, default='')
    correct_answer = db.Column(db.Text, nullable=False, default='')
    # Epoch milliseconds; 0 when no question is running
    question_start_time = db.Column(db.BigInteger, nullable=False, default=0)
    updated_at = db.Column(db.BigInteger, nullable=False, default=0)

    def to_entity(self):
        return GameState(
            status=GameStatus(self.status),
            question_index=self.question_index,
            question_text=self.question_text,
            correct_answer=self.correct_answer,
            question_start_time=self.question_start_time,
            updated_at=self.updated_at,
        )


class TeamDocument(db.Model):
    __tablename__ = 'team'
    # Participant identity, issued outside the core
    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    joined_at = db.Column(db.BigInteger, nullable=False, default=0)

    def to_entity(self):
        return Team(id=self.id, name=self.name, joined_at=self.joined_at)


class SubmissionDocument(db.Model):
    __tablename__ = 'submission'
    __table_args__ = (
        db.UniqueConstraint('team_id', 'question_index', name='uq_submission_team_question'),
    )
    id = db.Column(db.String(32), primary_key=True)
    team_id = db.Column(db.String(64), nullable=False, index=True)
    team_name = db.Column(db.String(128), nullable=False, default='')
    question_index = db.Column(db.Integer, nullable=False, index=True)
    answer_text = db.Column(db.Text, nullable=False)
    elapsed_ms = db.Column(db.BigInteger, nullable=False)
    accepted_at = db.Column(db.BigInteger, nullable=False)
    correct_answer = db.Column(db.Text, nullable=True)

    def to_entity(self):
        return Submission(
            id=self.id,
            team_id=self.team_id,
            team_name=self.team_name,
            question_index=self.question_index,
            answer_text=self.answer_text,
            elapsed_ms=self.elapsed_ms,
            accepted_at=self.accepted_at,
            correct_answer=self.correct_answer,
        )


class Participant(UserMixin):
    """A signed-in host or team. Lives only in the session cookie, never in the store."""

    ROLES = ('host', 'team')

    def __init__(self, role, participant_id):
        self.role = role
        self.participant_id = participant_id
        self.id = f'{role}:{participant_id}'

    @classmethod
    def from_id(cls, user_id):
        role, _, participant_id = (user_id or '').partition(':')
        if role not in cls.ROLES or not participant_id:
            return None
        return cls(role, participant_id)

    def to_dict(self):
        return {'role': self.role, 'participant_id': self.participant_id}
