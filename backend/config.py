import os


def _env_flag(name, default='0'):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///trivia.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Access codes for the role gate
    HOST_AUTH_CODE = os.environ.get('HOST_AUTH_CODE', 'HOSTCODE2025')
    TEAM_AUTH_CODE = os.environ.get('TEAM_AUTH_CODE', 'TEAMCODE25')
    MIN_AUTH_CODE_LENGTH = int(os.environ.get('MIN_AUTH_CODE_LENGTH', '5'))
    # Round shape
    QUESTION_DURATION_SEC = int(os.environ.get('QUESTION_DURATION_SEC', '60'))
    TOTAL_QUESTIONS = int(os.environ.get('TOTAL_QUESTIONS', '10'))
    QUESTION_TEXT_TEMPLATE = os.environ.get('QUESTION_TEXT_TEMPLATE', 'Question {number}')
    # Input validation
    MIN_TEAM_NAME_LENGTH = int(os.environ.get('MIN_TEAM_NAME_LENGTH', '3'))
    MIN_ANSWER_LENGTH = int(os.environ.get('MIN_ANSWER_LENGTH', '2'))
    # Off by default: the countdown is enforced by the team client only
    LEDGER_ENFORCES_DEADLINE = _env_flag('LEDGER_ENFORCES_DEADLINE')
    # Create tables and the master game state when the app starts
    BOOTSTRAP_ON_START = _env_flag('BOOTSTRAP_ON_START', '1')
    # The question timer stays off under TESTING unless this is set
    ENABLE_SCHEDULER_IN_TESTS = _env_flag('ENABLE_SCHEDULER_IN_TESTS')
