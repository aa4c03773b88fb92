from functools import wraps
import secrets
from uuid import uuid4

from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user, login_required, login_user

from trivia.errors import InvalidTransition, SubmissionLocked, ValidationError
from trivia.models import Participant
from trivia.services.games.clock import format_elapsed
from trivia.services.games.controllers import sessions
from trivia.services.games.ledger import SubmitOutcome
from trivia.services.games.scheduler import schedule_question_close


games = Blueprint('games', __name__)

ROLE_HOST = 'host'
ROLE_TEAM = 'team'

_OUTCOME_STATUS = {
    SubmitOutcome.ACCEPTED: 201,
    SubmitOutcome.ALREADY_SUBMITTED: 200,
    SubmitOutcome.REJECTED: 409,
}


@games.errorhandler(ValidationError)
def _validation_failed(exc):
    return jsonify({'error': str(exc)}), 400


@games.errorhandler(InvalidTransition)
@games.errorhandler(SubmissionLocked)
def _conflict(exc):
    return jsonify({'error': str(exc)}), 409


def _require_role(*roles):
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            if current_user.role not in roles:
                return jsonify({'error': f'Only the {" or ".join(roles)} may do this'}), 403
            return view(*args, **kwargs)
        return wrapped
    return decorator


def _controller():
    registry = sessions()
    if current_user.role == ROLE_HOST:
        controller = registry.host(current_user.participant_id)
    else:
        controller = registry.team(current_user.participant_id)
    # Picks the subscriptions back up after an outage
    controller.ensure_open()
    return controller


def _unavailable(controller):
    return jsonify({'error': 'Game store unavailable', 'detail': controller.last_error}), 503


def _state_payload(controller):
    settings = sessions().settings
    return {
        'game': controller.game_state.to_dict(),
        'remaining_seconds': controller.remaining(),
        'question_duration': settings.question_duration_sec,
        'total_questions': settings.total_questions,
        'round_complete': controller.round_complete,
    }


@games.route('/session', methods=['POST'])
def open_session():
    data = request.get_json(silent=True) or {}
    code = (data.get('auth_code') or '').strip()
    cfg = current_app.config
    if len(code) < int(cfg.get('MIN_AUTH_CODE_LENGTH', 5)):
        raise ValidationError('Auth code is too short')

    if secrets.compare_digest(code.encode(), str(cfg['HOST_AUTH_CODE']).encode()):
        role = ROLE_HOST
    elif secrets.compare_digest(code.encode(), str(cfg['TEAM_AUTH_CODE']).encode()):
        role = ROLE_TEAM
    else:
        return jsonify({'error': 'Invalid auth code. Please check the code and try again.'}), 401

    # Keep the identity across re-entry so a team does not lose its record
    participant_id = current_user.participant_id if current_user.is_authenticated else uuid4().hex
    login_user(Participant(role, participant_id))
    current_app.logger.info(f"[session] participant={participant_id} role={role}")
    return jsonify({'role': role, 'participant_id': participant_id})


@games.route('/game/state', methods=['GET'])
@_require_role(ROLE_HOST, ROLE_TEAM)
def get_game_state():
    controller = _controller()
    if controller.game_state is None:
        return _unavailable(controller)
    return jsonify(_state_payload(controller))


@games.route('/game/advance', methods=['POST'])
@_require_role(ROLE_HOST)
def advance_question():
    data = request.get_json(silent=True) or {}
    controller = _controller()
    state = controller.advance_question(data.get('question_text') or '', data.get('correct_answer') or '')
    if state is None:
        return _unavailable(controller)
    schedule_question_close(current_app._get_current_object(), state)
    return jsonify(_state_payload(controller))


@games.route('/game/reset', methods=['POST'])
@_require_role(ROLE_HOST)
def reset_game():
    controller = _controller()
    if sessions().reset_session(current_user.participant_id) is None:
        return _unavailable(controller)
    current_app.logger.info(f"[reset] requested by host={current_user.participant_id}")
    return jsonify(_state_payload(controller))


@games.route('/game/leaderboard', methods=['GET'])
@_require_role(ROLE_HOST)
def get_leaderboard():
    controller = _controller()
    if controller.game_state is None:
        return _unavailable(controller)
    rows = []
    for row in controller.leaderboard():
        entry = row.to_dict()
        entry['elapsed_display'] = format_elapsed(row.elapsed_ms)
        rows.append(entry)
    return jsonify({
        'question_index': controller.game_state.question_index,
        'remaining_seconds': controller.remaining(),
        'rows': rows,
    })


@games.route('/game/standings', methods=['GET'])
@_require_role(ROLE_HOST)
def get_standings():
    controller = _controller()
    rows = controller.standings()
    if rows is None:
        return _unavailable(controller)
    return jsonify({'rows': [r.to_dict() for r in rows]})


@games.route('/teams', methods=['GET'])
@_require_role(ROLE_HOST)
def list_teams():
    controller = _controller()
    return jsonify({'teams': [t.to_dict() for t in controller.teams]})


@games.route('/teams/join', methods=['POST'])
@_require_role(ROLE_TEAM)
def join_team():
    data = request.get_json(silent=True) or {}
    controller = _controller()
    team = controller.join(data.get('name') or '')
    if team is None:
        return _unavailable(controller)
    return jsonify({'team': team.to_dict()}), 201


@games.route('/teams/me', methods=['GET'])
@_require_role(ROLE_TEAM)
def get_my_team():
    controller = _controller()
    remaining = controller.tick()
    status = controller.submission_status
    return jsonify({
        'team': controller.team.to_dict() if controller.team else None,
        'joined': controller.is_joined,
        'submission_status': status.value if status else None,
        'remaining_seconds': remaining,
    })


@games.route('/submissions', methods=['POST'])
@_require_role(ROLE_TEAM)
def submit_answer():
    data = request.get_json(silent=True) or {}
    controller = _controller()
    result = controller.submit_answer(data.get('answer') or '')
    if result is None:
        return _unavailable(controller)
    return jsonify(result.to_dict()), _OUTCOME_STATUS[result.outcome]
