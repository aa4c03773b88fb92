from flask_socketio import join_room, leave_room, emit

from trivia import socketio, store
from trivia.errors import StoreUnavailable
from trivia.services.games.controllers import sessions
from trivia.store import GAME_STATE, SUBMISSIONS, TEAMS

NAMESPACE = '/ws'
GAME_ROOM = 'game:master'


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_game(data=None):
    join_room(GAME_ROOM)
    emit('joined', {'room': GAME_ROOM})
    # Late joiners get the current value straight away
    try:
        state = sessions().machine.current()
    except StoreUnavailable:
        emit('error', {'message': 'Game store unavailable'})
        return
    emit('state_update', {'game': state.to_dict()})


def handle_leave_game(data=None):
    leave_room(GAME_ROOM)
    emit('left', {'room': GAME_ROOM})


def handle_ping(data):
    emit('pong', data or {})


def _public_state(state):
    return {'game': state.to_dict() if state else None}


def register_store_broadcasts(flask_app) -> None:
    """Forward every committed store change to the game room."""

    def _state_changed(state):
        socketio.emit('state_update', _public_state(state), to=GAME_ROOM, namespace=NAMESPACE)

    def _roster_changed(teams):
        socketio.emit('roster_update', {'teams': [t.to_dict() for t in teams]}, to=GAME_ROOM, namespace=NAMESPACE)

    def _submissions_changed(submissions):
        # Answers stay private to the host; the room only learns who has submitted
        payload = [{'team_id': s.team_id, 'question_index': s.question_index} for s in submissions]
        socketio.emit('submissions_update', {'submissions': payload}, to=GAME_ROOM, namespace=NAMESPACE)

    with flask_app.app_context():
        store.subscribe(GAME_STATE, _state_changed, deliver_initial=False)
        store.subscribe(TEAMS, _roster_changed, deliver_initial=False)
        store.subscribe(SUBMISSIONS, _submissions_changed, deliver_initial=False)


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('join_game', handle_join_game, namespace=NAMESPACE)
    socketio.on_event('leave_game', handle_leave_game, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
