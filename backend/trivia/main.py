from flask import Blueprint, jsonify

from trivia.errors import StoreUnavailable
from trivia.services.games.controllers import sessions

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the trivia game server!'})


@main.route('/health')
def health():
    try:
        state = sessions().machine.current()
    except StoreUnavailable:
        return jsonify({'status': 'unavailable'}), 503
    return jsonify({'status': 'ok', 'game_status': state.status.value})
