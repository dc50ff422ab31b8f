from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from app.coordinator import get_coordinator
from app.schemas import AnswerPayload, CreateGamePayload, parse_payload


games = Blueprint('games', __name__)

# Typed errors raised below are rendered by the app-wide IcebreakerError handler


@games.route('/create', methods=['POST'])
@login_required
def create_game():
    """
    Creates a game session in a room; the creator joins automatically.
    """
    payload = parse_payload(CreateGamePayload, request.get_json(silent=True) or {})
    machine = get_coordinator().directory.create_session(
        payload.room_id, current_user.id, payload.game_type, current_user.name,
    )
    return jsonify({'success': True, 'session': machine.to_dict()}), 201


@games.route('/join/<int:session_id>', methods=['POST'])
@login_required
def join_game(session_id):
    machine = get_coordinator().directory.get(session_id)
    participants = machine.join(current_user.id, current_user.name)
    return jsonify({'success': True, 'session': machine.to_dict(), 'participants': participants})


@games.route('/start/<int:session_id>', methods=['POST'])
@login_required
def start_game(session_id):
    started = get_coordinator().directory.get(session_id).start(current_user.id)
    return jsonify({
        'success': True,
        'message': 'Game started',
        'first_question': started['question'],
        'participants': started['participants'],
    })


@games.route('/answer/<int:session_id>', methods=['POST'])
@login_required
def submit_answer(session_id):
    data = dict(request.get_json(silent=True) or {}, session_id=session_id)
    # Older clients send the round as question_index
    if 'round_index' not in data and 'question_index' in data:
        data['round_index'] = data['question_index']
    payload = parse_payload(AnswerPayload, data)
    result = get_coordinator().directory.get(session_id).submit_answer(
        current_user.id, payload.round_index, payload.answer,
    )
    return jsonify(dict({'success': True}, **result))


@games.route('/next/<int:session_id>', methods=['POST'])
@login_required
def next_question(session_id):
    result = get_coordinator().directory.get(session_id).advance(current_user.id)
    return jsonify(dict({'success': True}, **result))


@games.route('/session/<int:session_id>', methods=['GET'])
@login_required
def get_session(session_id):
    machine = get_coordinator().directory.get(session_id)
    return jsonify({'success': True, 'session': machine.to_dict()})


@games.route('/room/<int:room_id>/active', methods=['GET'])
@login_required
def active_sessions(room_id):
    return jsonify({'success': True, 'sessions': get_coordinator().directory.list_active(room_id)})


@games.route('/session/<int:session_id>', methods=['DELETE'])
@login_required
def delete_session(session_id):
    get_coordinator().directory.get(session_id).delete(current_user.id)
    return jsonify({'success': True, 'message': 'Game session deleted successfully'})


@games.route('/room/<int:room_id>/cleanup', methods=['DELETE'])
@login_required
def cleanup_room(room_id):
    """
    Removes waiting sessions in this room older than the retention window.
    """
    cleaned = get_coordinator().directory.sweep(room_id=room_id)
    return jsonify({'success': True, 'cleaned': cleaned})
