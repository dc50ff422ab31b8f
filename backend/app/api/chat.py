from datetime import datetime

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from app.coordinator import get_coordinator
from app.models import RoomMember
from app.schemas import ChatSendPayload, parse_payload
from app.services.realtime.presence import Identity


chat = Blueprint('chat', __name__)


def _parse_timestamp(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.rstrip('Z'))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def _is_member(room_id):
    return RoomMember.query.filter_by(room_id=room_id, user_id=current_user.id).first() is not None


@chat.route('/send', methods=['POST'])
@login_required
def send_message():
    """
    Sends a chat message through the relay; storage failures still deliver.
    """
    payload = parse_payload(ChatSendPayload, request.get_json(silent=True) or {})
    if not _is_member(payload.room_id):
        return jsonify({'error': 'Not a member of this room'}), 403

    sender = Identity(current_user.id, current_user.name)
    relayed = get_coordinator().chat.relay(payload.room_id, sender, payload.message, payload.temp_id)
    status = 201 if relayed['saved'] else 202
    return jsonify({'success': True, 'message': relayed}), status


@chat.route('/room/<int:room_id>', methods=['GET'])
@login_required
def history(room_id):
    if not _is_member(room_id):
        return jsonify({'error': 'Not a member of this room'}), 403
    try:
        limit = int(request.args.get('limit', current_app.config.get('CHAT_HISTORY_LIMIT', 50)))
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400
    limit = max(1, min(limit, 200))
    before = _parse_timestamp(request.args.get('before'))

    messages = get_coordinator().storage.message_history(room_id, limit, before)
    return jsonify({'success': True, 'messages': messages, 'has_more': len(messages) == limit})


@chat.route('/room/<int:room_id>/recent', methods=['GET'])
@login_required
def recent(room_id):
    if not _is_member(room_id):
        return jsonify({'error': 'Not a member of this room'}), 403
    since = _parse_timestamp(request.args.get('since'))
    count = get_coordinator().storage.count_messages(room_id, since)
    return jsonify({'success': True, 'count': count})
