from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from app import db
from app.coordinator import get_coordinator
from app.models import ChatMessage, GameSession, QuestionAnswer, Room, RoomMember, generate_room_code
from app.schemas import CreateRoomPayload, JoinRoomPayload, parse_payload


rooms = Blueprint('rooms', __name__)


def _membership(room_id, user_id):
    return RoomMember.query.filter_by(room_id=room_id, user_id=user_id).first()


@rooms.route('', methods=['POST'])
@login_required
def create_room():
    """
    Creates a room and adds the current user as its owner.
    """
    payload = parse_payload(CreateRoomPayload, request.get_json(silent=True) or {})
    room = Room(
        room_code=generate_room_code(int(current_app.config.get('ROOM_CODE_LENGTH', 8))),
        room_name=payload.room_name,
        room_type=payload.room_type,
        created_by=current_user.id,
    )
    db.session.add(room)
    db.session.flush()
    db.session.add(RoomMember(room_id=room.id, user_id=current_user.id, role='owner'))
    db.session.commit()
    current_app.logger.info(f"[room-create] room={room.id} owner={current_user.id}")
    return jsonify({'success': True, 'room': room.to_dict()}), 201


@rooms.route('/join', methods=['POST'])
@login_required
def join_room():
    """
    Joins a room by its invite code.
    """
    payload = parse_payload(JoinRoomPayload, request.get_json(silent=True) or {})
    room_code = payload.room_code.upper()
    room = Room.query.filter_by(room_code=room_code, is_active=True).first()
    if not room:
        return jsonify({'error': 'Room not found'}), 404

    if _membership(room.id, current_user.id):
        return jsonify({'error': 'Already a member'}), 409

    db.session.add(RoomMember(room_id=room.id, user_id=current_user.id, role='member'))
    db.session.commit()
    return jsonify({'success': True, 'room': room.to_dict()}), 200


@rooms.route('/my-rooms', methods=['GET'])
@login_required
def my_rooms():
    memberships = RoomMember.query.filter_by(user_id=current_user.id).all()
    return jsonify({
        'success': True,
        'rooms': [
            {'room_id': m.room_id, 'role': m.role, 'joined_at': m.to_dict()['joined_at'], 'room': m.room.to_dict()}
            for m in memberships
        ],
    })


@rooms.route('/<int:room_id>', methods=['GET'])
@login_required
def room_detail(room_id):
    if not _membership(room_id, current_user.id):
        return jsonify({'error': 'Not a member of this room'}), 403
    room = db.get_or_404(Room, room_id)
    payload = room.to_dict(include_members=True)
    payload['online_users'] = sorted(get_coordinator().presence.online_users(room_id))
    return jsonify({'success': True, 'room': payload})


@rooms.route('/<int:room_id>', methods=['DELETE'])
@login_required
def delete_room(room_id):
    """
    Deletes a room. Only the owner may do this; connected members are told.
    """
    room = db.session.get(Room, room_id)
    if not room:
        return jsonify({'error': 'Room not found'}), 404
    if room.created_by != current_user.id:
        return jsonify({'error': 'Only room owner can delete the room'}), 403

    coordinator = get_coordinator()
    live = coordinator.directory.active_session_for(room_id)
    if live is not None:
        live.expire()
        coordinator.directory.unregister(live)
    session_ids = [gs.id for gs in GameSession.query.filter_by(room_id=room_id).all()]
    coordinator.storage.delete_sessions(session_ids)
    ChatMessage.query.filter_by(room_id=room_id).delete()
    QuestionAnswer.query.filter_by(room_id=room_id).delete()
    db.session.delete(room)
    db.session.commit()
    current_app.logger.info(f"[room-delete] room={room_id}")
    coordinator.broadcaster.publish(room_id, 'room_deleted', {'room_id': room_id})
    return jsonify({'success': True, 'message': 'Room deleted successfully'})


@rooms.route('/<int:room_id>/leave', methods=['POST'])
@login_required
def leave_room(room_id):
    member = _membership(room_id, current_user.id)
    if not member:
        return jsonify({'error': 'Not a member of this room'}), 404
    if member.role == 'owner':
        return jsonify({'error': 'Room owner cannot leave. Delete the room instead.'}), 400

    db.session.delete(member)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Left room successfully'})
