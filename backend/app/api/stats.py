from datetime import timedelta

from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from app.coordinator import get_coordinator
from app.models import RoomMember, utcnow
from app.services.stats import intimacy_score


stats = Blueprint('stats', __name__)

RECENT_ACTIVITY_DAYS = 7


@stats.route('/room/<int:room_id>', methods=['GET'])
@login_required
def room_stats(room_id):
    """
    Activity counters and the intimacy score for a room the user belongs to.
    """
    if RoomMember.query.filter_by(room_id=room_id, user_id=current_user.id).first() is None:
        return jsonify({'error': 'Not a member of this room'}), 403

    now = utcnow()
    raw = get_coordinator().storage.room_stats(room_id, since=now - timedelta(days=RECENT_ACTIVITY_DAYS))
    days_active = (now - raw['created_at']).days if raw['created_at'] else 0
    score = intimacy_score(
        total_answers=raw['total_answers'],
        total_games=raw['finished_games'],
        message_count=raw['message_count'],
        days_active=days_active,
    )
    return jsonify({'success': True, 'stats': {
        'room_id': room_id,
        'total_answers': raw['total_answers'],
        'total_games': raw['finished_games'],
        'message_count': raw['message_count'],
        'days_active': days_active,
        'recent_activity': raw['recent_answers'],
        'members': raw['members'],
        'intimacy_score': score,
    }})


@stats.route('/user/<int:user_id>', methods=['GET'])
@login_required
def user_stats(user_id):
    if user_id != current_user.id:
        return jsonify({'error': 'Can only view own stats'}), 403
    found = get_coordinator().storage.user_stats(user_id)
    return jsonify({'success': True, 'stats': dict(found, user_id=user_id)})
