import hashlib
import random
from datetime import datetime, time

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from app.coordinator import get_coordinator
from app.errors import NotFoundError
from app.models import RoomMember, utcnow
from app.schemas import QuestionAnswerPayload, parse_payload


questions = Blueprint('questions', __name__)


def _int_arg(name, default, low, high):
    try:
        value = int(request.args.get(name, default))
    except ValueError:
        value = default
    return max(low, min(value, high))


def _is_member(room_id):
    return RoomMember.query.filter_by(room_id=room_id, user_id=current_user.id).first() is not None


def daily_index(room_id, day, count):
    """Same question for a room all day, different across rooms and days."""
    digest = hashlib.sha256(f"{day.isoformat()}:{room_id}".encode('utf-8')).hexdigest()
    return int(digest, 16) % count


@questions.route('', methods=['GET'])
@login_required
def list_questions():
    level = request.args.get('level', type=int)
    found = get_coordinator().storage.list_questions(request.args.get('category'), level)
    if request.args.get('random') == 'true':
        random.shuffle(found)
    limit = _int_arg('limit', 10, 1, 100)
    return jsonify({'success': True, 'questions': found[:limit]})


@questions.route('/random', methods=['GET'])
@login_required
def random_question():
    """
    Picks one question, skipping ids in ``exclude_ids`` unless that leaves none.
    """
    found = get_coordinator().storage.list_questions(level=request.args.get('level', type=int))
    if not found:
        return jsonify({'success': False, 'message': 'No questions available'})
    excluded = {part for part in request.args.get('exclude_ids', '').split(',') if part}
    available = [q for q in found if str(q['id']) not in excluded] or found
    return jsonify({'success': True, 'question': random.choice(available)})


@questions.route('/daily/<int:room_id>', methods=['GET'])
@login_required
def daily_question(room_id):
    if not _is_member(room_id):
        return jsonify({'error': 'Not a member of this room'}), 403
    storage = get_coordinator().storage
    found = storage.list_questions()
    if not found:
        return jsonify({'success': True, 'question': None, 'answered': False, 'message': 'No questions available'})

    today = utcnow().date()
    question = found[daily_index(room_id, today, len(found))]
    answered = storage.has_answered(room_id, question['id'], current_user.id, since=datetime.combine(today, time.min))
    return jsonify({'success': True, 'question': question, 'answered': answered})


@questions.route('/<int:question_id>/answer', methods=['POST'])
@login_required
def submit_answer(question_id):
    """
    Records the current user's answer in a room; answering again overwrites it.
    """
    payload = parse_payload(QuestionAnswerPayload, request.get_json(silent=True) or {})
    if not _is_member(payload.room_id):
        return jsonify({'error': 'Not a member of this room'}), 403
    storage = get_coordinator().storage
    if not storage.question_exists(question_id):
        raise NotFoundError('Question not found')

    answer, updated = storage.save_question_answer(
        payload.room_id, question_id, current_user.id, payload.answer_text, payload.answer_data,
    )
    current_app.logger.info(
        f"[question-answer] room={payload.room_id} question={question_id} user={current_user.id} updated={updated}"
    )
    return jsonify({'success': True, 'answer': answer, 'updated': updated}), 200 if updated else 201


@questions.route('/room/<int:room_id>/answers', methods=['GET'])
@login_required
def room_answers(room_id):
    if not _is_member(room_id):
        return jsonify({'error': 'Not a member of this room'}), 403
    limit = _int_arg('limit', 20, 1, 100)
    offset = _int_arg('offset', 0, 0, 1_000_000)
    answers = get_coordinator().storage.room_answers(room_id, limit, offset)
    return jsonify({'success': True, 'answers': answers})
