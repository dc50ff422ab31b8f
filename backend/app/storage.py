"""Persistence collaborator for the realtime core.

Every public method is its own unit of work: it commits before returning, and
any SQLAlchemy failure is rolled back and re-raised as ``PersistenceError``.
Methods hand back plain dicts rather than ORM instances so callers never hold
on to rows across requests.
"""

import functools
import json
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from app import db
from app.errors import PersistenceError
from app.models import (
    BalanceQuestion, ChatMessage, GameParticipant, GameSession, Question, QuestionAnswer, Room,
    RoomMember, User, utcnow,
)


def _unit(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.logger.exception(f"[storage-error] op={fn.__name__}")
            raise PersistenceError(f'{fn.__name__} failed') from exc
    return wrapper


def session_snapshot(gs: GameSession) -> Dict[str, Any]:
    return {
        'id': gs.id,
        'room_id': gs.room_id,
        'game_type': gs.game_type,
        'status': gs.status,
        'created_by': gs.created_by,
        'current_round': gs.current_round or 0,
        'questions': gs.question_list(),
        'created_at': gs.created_at,
        'started_at': gs.started_at,
        'ended_at': gs.ended_at,
        'participants': [
            {'user_id': p.user_id, 'display_name': p.display_name, 'answers': p.answer_map()}
            for p in gs.participants
        ],
    }


class Storage:
    def __init__(self, logger):
        self.logger = logger

    # ---- users ----

    @_unit
    def user_profile(self, user_id: int) -> Optional[Dict[str, Any]]:
        user = db.session.get(User, user_id)
        return user.to_dict() if user else None

    # ---- rooms ----

    @_unit
    def room_exists(self, room_id: int) -> bool:
        return Room.query.filter_by(id=room_id, is_active=True).first() is not None

    @_unit
    def room_stats(self, room_id: int, since) -> Dict[str, Any]:
        room = Room.query.filter_by(id=room_id).first()
        return {
            'created_at': room.created_at if room else None,
            'total_answers': QuestionAnswer.query.filter_by(room_id=room_id).count(),
            'recent_answers': QuestionAnswer.query.filter(
                QuestionAnswer.room_id == room_id, QuestionAnswer.answered_at >= since,
            ).count(),
            'finished_games': GameSession.query.filter_by(room_id=room_id, status='finished').count(),
            'message_count': ChatMessage.query.filter_by(room_id=room_id).count(),
            'members': [m.to_dict() for m in RoomMember.query.filter_by(room_id=room_id).all()],
        }

    @_unit
    def user_stats(self, user_id: int) -> Dict[str, Any]:
        finished = (
            GameParticipant.query.join(GameSession)
            .filter(GameParticipant.user_id == user_id, GameSession.status == 'finished')
            .count()
        )
        return {
            'total_rooms': RoomMember.query.filter_by(user_id=user_id).count(),
            'total_answers': QuestionAnswer.query.filter_by(user_id=user_id).count(),
            'total_games': GameParticipant.query.filter_by(user_id=user_id).count(),
            'completed_games': finished,
        }

    # ---- prompted questions ----

    @_unit
    def list_questions(self, category: Optional[str] = None, level: Optional[int] = None) -> List[Dict[str, Any]]:
        query = Question.query
        if category:
            query = query.filter_by(category=category)
        if level is not None:
            query = query.filter_by(level=level)
        return [q.to_dict() for q in query.order_by(Question.id).all()]

    @_unit
    def question_exists(self, question_id: int) -> bool:
        return Question.query.filter_by(id=question_id).first() is not None

    @_unit
    def save_question_answer(self, room_id: int, question_id: int, user_id: int, answer_text: str,
                             answer_data=None) -> Tuple[Dict[str, Any], bool]:
        """Insert or overwrite a member's answer; returns (answer, updated)."""
        answer = QuestionAnswer.query.filter_by(room_id=room_id, question_id=question_id, user_id=user_id).first()
        updated = answer is not None
        if answer is None:
            answer = QuestionAnswer(room_id=room_id, question_id=question_id, user_id=user_id)
            db.session.add(answer)
        answer.answer_text = answer_text
        answer.answer_data = json.dumps(answer_data) if answer_data is not None else None
        answer.answered_at = utcnow()
        db.session.commit()
        return answer.to_dict(), updated

    @_unit
    def has_answered(self, room_id: int, question_id: int, user_id: int, since=None) -> bool:
        query = QuestionAnswer.query.filter_by(room_id=room_id, question_id=question_id, user_id=user_id)
        if since is not None:
            query = query.filter(QuestionAnswer.answered_at >= since)
        return query.first() is not None

    @_unit
    def room_answers(self, room_id: int, limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        rows = (
            QuestionAnswer.query.filter_by(room_id=room_id)
            .order_by(QuestionAnswer.answered_at.desc(), QuestionAnswer.id.desc())
            .offset(offset).limit(limit).all()
        )
        return [a.to_dict(include_related=True) for a in rows]

    @_unit
    def count_answers(self, room_id: int) -> int:
        return QuestionAnswer.query.filter_by(room_id=room_id).count()

    # ---- chat ----

    @_unit
    def create_message(self, room_id: int, user_id: int, text: str) -> Dict[str, Any]:
        msg = ChatMessage(room_id=room_id, user_id=user_id, message=text, created_at=utcnow())
        db.session.add(msg)
        db.session.commit()
        data = msg.to_dict()
        user = db.session.get(User, user_id)
        data['user'] = user.to_dict() if user else None
        return data

    @_unit
    def message_history(self, room_id: int, limit: int, before=None) -> List[Dict[str, Any]]:
        query = ChatMessage.query.filter_by(room_id=room_id)
        if before is not None:
            query = query.filter(ChatMessage.created_at < before)
        rows = query.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc()).limit(limit).all()
        # Oldest first so clients can append
        return [m.to_dict() for m in reversed(rows)]

    @_unit
    def count_messages(self, room_id: int, since=None) -> int:
        query = ChatMessage.query.filter_by(room_id=room_id)
        if since is not None:
            query = query.filter(ChatMessage.created_at > since)
        return query.count()

    # ---- game sessions ----

    @_unit
    def create_session(self, room_id: int, creator_id: int, game_type: str,
                       display_name: Optional[str] = None) -> Dict[str, Any]:
        gs = GameSession(room_id=room_id, created_by=creator_id, game_type=game_type,
                         status='waiting', current_round=0, created_at=utcnow())
        db.session.add(gs)
        db.session.flush()
        db.session.add(GameParticipant(session_id=gs.id, user_id=creator_id, display_name=display_name))
        db.session.commit()
        return session_snapshot(gs)

    @_unit
    def load_session(self, session_id: int) -> Optional[Dict[str, Any]]:
        gs = GameSession.query.filter_by(id=session_id).first()
        return session_snapshot(gs) if gs else None

    @_unit
    def active_sessions(self, room_id: Optional[int] = None) -> List[Dict[str, Any]]:
        query = GameSession.query.filter(GameSession.status.in_(['waiting', 'playing']))
        if room_id is not None:
            query = query.filter_by(room_id=room_id)
        return [session_snapshot(gs) for gs in query.order_by(GameSession.created_at.desc()).all()]

    @_unit
    def add_participant(self, session_id: int, user_id: int, display_name: Optional[str] = None) -> None:
        existing = GameParticipant.query.filter_by(session_id=session_id, user_id=user_id).first()
        if existing:
            return
        db.session.add(GameParticipant(session_id=session_id, user_id=user_id, display_name=display_name))
        db.session.commit()

    @_unit
    def start_session(self, session_id: int, questions: List[Dict[str, Any]], started_at) -> None:
        gs = db.session.get(GameSession, session_id)
        gs.status = 'playing'
        gs.current_round = 0
        gs.questions = json.dumps(questions)
        gs.started_at = started_at
        db.session.commit()

    @_unit
    def save_answers(self, session_id: int, user_id: int, answers: Dict[int, str]) -> None:
        participant = GameParticipant.query.filter_by(session_id=session_id, user_id=user_id).first()
        participant.answers = json.dumps({str(k): v for k, v in answers.items()})
        db.session.commit()

    @_unit
    def set_round(self, session_id: int, round_index: int) -> None:
        gs = db.session.get(GameSession, session_id)
        gs.current_round = round_index
        db.session.commit()

    @_unit
    def finish_session(self, session_id: int, ended_at) -> None:
        gs = db.session.get(GameSession, session_id)
        gs.status = 'finished'
        gs.ended_at = ended_at
        db.session.commit()

    @_unit
    def delete_sessions(self, session_ids: List[int], status: Optional[str] = None) -> List[int]:
        """Delete sessions and their participants; with ``status``, only rows still in it."""
        if not session_ids:
            return []
        query = GameSession.query.filter(GameSession.id.in_(session_ids))
        if status is not None:
            query = query.filter(GameSession.status == status)
        ids = [gs.id for gs in query.all()]
        if not ids:
            return []
        GameParticipant.query.filter(GameParticipant.session_id.in_(ids)).delete(synchronize_session=False)
        GameSession.query.filter(GameSession.id.in_(ids)).delete(synchronize_session=False)
        db.session.commit()
        return ids

    @_unit
    def stale_waiting_session_ids(self, cutoff, room_id: Optional[int] = None) -> List[int]:
        query = GameSession.query.filter(GameSession.status == 'waiting', GameSession.created_at < cutoff)
        if room_id is not None:
            query = query.filter_by(room_id=room_id)
        return [gs.id for gs in query.all()]


class QuestionSource:
    """Supplies balance-game questions in stable id order."""

    def __init__(self, logger):
        self.logger = logger

    def fetch(self, count: int) -> List[Dict[str, Any]]:
        try:
            rows = BalanceQuestion.query.order_by(BalanceQuestion.id).limit(count).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.logger.exception("[storage-error] op=fetch_questions")
            raise PersistenceError('fetch_questions failed') from exc
        return [q.to_dict() for q in rows]
