from app import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json
import string
import random


def utcnow():
    """Naive UTC timestamp; SQLite drops tzinfo so we never store it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + 'Z' if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(64), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def name(self):
        return self.display_name or self.username

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'display_name': self.name,
        }


def generate_room_code(length=8):
    """Generate a unique invite code for a room."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not Room.query.filter_by(room_code=code).first():
            return code


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(16), unique=True, index=True, nullable=False)
    room_name = db.Column(db.String(128), nullable=False)
    room_type = db.Column(db.String(32), nullable=True)  # friends, family, couple, team
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    members = db.relationship('RoomMember', back_populates='room', cascade='all, delete-orphan')

    def to_dict(self, include_members=False):
        data = {
            'id': self.id,
            'room_code': self.room_code,
            'room_name': self.room_name,
            'room_type': self.room_type,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': isoformat(self.created_at),
        }
        if include_members:
            data['members'] = [m.to_dict() for m in self.members]
        return data


class RoomMember(db.Model):
    __tablename__ = 'room_member'
    __table_args__ = (db.UniqueConstraint('room_id', 'user_id', name='uq_room_member'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    role = db.Column(db.String(16), default='member', nullable=False)  # owner, member
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    room = db.relationship('Room', back_populates='members')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'room_id': self.room_id,
            'user_id': self.user_id,
            'role': self.role,
            'joined_at': isoformat(self.joined_at),
            'user': self.user.to_dict() if self.user else None,
        }


class ChatMessage(db.Model):
    __tablename__ = 'chat_message'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'user_id': self.user_id,
            'message': self.message,
            'created_at': isoformat(self.created_at),
        }


class BalanceQuestion(db.Model):
    __tablename__ = 'balance_question'
    id = db.Column(db.Integer, primary_key=True)
    question = db.Column(db.Text, nullable=False)
    option_a = db.Column(db.String(256), nullable=False)
    option_b = db.Column(db.String(256), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'question': self.question,
            'option_a': self.option_a,
            'option_b': self.option_b,
        }


class Question(db.Model):
    """A prompted question members answer in free text."""
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    question_text = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(32), nullable=True, index=True)
    level = db.Column(db.Integer, default=1, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'question_text': self.question_text,
            'category': self.category,
            'level': self.level,
        }


class QuestionAnswer(db.Model):
    __tablename__ = 'question_answer'
    __table_args__ = (db.UniqueConstraint('room_id', 'question_id', 'user_id', name='uq_question_answer'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    answer_text = db.Column(db.Text, nullable=False)
    answer_data = db.Column(db.Text, nullable=True)  # JSON-encoded extras from the client
    answered_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    question = db.relationship('Question')
    user = db.relationship('User')

    def to_dict(self, include_related=False):
        try:
            extra = json.loads(self.answer_data) if self.answer_data else None
        except ValueError:
            extra = None
        data = {
            'id': self.id,
            'room_id': self.room_id,
            'question_id': self.question_id,
            'user_id': self.user_id,
            'answer_text': self.answer_text,
            'answer_data': extra,
            'answered_at': isoformat(self.answered_at),
        }
        if include_related:
            data['question'] = self.question.to_dict() if self.question else None
            data['user'] = self.user.to_dict() if self.user else None
        return data


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    game_type = db.Column(db.String(32), default='balance', nullable=False)
    status = db.Column(db.String(16), default='waiting', nullable=False, index=True)  # waiting, playing, finished
    created_by = db.Column(db.Integer, nullable=False)
    current_round = db.Column(db.Integer, default=0, nullable=False)
    questions = db.Column(db.Text, nullable=True)  # JSON-encoded list of question dicts
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    participants = db.relationship(
        'GameParticipant', back_populates='session',
        cascade='all, delete-orphan', order_by='GameParticipant.id',
    )

    def question_list(self):
        try:
            return json.loads(self.questions) if self.questions else []
        except ValueError:
            return []


class GameParticipant(db.Model):
    __tablename__ = 'game_participant'
    __table_args__ = (db.UniqueConstraint('session_id', 'user_id', name='uq_game_participant'),)
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False)
    display_name = db.Column(db.String(64), nullable=True)
    answers = db.Column(db.Text, nullable=True)  # JSON-encoded {round_index: answer}
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    session = db.relationship('GameSession', back_populates='participants')

    def answer_map(self):
        try:
            raw = json.loads(self.answers) if self.answers else {}
        except ValueError:
            raw = {}
        return {int(k): v for k, v in raw.items()}
