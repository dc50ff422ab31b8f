"""Inbound payloads for realtime events and JSON request bodies.

Every Socket.IO event body and every JSON body the blueprints read is parsed
into one of these models before the handler touches it; malformed bodies
become ``ValidationError``.
"""

from typing import Any, Dict, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.errors import ValidationError


class EventPayload(BaseModel):
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)


class AuthenticatePayload(EventPayload):
    user_id: Optional[int] = None
    display_name: Optional[str] = Field(default=None, max_length=64)
    token: Optional[str] = None


class RoomPayload(EventPayload):
    room_id: int


class ChatPayload(RoomPayload):
    # Emptiness is the relay's call, not a schema error
    text: str = Field(default='', max_length=2000)
    temp_id: Optional[str] = Field(default=None, max_length=64)


class AnswerNotificationPayload(RoomPayload):
    question_id: Optional[int] = None
    question_text: str = ''
    answer_text: str = ''


class CreateGamePayload(RoomPayload):
    game_type: Literal['balance'] = 'balance'


class SessionPayload(EventPayload):
    session_id: int


class AnswerPayload(SessionPayload):
    round_index: int = Field(ge=0)
    answer: Literal['A', 'B']


# ---- HTTP bodies ----

class CreateRoomPayload(EventPayload):
    room_name: str = Field(min_length=1, max_length=128)
    room_type: Optional[str] = Field(default=None, max_length=32)


class JoinRoomPayload(EventPayload):
    room_code: str = Field(min_length=1, max_length=16)


class ChatSendPayload(RoomPayload):
    message: str = Field(min_length=1, max_length=2000)
    temp_id: Optional[str] = Field(default=None, max_length=64)


class QuestionAnswerPayload(RoomPayload):
    answer_text: str = Field(min_length=1, max_length=4000)
    answer_data: Optional[Dict[str, Any]] = None


P = TypeVar('P', bound=EventPayload)


def parse_payload(model: Type[P], data) -> P:
    if not isinstance(data, dict):
        raise ValidationError('Event payload must be an object')
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        details = [
            {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
            for err in exc.errors()
        ]
        raise ValidationError(f'Invalid {model.__name__}', details=details) from exc
