import functools

from flask import current_app, request
from flask_socketio import emit

from app import socketio
from app.auth import resolve_identity
from app.coordinator import get_coordinator
from app.errors import AuthenticationError, IcebreakerError, ValidationError
from app.schemas import (
    AnswerNotificationPayload, AnswerPayload, AuthenticatePayload, ChatPayload, CreateGamePayload,
    RoomPayload, SessionPayload, parse_payload,
)


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _require_identity():
    identity = get_coordinator().presence.identity_for(_get_sid())
    if identity is None:
        raise AuthenticationError('Authenticate first')
    return identity


def request_event(fn):
    """Request-shaped events: typed failures go back to the caller as an ack."""
    @functools.wraps(fn)
    def wrapper(data=None):
        try:
            result = fn(data or {})
        except IcebreakerError as exc:
            current_app.logger.info(f"[socket-fail] event={fn.__name__} sid={_get_sid()} code={exc.code} msg={exc.message}")
            emit('error', exc.to_dict())
            return {'success': False, 'error': exc.to_dict()}
        return dict({'success': True}, **(result or {}))
    return wrapper


def fire_and_forget(fn):
    """Event-shaped events: only malformed or unauthenticated input is reported."""
    @functools.wraps(fn)
    def wrapper(data=None):
        try:
            fn(data or {})
        except (ValidationError, AuthenticationError) as exc:
            emit('error', exc.to_dict())
        except IcebreakerError as exc:
            current_app.logger.warning(f"[socket-absorbed] event={fn.__name__} sid={_get_sid()} code={exc.code}")
    return wrapper


# ---- connection & presence ----

def handle_connect():
    get_coordinator().presence.connect(_get_sid())
    emit('connected', {'message': f"Connected to {current_app.config.get('SOCKETIO_NAMESPACE', '/ws')}"})


def handle_disconnect(*args):
    get_coordinator().presence.disconnect(_get_sid())


@fire_and_forget
def handle_authenticate(data):
    payload = parse_payload(AuthenticatePayload, data)
    identity = resolve_identity(payload)
    if not get_coordinator().presence.authenticate(_get_sid(), identity):
        return
    emit('auth_success', {
        'message': 'Successfully authenticated',
        'user_id': identity.user_id,
        'display_name': identity.display_name,
    })


@fire_and_forget
def handle_join_room(data):
    payload = parse_payload(RoomPayload, data)
    get_coordinator().presence.join_room(_get_sid(), payload.room_id)


@fire_and_forget
def handle_leave_room(data):
    payload = parse_payload(RoomPayload, data)
    get_coordinator().presence.leave_room(_get_sid(), payload.room_id)


# ---- chat ----

def _in_room(room_id) -> bool:
    if room_id in get_coordinator().presence.rooms_for(_get_sid()):
        return True
    current_app.logger.info(f"[socket-drop] sid={_get_sid()} room={room_id} not subscribed")
    return False


@fire_and_forget
def handle_send_chat(data):
    payload = parse_payload(ChatPayload, data)
    identity = _require_identity()
    if _in_room(payload.room_id):
        get_coordinator().chat.relay(payload.room_id, identity, payload.text, payload.temp_id)


@fire_and_forget
def handle_start_typing(data):
    payload = parse_payload(RoomPayload, data)
    identity = _require_identity()
    if _in_room(payload.room_id):
        get_coordinator().chat.typing(_get_sid(), payload.room_id, identity, started=True)


@fire_and_forget
def handle_stop_typing(data):
    payload = parse_payload(RoomPayload, data)
    identity = _require_identity()
    if _in_room(payload.room_id):
        get_coordinator().chat.typing(_get_sid(), payload.room_id, identity, started=False)


@fire_and_forget
def handle_new_answer(data):
    payload = parse_payload(AnswerNotificationPayload, data)
    identity = _require_identity()
    if _in_room(payload.room_id):
        get_coordinator().chat.notify_answer(
            _get_sid(), payload.room_id, identity, payload.question_text, payload.answer_text,
            question_id=payload.question_id,
        )


# ---- games ----

@request_event
def handle_create_game(data):
    payload = parse_payload(CreateGamePayload, data)
    identity = _require_identity()
    machine = get_coordinator().directory.create_session(
        payload.room_id, identity.user_id, payload.game_type, identity.display_name,
    )
    return {'session': machine.to_dict()}


@request_event
def handle_join_game(data):
    payload = parse_payload(SessionPayload, data)
    identity = _require_identity()
    machine = get_coordinator().directory.get(payload.session_id)
    participants = machine.join(identity.user_id, identity.display_name)
    return {'session': machine.to_dict(), 'participants': participants}


@request_event
def handle_start_game(data):
    payload = parse_payload(SessionPayload, data)
    identity = _require_identity()
    started = get_coordinator().directory.get(payload.session_id).start(identity.user_id)
    return {'first_question': started['question'], 'participants': started['participants']}


@request_event
def handle_submit_answer(data):
    payload = parse_payload(AnswerPayload, data)
    identity = _require_identity()
    machine = get_coordinator().directory.get(payload.session_id)
    return machine.submit_answer(identity.user_id, payload.round_index, payload.answer)


@request_event
def handle_advance_round(data):
    payload = parse_payload(SessionPayload, data)
    identity = _require_identity()
    return get_coordinator().directory.get(payload.session_id).advance(identity.user_id)


@request_event
def handle_delete_game(data):
    payload = parse_payload(SessionPayload, data)
    identity = _require_identity()
    get_coordinator().directory.get(payload.session_id).delete(identity.user_id)
    return {'session_id': payload.session_id}


def handle_ping(data):
    emit('pong', data or {})


HANDLERS = {
    'connect': handle_connect,
    'disconnect': handle_disconnect,
    'authenticate': handle_authenticate,
    'join_room': handle_join_room,
    'leave_room': handle_leave_room,
    'send_chat': handle_send_chat,
    'start_typing': handle_start_typing,
    'stop_typing': handle_stop_typing,
    'new_answer': handle_new_answer,
    'create_game': handle_create_game,
    'join_game': handle_join_game,
    'start_game': handle_start_game,
    'submit_answer': handle_submit_answer,
    'advance_round': handle_advance_round,
    'delete_game': handle_delete_game,
    'ping': handle_ping,
}


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register every realtime event handler on the given namespace."""
    for event, handler in HANDLERS.items():
        socketio.on_event(event, handler, namespace=namespace)
