"""Short-lived tokens that let the socket handshake prove an HTTP login."""

from typing import Optional

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.errors import AuthenticationError
from app.services.realtime.presence import Identity

SALT = 'icebreaker-socket-auth'


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=SALT)


def issue_socket_token(user) -> str:
    return _serializer().dumps({'user_id': user.id, 'display_name': user.name})


def verify_socket_token(token: str) -> Identity:
    max_age = int(current_app.config.get('SOCKET_TOKEN_MAX_AGE_SEC', 300))
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise AuthenticationError('Socket token expired') from exc
    except BadSignature as exc:
        raise AuthenticationError('Invalid socket token') from exc
    return Identity(data['user_id'], data.get('display_name'))


def resolve_identity(payload) -> Optional[Identity]:
    """Pick the identity for an authenticate event.

    A signed token always wins over asserted fields. Without one, the
    asserted identity is accepted unless REALTIME_REQUIRE_TOKEN is set.
    """
    if payload.token:
        return verify_socket_token(payload.token)
    if current_app.config.get('REALTIME_REQUIRE_TOKEN'):
        raise AuthenticationError('A socket token is required')
    if payload.user_id is None:
        return None
    return Identity(payload.user_id, payload.display_name)
