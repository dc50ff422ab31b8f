import time
import uuid
from typing import Any, Dict, Optional

from app.errors import PersistenceError
from app.models import isoformat, utcnow

ANSWER_PREVIEW_CHARS = 50


def placeholder_message_id() -> str:
    return f"temp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class ChatRelay:
    """Best-effort chat: persist if possible, always broadcast.

    Consumers reconcile optimistic copies by ``id`` once known and by
    ``temp_id`` before that.
    """

    def __init__(self, storage, broadcaster, logger):
        self.storage = storage
        self.broadcaster = broadcaster
        self.logger = logger

    def relay(self, room_id: int, sender, text: Optional[str], temp_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        text = (text or '').strip()
        if not text:
            self.logger.info(f"[chat-reject] room={room_id} user={sender.user_id} empty message")
            return None

        try:
            saved = self.storage.create_message(room_id, sender.user_id, text)
        except PersistenceError as exc:
            self.logger.warning(f"[chat-unsaved] room={room_id} user={sender.user_id} error={exc.message}")
            message = {
                'id': placeholder_message_id(),
                'temp_id': temp_id,
                'room_id': room_id,
                'user_id': sender.user_id,
                'display_name': sender.display_name,
                'message': text,
                'timestamp': isoformat(utcnow()),
                'saved': False,
            }
        else:
            profile = saved.get('user') or {}
            message = {
                'id': saved['id'],
                'temp_id': temp_id,
                'room_id': room_id,
                'user_id': saved['user_id'],
                'display_name': profile.get('display_name') or sender.display_name,
                'message': saved['message'],
                'created_at': saved['created_at'],
                'timestamp': saved['created_at'],
                'user': saved.get('user'),
                'saved': True,
            }

        # Whole room, sender included, so the optimistic copy gets replaced
        self.broadcaster.publish(room_id, 'new_message', message)
        return message

    def typing(self, sid: str, room_id: int, sender, started: bool) -> None:
        if started:
            self.broadcaster.publish_except(room_id, sid, 'user_typing', {
                'room_id': room_id,
                'user_id': sender.user_id,
                'display_name': sender.display_name,
            })
        else:
            self.broadcaster.publish_except(room_id, sid, 'user_stopped_typing', {
                'room_id': room_id,
                'user_id': sender.user_id,
            })

    def notify_answer(self, sid: str, room_id: int, sender, question_text: str, answer_text: str,
                      question_id: Optional[int] = None) -> None:
        preview = answer_text
        if len(preview) > ANSWER_PREVIEW_CHARS:
            preview = preview[:ANSWER_PREVIEW_CHARS] + '...'
        self.broadcaster.publish_except(room_id, sid, 'answer_notification', {
            'room_id': room_id,
            'user_id': sender.user_id,
            'display_name': sender.display_name,
            'question_id': question_id,
            'question_text': question_text,
            'answer_text': preview,
            'timestamp': isoformat(utcnow()),
        })

        try:
            count = self.storage.count_answers(room_id)
        except PersistenceError as exc:
            self.logger.warning(f"[answer-count] room={room_id} error={exc.message}")
            return
        self.broadcaster.publish(room_id, 'answer_count_update', {'room_id': room_id, 'count': count})
