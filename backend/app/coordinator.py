from flask import current_app

from app.services.games import SessionDirectory
from app.services.realtime.broadcast import RoomBroadcaster
from app.services.realtime.chat import ChatRelay
from app.services.realtime.presence import PresenceRegistry
from app.storage import QuestionSource, Storage

EXTENSION_KEY = 'icebreaker'


class Coordinator:
    """Owns the process-wide realtime state for one Flask app.

    Built once in ``create_app`` and torn down with the app, so every test
    app gets its own presence map and session directory.
    """

    def __init__(self, app, socketio):
        cfg = app.config
        logger = app.logger
        self.storage = Storage(logger)
        self.question_source = QuestionSource(logger)
        self.broadcaster = RoomBroadcaster(socketio, cfg.get('SOCKETIO_NAMESPACE', '/ws'), logger)
        self.presence = PresenceRegistry(self.broadcaster, logger)
        self.chat = ChatRelay(self.storage, self.broadcaster, logger)
        self.directory = SessionDirectory(
            self.storage, self.question_source, self.presence, self.broadcaster, logger,
            min_players=int(cfg.get('MIN_PLAYERS', 2)),
            questions_per_game=int(cfg.get('QUESTIONS_PER_GAME', 10)),
            stale_after_hours=int(cfg.get('STALE_SESSION_HOURS', 24)),
        )


def init_coordinator(app, socketio) -> Coordinator:
    coordinator = Coordinator(app, socketio)
    app.extensions[EXTENSION_KEY] = coordinator
    return coordinator


def get_coordinator() -> Coordinator:
    """Return the current app's coordinator, loading active sessions on first use."""
    coordinator = current_app.extensions[EXTENSION_KEY]
    coordinator.directory.load()
    return coordinator
