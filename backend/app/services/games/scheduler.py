import time
from typing import Set

from app import socketio
from app.errors import PersistenceError


_scheduled_apps: Set[int] = set()


def schedule_session_sweep(app) -> None:
    """Run the stale-session sweep periodically in a background task.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - No-ops when SESSION_SWEEP_INTERVAL_SEC is 0
    - Ensures a single worker per app
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    interval = int(app.config.get('SESSION_SWEEP_INTERVAL_SEC', 3600))
    if interval <= 0:
        return
    if id(app) in _scheduled_apps:
        app.logger.info("[sweep-skip] already scheduled")
        return
    _scheduled_apps.add(id(app))
    app.logger.info(f"[sweep-set] interval={interval}s")

    def _worker(delay: int):
        from app.coordinator import get_coordinator
        while True:
            time.sleep(delay)
            with app.app_context():
                try:
                    removed = get_coordinator().directory.sweep()
                except PersistenceError:
                    # Already logged by storage; try again next tick
                    continue
                if removed:
                    app.logger.info(f"[sweep-fire] removed={removed}")

    socketio.start_background_task(_worker, interval)
