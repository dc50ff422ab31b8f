"""Game domain services: the session state machine, the per-room session
directory and the stale-session sweep.

This package contains the game mechanics that HTTP routes and socket
handlers call into, keeping transport concerns separated from core game
logic.
"""

from .machine import GameSessionMachine, round_summary, WAITING, PLAYING, FINISHED
from .directory import SessionDirectory

__all__ = ['GameSessionMachine', 'SessionDirectory', 'round_summary', 'WAITING', 'PLAYING', 'FINISHED']
