"""Realtime room coordination: presence, room fan-out and chat relay.

These services own the process-wide live state (who is connected, which
rooms they are subscribed to) and are constructed once per app by the
coordinator. Socket handlers and HTTP routes call into them; they never
import transport objects directly.
"""
