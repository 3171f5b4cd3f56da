"""
Core utilities and modules.

Public API:
    - EventBus: Thread-safe publish/subscribe channel
    - UploadManagerSnapshot: Immutable upload manager state view

Usage:
    from core.event_bus import EventBus

    bus = EventBus()
    bus.subscribe("state-changed", lambda event, snapshot: print(snapshot))
"""

from core.event_bus import ALL_EVENTS, EventBus, UploadManagerSnapshot

__all__ = [
    "ALL_EVENTS",
    "EventBus",
    "UploadManagerSnapshot",
]
