"""
Realtime

Server-pushed events wired into the query cache:
- RealtimeInvalidationBridge: named events -> cache invalidations
- CourseLiveUpdates: course events -> in-place patches of cached lists
- LocalTransport: in-process event source
"""

from .transport import EventHandler, LocalTransport, RealtimeTransport, Unsubscribe
from .bridge import (
    ADMIN_EVENTS,
    ADMIN_KEYS,
    GLOBAL_EVENT,
    RealtimeBinding,
    RealtimeInvalidationBridge,
    channels_for,
)
from .live_updates import CourseLiveUpdates, patch_course_list

__all__ = [
    # Transport
    "EventHandler",
    "LocalTransport",
    "RealtimeTransport",
    "Unsubscribe",
    # Invalidation
    "ADMIN_EVENTS",
    "ADMIN_KEYS",
    "GLOBAL_EVENT",
    "RealtimeBinding",
    "RealtimeInvalidationBridge",
    "channels_for",
    # Live updates
    "CourseLiveUpdates",
    "patch_course_list",
]
