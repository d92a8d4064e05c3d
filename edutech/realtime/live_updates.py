"""
Live Course Updates

Patches cached course lists in place when the backend pushes enrollment,
review or trending changes, instead of refetching the whole page. Each
patched course also gets a short-lived ``live_updates`` marker that views
use to flash an indicator.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from edutech.api import endpoints
from edutech.api.schemas import Rating
from edutech.cache.query_client import QueryClient
from edutech.realtime.transport import RealtimeTransport, Unsubscribe


logger = logging.getLogger(__name__)

LIVE_UPDATE_TTL = 3.0

COURSE_ENROLLED = "course:enrolled"
COURSE_REVIEWED = "course:reviewed"
COURSE_TRENDING = "course:trending"


def _course_id(course: Any) -> Optional[str]:
    if isinstance(course, dict):
        return course.get("_id") or course.get("id")
    return getattr(course, "id", None)


def patch_course_list(data: Any, course_id: str, raw: Dict[str, Any], fields: Dict[str, Any]) -> Any:
    """
    Copy of a course list payload with one course updated.

    ``raw`` holds the change in backend field names (for plain dict
    payloads), ``fields`` in model attribute names (for decoded
    CourseList payloads). Returns None when the payload has no course list
    or the course is not on it.
    """
    if isinstance(data, dict):
        courses = data.get("courses")
    elif isinstance(data, BaseModel):
        courses = getattr(data, "courses", None)
    else:
        return None
    if not isinstance(courses, list):
        return None

    found = False
    patched = []
    for course in courses:
        if _course_id(course) != course_id:
            patched.append(course)
            continue
        found = True
        if isinstance(course, BaseModel):
            patched.append(course.model_copy(update=fields))
        else:
            patched.append({**course, **raw})

    if not found:
        return None
    if isinstance(data, BaseModel):
        return data.model_copy(update={"courses": patched})
    return {**data, "courses": patched}


class CourseLiveUpdates:
    """
    Realtime course patches for the catalog.

    Usage:
        async with CourseLiveUpdates(query_client, transport) as live:
            ...
            live.live_updates.get(course_id)  # {"type": "enrollment", ...}
    """

    def __init__(
        self,
        client: QueryClient,
        transport: RealtimeTransport,
        ttl: float = LIVE_UPDATE_TTL,
    ):
        self._client = client
        self._transport = transport
        self.ttl = ttl
        self.live_updates: Dict[str, Dict[str, Any]] = {}
        self._expiry: Dict[str, asyncio.TimerHandle] = {}
        self._unsubscribes: List[Unsubscribe] = []

    async def start(self) -> "CourseLiveUpdates":
        handlers = (
            (COURSE_ENROLLED, self._on_enrolled),
            (COURSE_REVIEWED, self._on_reviewed),
            (COURSE_TRENDING, self._on_trending),
        )
        try:
            for event, handler in handlers:
                self._unsubscribes.append(await self._transport.subscribe(event, handler))
        except BaseException:
            self.stop()
            raise
        return self

    def stop(self) -> None:
        for unsubscribe in reversed(self._unsubscribes):
            try:
                unsubscribe()
            except Exception as e:
                logger.debug(f"Ignoring realtime unsubscribe failure: {e}")
        self._unsubscribes.clear()
        for handle in self._expiry.values():
            handle.cancel()
        self._expiry.clear()
        self.live_updates.clear()

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    # =========================================================================
    # Event handlers
    # =========================================================================

    def _on_enrolled(self, payload: Any) -> None:
        payload = payload or {}
        course_id = payload.get("courseId")
        count = payload.get("enrollmentCount")
        if not course_id:
            return
        self.patch(course_id, {"enrollmentCount": count}, {"enrollment_count": count})
        self._mark(course_id, {"type": "enrollment", "count": count})

    def _on_reviewed(self, payload: Any) -> None:
        payload = payload or {}
        course_id = payload.get("courseId")
        if not course_id:
            return
        average = payload.get("averageRating")
        count = payload.get("reviewCount")
        self.patch(
            course_id,
            {"rating": {"average": average, "count": count}},
            {"rating": Rating(average=average or 0.0, count=count or 0)},
        )
        self._mark(course_id, {"type": "review", "rating": average, "count": count})

    def _on_trending(self, payload: Any) -> None:
        payload = payload or {}
        course_id = payload.get("courseId")
        if not course_id:
            return
        trending = bool(payload.get("isTrending"))
        self.patch(course_id, {"isTrending": trending}, {"is_trending": trending})

    # =========================================================================
    # Cache patching
    # =========================================================================

    def patch(self, course_id: str, raw: Dict[str, Any], fields: Dict[str, Any]) -> int:
        """Apply a course change to every cached course list; returns entries patched."""
        patched = 0
        for entry in self._client.find_entries((endpoints.COURSES,)):
            updated = patch_course_list(entry.data, course_id, raw, fields)
            if updated is None:
                continue
            self._client.set_query_data(entry.key, updated)
            patched += 1
        logger.debug(f"Live update for course {course_id} patched {patched} entries")
        return patched

    def _mark(self, course_id: str, update: Dict[str, Any]) -> None:
        self.live_updates[course_id] = {**update, "timestamp": time.time()}
        old = self._expiry.pop(course_id, None)
        if old is not None:
            old.cancel()
        self._expiry[course_id] = asyncio.get_running_loop().call_later(
            self.ttl, self._expire, course_id
        )

    def _expire(self, course_id: str) -> None:
        self._expiry.pop(course_id, None)
        self.live_updates.pop(course_id, None)
