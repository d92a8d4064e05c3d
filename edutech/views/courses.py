"""
Course Catalog

Data for the course browsing screen: the filtered course list, the
user's enrollments and recommendations, kept fresh by realtime events,
in-place live course patches and optional polling.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional

from edutech.api import endpoints
from edutech.api.schemas import Course, CourseList, Pagination
from edutech.cache.keys import CacheKey, make_key
from edutech.cache.subscription import Subscription
from edutech.realtime.live_updates import CourseLiveUpdates
from edutech.views.base import View

logger = logging.getLogger(__name__)

SORT_KEYS = {
    "rating": lambda c: -(c.rating.average if c.rating else 0.0),
    "students": lambda c: -c.enrollment_count,
    "popular": lambda c: -c.enrollment_count,
    "title": lambda c: c.title.lower(),
}


@dataclass(frozen=True)
class CourseFilters:
    search: str = ""
    category: str = "all"
    level: str = "all"
    sort: str = "popular"
    page: int = 1
    limit: int = 10


class CourseCatalogView(View):
    """
    Course catalog screen.

    Changing a filter resets to page 1 and moves the course subscription
    to the new key; the previous key's response can no longer reach it.
    """

    realtime_topics = ("courses", "enrollments", "recommendations")

    def __init__(
        self,
        client,
        api=None,
        auth=None,
        bridge=None,
        preferences=None,
        filters: Optional[CourseFilters] = None,
        refetch_interval: Optional[float] = None,
        live_updates: bool = True,
    ):
        super().__init__(client, api, auth, bridge, preferences)
        self.filters = filters or CourseFilters()
        self.refetch_interval = refetch_interval
        self.use_live_updates = live_updates

        self.courses: Optional[Subscription] = None
        self.enrollments: Optional[Subscription] = None
        self.recommendations: Optional[Subscription] = None
        self.live: Optional[CourseLiveUpdates] = None

        self.approve = self.mutation(
            self._approve,
            invalidates=[(endpoints.COURSES,), (endpoints.ADMIN_COURSES,)],
            success_message="Course approved",
            error_message="Failed to approve course",
            name="approve_course",
        )
        self.archive = self.mutation(
            self._archive,
            invalidates=[(endpoints.COURSES,), (endpoints.ADMIN_COURSES,)],
            success_message="Course archived",
            error_message="Failed to archive course",
            name="archive_course",
        )
        self.enrollment = self.mutation(
            self._enroll,
            invalidates=self._enroll_keys,
            success_message="Enrolled successfully",
            error_message="Enroll failed",
            name="enroll",
        )

    # =========================================================================
    # Keys
    # =========================================================================

    @property
    def query_key(self) -> CacheKey:
        params = asdict(self.filters)
        params["search"] = params["search"] or None
        return make_key(endpoints.COURSES, params)

    async def on_mount(self, stack: AsyncExitStack) -> None:
        self.courses = self.query(
            self.query_key,
            schema=CourseList,
            refetch_interval=self.refetch_interval,
        )
        self.enrollments = self.query((endpoints.ENROLLMENTS,), refetch_interval=self.refetch_interval)
        self.recommendations = self.query(
            (endpoints.RECOMMENDATIONS,),
            schema=CourseList,
            refetch_interval=self.refetch_interval,
        )
        await self.realtime(
            [(endpoints.COURSES,), (endpoints.ENROLLMENTS,), (endpoints.RECOMMENDATIONS,)],
            topics=self.realtime_topics,
        )
        if self.bridge is not None and self.use_live_updates:
            self.live = await stack.enter_async_context(
                CourseLiveUpdates(self.client, self.bridge.transport)
            )

    # =========================================================================
    # Filters
    # =========================================================================

    def set_filters(self, **changes: Any) -> CacheKey:
        """Update search/category/level/sort (resets to page 1)."""
        if "page" not in changes:
            changes["page"] = 1
        self.filters = replace(self.filters, **changes)
        if self.courses is not None:
            self.courses.set_key(self.query_key)
        return self.query_key

    def set_page(self, page: int) -> CacheKey:
        return self.set_filters(page=max(1, page))

    # =========================================================================
    # Data
    # =========================================================================

    @property
    def course_list(self) -> List[Course]:
        data = self.courses.data if self.courses is not None else None
        if not isinstance(data, CourseList):
            return []
        key = SORT_KEYS.get(self.filters.sort)
        return sorted(data.courses, key=key) if key else list(data.courses)

    @property
    def pagination(self) -> Optional[Pagination]:
        data = self.courses.data if self.courses is not None else None
        return data.pagination if isinstance(data, CourseList) else None

    @property
    def enrolled_course_ids(self) -> List[str]:
        data = self.enrollments.data if self.enrollments is not None else None
        if not isinstance(data, dict):
            return []
        ids = []
        for enrollment in data.get("enrollments") or []:
            course = enrollment.get("course") if isinstance(enrollment, dict) else None
            course_id = course.get("_id") if isinstance(course, dict) else course
            if course_id:
                ids.append(str(course_id))
        return ids

    def live_update(self, course_id: str) -> Optional[Dict[str, Any]]:
        if self.live is None:
            return None
        return self.live.live_updates.get(course_id)

    # =========================================================================
    # Writes
    # =========================================================================

    async def _approve(self, course_id: str) -> Any:
        return await self._require_api().post(
            f"{endpoints.ADMIN_COURSES}/bulk/publish", {"ids": [course_id]}
        )

    async def _archive(self, course_id: str) -> Any:
        return await self._require_api().post(
            f"{endpoints.ADMIN_COURSES}/bulk/archive", {"ids": [course_id]}
        )

    async def _enroll(self, course_id: str) -> Any:
        return await self._require_api().post(endpoints.course_path(course_id, "enroll"))

    @staticmethod
    def _enroll_keys(result: Any, course_id: str) -> List[CacheKey]:
        return [
            (endpoints.ENROLLMENTS,),
            (endpoints.RECOMMENDATIONS,),
            (endpoints.course_path(course_id),),
            (endpoints.COURSES,),
        ]

    async def approve_course(self, course_id: str):
        return await self.approve.mutate(course_id)

    async def archive_course(self, course_id: str):
        return await self.archive.mutate(course_id)

    async def enroll(self, course_id: str):
        return await self.enrollment.mutate(course_id)
