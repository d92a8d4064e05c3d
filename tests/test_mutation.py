"""
Tests for mutations.

These tests verify:
- A successful write invalidates the declared keys, then runs callbacks
- A failed write invalidates nothing and is exposed as state
- Client-side validation runs before any write
- End-to-end: approving a course refetches the course list under its prefix
"""

import pytest

from edutech.api.client import ApiClient
from edutech.api.schemas import CourseList
from edutech.cache.config import RetryConfig
from edutech.cache.entry import QueryStatus
from edutech.cache.mutation import Mutation, MutationStatus
from edutech.cache.query_client import QueryClient
from edutech.exceptions import ApiError, ValidationError

from conftest import BASE_URL, course_page, settle


COURSES_P1 = ("/api/courses", {"page": 1, "limit": 10})


@pytest.mark.asyncio
class TestMutation:
    """Test the mutation lifecycle."""

    async def test_success_invalidates(self, query_client, counting_fetcher):
        sub = query_client.subscribe(COURSES_P1, counting_fetcher)
        await sub.wait()

        async def approve(course_id):
            return {"approved": course_id}

        mutation = Mutation(query_client, approve, invalidates=[("/api/courses",)])
        state = await mutation.mutate("c1")

        assert state.status == MutationStatus.SUCCESS
        assert state.data == {"approved": "c1"}
        assert state.invalidation.entries_marked == 1
        assert state.invalidation.source == "mutation:approve"

        await sub.wait()
        assert counting_fetcher.count == 2

    async def test_success_during_in_flight_fetch(self, query_client, controlled_fetcher):
        """A read that started before the write is followed by a fresh one."""
        sub = query_client.subscribe(COURSES_P1, controlled_fetcher)
        await settle()

        async def approve(course_id):
            return {"approved": course_id}

        mutation = Mutation(query_client, approve, invalidates=[("/api/courses",)])
        await mutation.mutate("c1")
        controlled_fetcher.resolve(0, {"version": "pre-write"})
        await settle()

        assert controlled_fetcher.count == 2
        assert sub.state.is_stale

        controlled_fetcher.resolve(1, {"version": "post-write"})
        state = await sub.wait()

        assert state.data == {"version": "post-write"}
        assert not state.is_stale

    async def test_failure_leaves_cache_untouched(self, query_client, counting_fetcher):
        """A rejected write applies no invalidation."""
        sub = query_client.subscribe(COURSES_P1, counting_fetcher)
        await sub.wait()
        errors = []

        async def approve(course_id):
            raise ApiError("Course not found", status_code=404)

        mutation = Mutation(
            query_client,
            approve,
            invalidates=[("/api/courses",)],
            on_error=lambda error, *args: errors.append((error.message, args)),
        )
        state = await mutation.mutate("c404")
        await settle()

        assert state.is_error
        assert state.error_message == "Course not found"
        assert state.invalidation is None
        assert errors == [("Course not found", ("c404",))]
        assert counting_fetcher.count == 1
        assert sub.state.status == QueryStatus.SUCCESS
        assert not sub.state.is_stale
        assert query_client.get_stats()["invalidations"] == 0

    async def test_callback_order(self, query_client):
        """Invalidation is applied before on_success; on_settled runs last."""
        events = []

        async def write():
            events.append("write")
            return "ok"

        def on_success(data):
            events.append(("success", data, query_client.get_stats()["invalidations"]))

        def on_settled(data, error):
            events.append(("settled", data, error))

        query_client.set_query_data(("/api/courses",), {"courses": []})
        mutation = Mutation(
            query_client,
            write,
            invalidates=[("/api/courses",)],
            on_success=on_success,
            on_settled=on_settled,
        )
        await mutation.mutate()

        assert events == ["write", ("success", "ok", 1), ("settled", "ok", None)]

    async def test_async_hooks_awaited(self, query_client):
        seen = []

        async def write(value):
            return value * 2

        async def on_success(data, value):
            seen.append((data, value))

        await Mutation(query_client, write, on_success=on_success).mutate(21)

        assert seen == [(42, 21)]

    async def test_hook_failure_does_not_fail_mutation(self, query_client):
        async def write():
            return "ok"

        def broken(data):
            raise RuntimeError("toast renderer crashed")

        state = await Mutation(query_client, write, on_success=broken).mutate()

        assert state.is_success

    async def test_keys_derived_from_arguments(self, query_client, counting_fetcher):
        """invalidates may compute keys from the result and arguments."""
        course = query_client.subscribe(("/api/courses/c7",), counting_fetcher)
        other = query_client.subscribe(("/api/courses/c8",), counting_fetcher)
        await course.wait()
        await other.wait()

        async def enroll(course_id):
            return {"enrolled": course_id}

        mutation = Mutation(
            query_client,
            enroll,
            invalidates=lambda result, course_id: [(f"/api/courses/{course_id}",)],
        )
        state = await mutation.mutate("c7")
        await course.wait()

        assert state.invalidation.entries_marked == 1
        assert counting_fetcher.count == 3

    async def test_validation_blocks_write(self, query_client):
        calls = []

        async def create(data):
            calls.append(data)

        def validate(data):
            if not data.get("email"):
                raise ValidationError("email is required", field="email")

        mutation = Mutation(query_client, create, [("/api/admin/users",)], validate=validate)
        state = await mutation.mutate({"username": "ana"})

        assert state.is_error
        assert state.error.field == "email"
        assert calls == []

    async def test_writer_retry(self, query_client):
        attempts = []

        async def write():
            attempts.append(1)
            if len(attempts) < 2:
                raise ApiError("Request failed with status 502", status_code=502)
            return "ok"

        mutation = Mutation(
            query_client, write, retry_config=RetryConfig(max_retries=1, initial_delay=0.01)
        )
        state = await mutation.mutate()

        assert state.is_success
        assert len(attempts) == 2

    async def test_mutate_or_raise(self, query_client):
        async def write():
            raise ApiError("Forbidden", status_code=403)

        with pytest.raises(ApiError, match="Forbidden"):
            await Mutation(query_client, write).mutate_or_raise()

    async def test_reset(self, query_client):
        async def write():
            return 1

        mutation = Mutation(query_client, write)
        await mutation.mutate()
        mutation.reset()

        assert mutation.status == MutationStatus.IDLE
        assert mutation.state.data is None


# =============================================================================
# END-TO-END
# =============================================================================

@pytest.mark.asyncio
class TestApproveCourseScenario:
    """A view's course page refetches after an approval, via the prefix."""

    async def test_approval_refetches_course_page(self, cache_config, backend):
        backend.route("GET", "/api/courses", body=course_page(page=1, limit=10, total=25))
        backend.route("POST", "/api/admin/courses/bulk/publish", body={"success": True})

        async with ApiClient(base_url=BASE_URL, transport=backend.transport) as api:
            async with QueryClient(config=cache_config, default_fetcher=api.query_fetcher(CourseList)) as client:
                sub = client.subscribe(["/api/courses", {"page": 1, "limit": 10}])
                state = await sub.wait()

                assert len(state.data.courses) == 10
                assert state.data.pagination.total == 25
                assert state.data.pagination.pages == 3

                statuses = []
                sub.add_listener(lambda s: statuses.append(s.status))

                approve = Mutation(
                    client,
                    lambda course_id: api.post("/api/admin/courses/bulk/publish", {"ids": [course_id]}),
                    invalidates=[["/api/courses"]],
                    name="approve_course",
                )
                result = await approve.mutate("c3")
                await sub.wait()

                assert result.is_success
                assert statuses[0] == QueryStatus.LOADING
                assert statuses[-1] == QueryStatus.SUCCESS
                gets = backend.calls("GET", "/api/courses")
                assert len(gets) == 2
                assert gets[-1].url.params["page"] == "1"
                assert gets[-1].url.params["limit"] == "10"
                assert backend.json_body(backend.calls("POST", "/api/admin/courses/bulk/publish")[0]) == {"ids": ["c3"]}
