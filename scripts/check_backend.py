#!/usr/bin/env python3
"""
Backend Check Script

Fetch the course catalog (and optionally the admin user list) through the
query cache against a running backend.

Usage:
    python scripts/check_backend.py
    python scripts/check_backend.py --admin --page 2 --limit 5
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from edutech.api import ApiClient, CourseList, UserList, endpoints
from edutech.auth import AuthRefreshWatcher, AuthSession
from edutech.cache import QueryClient
from edutech.utils import configure_logging, get_settings


async def run_check(page: int, limit: int, admin: bool) -> int:
    """Run the check; returns a process exit code."""

    load_dotenv()

    access_token = os.getenv("EDUTECH_ACCESS_TOKEN")
    refresh_token = os.getenv("EDUTECH_REFRESH_TOKEN")

    print(f"\n{'='*60}")
    print("EDUTECH BACKEND CHECK")
    print(f"{'='*60}")
    print(f"API URL: {get_settings().API_URL}")
    print(f"Authenticated: {bool(access_token)}")
    print(f"{'='*60}\n")

    if not access_token:
        print("WARNING: EDUTECH_ACCESS_TOKEN not set, requests are sent unauthenticated")

    start_time = datetime.now()
    session = AuthSession(access_token, refresh_token)

    async with ApiClient(auth=session) as api:
        session.refresher = api.refresh_tokens

        async with QueryClient(default_fetcher=api.fetch_query) as client:
            with AuthRefreshWatcher(session, client):
                courses = client.subscribe(
                    (endpoints.COURSES, {"page": page, "limit": limit}),
                    api.query_fetcher(CourseList),
                )
                state = await courses.wait()

                if state.is_error:
                    print(f"Courses: FAILED ({state.error_message})")
                    return 1

                data = state.data
                total = data.pagination.total if data.pagination else len(data.courses)
                print(f"Courses: {len(data.courses)} of {total}")
                for course in data.courses:
                    print(f"  - {course.title} ({course.enrollment_count} enrolled)")

                if admin:
                    users = client.subscribe(
                        (endpoints.ADMIN_USERS, {"page": page, "limit": limit}),
                        api.query_fetcher(UserList),
                    )
                    state = await users.wait()
                    if state.is_error:
                        print(f"\nAdmin users: FAILED ({state.error_message})")
                        return 1
                    print(f"\nAdmin users: {len(state.data.users)}")
                    for user in state.data.users:
                        print(f"  - {user.display_name} <{user.email}> [{user.role}]")

                print(f"\nCache: {client.get_stats()}")

    duration = (datetime.now() - start_time).total_seconds()
    print(f"\nDone in {duration:.2f}s")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Check the EduTech backend through the query cache")
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--admin", action="store_true", help="Also fetch the admin user list")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else None)
    sys.exit(asyncio.run(run_check(args.page, args.limit, args.admin)))


if __name__ == "__main__":
    main()
