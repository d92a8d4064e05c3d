"""
Admin User Management

Data for the admin users screen: the filtered, paginated user list,
account creation and status changes, and the filter/column preferences
an admin expects to find again next session.
"""

import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional

from edutech.api import endpoints
from edutech.api.schemas import Pagination, User, UserList
from edutech.cache.keys import CacheKey, make_key
from edutech.cache.mutation import MutationState
from edutech.cache.subscription import Subscription
from edutech.exceptions import ValidationError
from edutech.views.base import View

logger = logging.getLogger(__name__)

# Preference keys
PREF_ROLE = "adminUsers.role"
PREF_STATUS = "adminUsers.status"
PREF_SAVED_VIEWS = "adminUsers.savedViews"
PREF_COLUMNS = "admin.users.columns"

DEFAULT_COLUMNS = {"role": True, "status": True, "joined": True}

USER_STATUSES = ("active", "inactive", "banned")
APPROVAL_STATUSES = ("approved", "rejected")
DELETE_MODES = ("deactivate", "delete")

ACCOUNT_FIELDS = ("username", "email", "password", "firstName", "lastName")
REQUIRED_ACCOUNT_FIELDS = ("username", "email", "password")


def validate_account(data: Dict[str, Any]) -> None:
    """Required account fields must be present before anything is sent."""
    if not isinstance(data, dict):
        raise ValidationError("Account details are required")
    for name in REQUIRED_ACCOUNT_FIELDS:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} is required", field=name)
    if "@" not in data["email"]:
        raise ValidationError("email is invalid", field="email")


def _account_payload(data: Dict[str, Any], extra_fields: tuple = ()) -> Dict[str, Any]:
    fields = ACCOUNT_FIELDS + extra_fields
    return {name: data[name] for name in fields if data.get(name) not in (None, "")}


class AdminUsersView(View):
    """
    Admin users screen.

    Role and status filters are restored from preferences on construction
    and saved whenever they change. Saved views store a named
    role/status/search combination.
    """

    realtime_events = ("admin:users:update",)

    def __init__(
        self,
        client,
        api=None,
        auth=None,
        bridge=None,
        preferences=None,
        role: Optional[str] = None,
        limit: int = 10,
        sort_by: str = "createdAt",
        sort_dir: str = "desc",
    ):
        super().__init__(client, api, auth, bridge, preferences)
        self.role = role or self.preferences.get(PREF_ROLE) or "all"
        self.status = self.preferences.get(PREF_STATUS) or "all"
        self.search = ""
        self.page = 1
        self.limit = limit
        self.sort_by = sort_by
        self.sort_dir = sort_dir

        saved = self.preferences.get_json(PREF_SAVED_VIEWS, [])
        self.saved_views: List[Dict[str, Any]] = saved if isinstance(saved, list) else []
        columns = self.preferences.get_json(PREF_COLUMNS)
        self.columns: Dict[str, bool] = columns if isinstance(columns, dict) else dict(DEFAULT_COLUMNS)

        self.users: Optional[Subscription] = None

        invalidates = [(endpoints.ADMIN_USERS,)]
        self.create_instructor_mutation = self.mutation(
            self._create_instructor,
            invalidates,
            validate=validate_account,
            success_message="Instructor created successfully",
            error_message="Failed to create instructor",
            name="create_instructor",
        )
        self.create_student_mutation = self.mutation(
            self._create_student,
            invalidates,
            validate=validate_account,
            success_message="Student created successfully",
            error_message="Failed to create student",
            name="create_student",
        )
        self.update_status_mutation = self.mutation(
            self._update_status,
            invalidates,
            validate=self._validate_status,
            success_message="User status updated successfully",
            error_message="Failed to update user status",
            name="update_status",
        )
        self.delete_user_mutation = self.mutation(
            self._delete_user,
            invalidates,
            validate=self._validate_delete,
            success_message="User updated successfully",
            error_message="Failed to update user",
            name="delete_user",
        )
        self.approve_instructor_mutation = self.mutation(
            self._approve_instructor,
            invalidates,
            validate=self._validate_approval,
            success_message="Approval updated",
            error_message="Failed to update approval",
            name="approve_instructor",
        )

    # =========================================================================
    # Query
    # =========================================================================

    @property
    def query_key(self) -> CacheKey:
        return make_key(endpoints.ADMIN_USERS, {
            "role": self.role,
            "status": self.status,
            "search": self.search or None,
            "page": self.page,
            "limit": self.limit,
            "sortBy": self.sort_by,
            "sortDir": self.sort_dir,
        })

    async def on_mount(self, stack: AsyncExitStack) -> None:
        self.users = self.query(self.query_key, schema=UserList)
        await self.realtime([(endpoints.ADMIN_USERS,)], events=self.realtime_events)

    def _rebind(self) -> CacheKey:
        key = self.query_key
        if self.users is not None:
            self.users.set_key(key)
        return key

    @property
    def user_list(self) -> List[User]:
        data = self.users.data if self.users is not None else None
        return list(data.users) if isinstance(data, UserList) else []

    @property
    def pagination(self) -> Optional[Pagination]:
        data = self.users.data if self.users is not None else None
        return data.pagination if isinstance(data, UserList) else None

    # =========================================================================
    # Filters and preferences
    # =========================================================================

    def set_filters(
        self,
        role: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> CacheKey:
        """Change filters (None leaves a filter as is); resets to page 1."""
        if role is not None:
            self.role = role
        if status is not None:
            self.status = status
        if search is not None:
            self.search = search
        self.page = 1
        self.preferences.set(PREF_ROLE, self.role)
        self.preferences.set(PREF_STATUS, self.status)
        return self._rebind()

    def set_page(self, page: int) -> CacheKey:
        self.page = max(1, page)
        return self._rebind()

    def set_limit(self, limit: int) -> CacheKey:
        self.limit = max(1, limit)
        self.page = 1
        return self._rebind()

    def set_sort(self, sort_by: str, sort_dir: str = "desc") -> CacheKey:
        self.sort_by = sort_by
        self.sort_dir = sort_dir
        return self._rebind()

    def save_view(self, name: str) -> List[Dict[str, Any]]:
        """Save the current filters under ``name`` (replacing one with that name)."""
        if not name:
            return self.saved_views
        view = {"name": name, "role": self.role, "status": self.status, "search": self.search}
        self.saved_views = [v for v in self.saved_views if v.get("name") != name] + [view]
        self.preferences.set_json(PREF_SAVED_VIEWS, self.saved_views)
        return self.saved_views

    def load_view(self, name: str) -> bool:
        view = next((v for v in self.saved_views if v.get("name") == name), None)
        if view is None:
            return False
        self.set_filters(
            role=view.get("role") or "all",
            status=view.get("status") or "all",
            search=view.get("search") or "",
        )
        return True

    def delete_view(self, name: str) -> List[Dict[str, Any]]:
        self.saved_views = [v for v in self.saved_views if v.get("name") != name]
        self.preferences.set_json(PREF_SAVED_VIEWS, self.saved_views)
        return self.saved_views

    def set_column(self, column: str, visible: bool) -> Dict[str, bool]:
        self.columns = {**self.columns, column: bool(visible)}
        self.preferences.set_json(PREF_COLUMNS, self.columns)
        return self.columns

    # =========================================================================
    # Writes
    # =========================================================================

    @staticmethod
    def _validate_status(user_id: str, status: str) -> None:
        if not user_id:
            raise ValidationError("user id is required", field="userId")
        if status not in USER_STATUSES:
            raise ValidationError(f"Unknown status: {status}", field="status")

    @staticmethod
    def _validate_delete(user_id: str, mode: str = "deactivate") -> None:
        if not user_id:
            raise ValidationError("user id is required", field="userId")
        if mode not in DELETE_MODES:
            raise ValidationError(f"Unknown mode: {mode}", field="mode")

    @staticmethod
    def _validate_approval(user_id: str, approval_status: str) -> None:
        if not user_id:
            raise ValidationError("user id is required", field="userId")
        if approval_status not in APPROVAL_STATUSES:
            raise ValidationError(f"Unknown approval status: {approval_status}", field="approvalStatus")

    async def _create_instructor(self, data: Dict[str, Any]) -> Any:
        return await self._require_api().post(
            endpoints.ADMIN_INSTRUCTORS, _account_payload(data, ("googleEmail",))
        )

    async def _create_student(self, data: Dict[str, Any]) -> Any:
        return await self._require_api().post(endpoints.ADMIN_USERS, _account_payload(data))

    async def _update_status(self, user_id: str, status: str) -> Any:
        return await self._require_api().put(
            endpoints.admin_user_path(user_id, "status"), {"status": status}
        )

    async def _delete_user(self, user_id: str, mode: str = "deactivate") -> Any:
        return await self._require_api().delete(
            endpoints.admin_user_path(user_id), params={"mode": mode}
        )

    async def _approve_instructor(self, user_id: str, approval_status: str) -> Any:
        return await self._require_api().put(
            f"{endpoints.ADMIN_INSTRUCTORS}/{user_id}/approval",
            {"approvalStatus": approval_status},
        )

    async def create_instructor(self, data: Dict[str, Any]) -> MutationState:
        return await self.create_instructor_mutation.mutate(data)

    async def create_student(self, data: Dict[str, Any]) -> MutationState:
        return await self.create_student_mutation.mutate(data)

    async def update_status(self, user_id: str, status: str) -> MutationState:
        return await self.update_status_mutation.mutate(user_id, status)

    async def delete_user(self, user_id: str, mode: str = "deactivate") -> MutationState:
        return await self.delete_user_mutation.mutate(user_id, mode)

    async def approve_instructor(self, user_id: str, approval_status: str) -> MutationState:
        return await self.approve_instructor_mutation.mutate(user_id, approval_status)
