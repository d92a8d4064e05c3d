"""
Endpoint Catalog

Backend paths used as the first segment of cache keys. Keeping them in one
place means a mutation's invalidation prefix and a view's query key can
never drift apart.
"""

# Auth
AUTH_REFRESH = "/api/auth/refresh"

# Courses
COURSES = "/api/courses"
ENROLLMENTS = "/api/enrollments"
RECOMMENDATIONS = "/api/recommendations"

# Admin
ADMIN_USERS = "/api/admin/users"
ADMIN_INSTRUCTORS = "/api/admin/instructors"
ADMIN_COURSES = "/api/admin/courses"
ADMIN_ANALYTICS_OVERVIEW = "/api/admin/analytics/overview"
ADMIN_ANALYTICS_STUDENTS = "/api/admin/analytics/students"
ADMIN_REPORTS_SALES = "/api/admin/reports/sales"
ADMIN_REPORTS_ACTIVITY = "/api/admin/reports/activity"

# Store
PRODUCTS_TRENDING = "/api/products/trending"


def course_path(course_id: str, *rest: str) -> str:
    """/api/courses/<id>[/rest...]"""
    return "/".join([COURSES, str(course_id), *rest])


def admin_user_path(user_id: str, *rest: str) -> str:
    """/api/admin/users/<id>[/rest...]"""
    return "/".join([ADMIN_USERS, str(user_id), *rest])
