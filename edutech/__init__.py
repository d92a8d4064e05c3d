"""
EduTech LMS Client

Client-side data layer for the EduTech learning-management backend:
1. Builds API URLs and performs authenticated requests
2. Caches query results by structural key with at-most-one fetch in flight
3. Runs mutations that invalidate affected cache entries
4. Bridges realtime socket events into cache invalidation
"""

__version__ = "0.1.0"
