from crm_analytics.platform.security.errors import AuthenticationError
from crm_analytics.platform.security.visibility import RecordAction, VisibilityFilter, get_visibility_filter

__all__ = [
    "AuthenticationError",
    "RecordAction",
    "VisibilityFilter",
    "get_visibility_filter",
]
