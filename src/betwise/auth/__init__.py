"""Authentication system for Betwise (email/password + JWT bearer tokens)."""

from betwise.auth.models import User, UserAccount, UserRole
from betwise.auth.local import LocalAuthService
from betwise.auth.middleware import get_current_user, require_admin, require_auth

__all__ = [
    "User",
    "UserAccount",
    "UserRole",
    "LocalAuthService",
    "get_current_user",
    "require_admin",
    "require_auth",
]
