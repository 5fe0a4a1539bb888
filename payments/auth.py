from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AuthContext:
    """Who is calling, resolved once per request from the Django session."""

    user_id: int
    username: str
    is_staff: bool = False


def resolve_auth_context(request) -> Optional[AuthContext]:
    user = getattr(request, "user", None)
    if user is None or not user.is_authenticated or not user.is_active:
        return None
    return AuthContext(user_id=user.pk, username=user.get_username(), is_staff=bool(user.is_staff))


def get_auth_context(request) -> Optional[AuthContext]:
    """Return the context the middleware attached, resolving it if it is missing."""
    if not hasattr(request, "auth_context"):
        request.auth_context = resolve_auth_context(request)
    return request.auth_context
