"""
material_trials/security.py

Access control helpers for the HTTP surface.

Key rules:
- UI is never trusted; all permission checks are server-side.
- Login is required for every request endpoint.
- Admin: user and option management. Admin does NOT act on workflow stages;
  stage ownership is decided by the command layer from the user's role.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Tuple

from flask import jsonify
from flask_login import current_user

from .lifecycle import Role


def _forbidden(message: str = "You do not have access to this resource."):
    """Consistent JSON 403."""
    return jsonify({"error": "forbidden", "message": message}), 403


def is_admin() -> bool:
    """Return True if current user is authenticated and admin."""
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def current_actor() -> Tuple[str, str, str]:
    """(role, actor id, display name) of the logged-in user, as passed to the command layer."""
    role = current_user.role.value if current_user.role else ""
    return role, str(current_user.id), current_user.name


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def role_required(*roles: Role) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator factory: current user's role must be one of `roles`.

    Usage:
        @role_required(Role.REQUESTOR)
        def create(): ...
    """
    allowed = frozenset(roles)

    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            if not current_user.is_authenticated:
                return _forbidden()
            if current_user.role not in allowed:
                return _forbidden(
                    f"This action requires one of: {', '.join(sorted(r.value for r in allowed))}."
                )
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
