"""
auth/dependencies.py -- FastAPI Depends() helpers over request.state.current_user.

The auth pipeline middleware has already resolved the identity by the time a
route runs; these helpers only read it.

try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_role() builds a dependency that additionally raises HTTP 403.
"""

from __future__ import annotations

from fastapi import HTTPException, Request


def try_get_current_user(request: Request) -> dict | None:
    """Return the verified claims for this request, or None."""
    return getattr(request.state, "current_user", None)


def get_current_user(request: Request) -> dict:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: dict = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_role(*roles: str):
    """Return a dependency that admits only users whose role claim is in roles."""

    def dependency(request: Request) -> dict:
        user = get_current_user(request)
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role."},
            )
        return user

    return dependency
