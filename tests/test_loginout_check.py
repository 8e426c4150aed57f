"""Unit tests for auth/loginout_check.py -- dispatch on the last path segment.

Login and Logout are replaced with AsyncMock handlers so each test can
assert exactly which branch ran. The echo route reports what the pipeline
left on request.state.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient
from starlette.middleware.base import BaseHTTPMiddleware

from auth.loginout_check import LoginoutCheck, last_segment

_MISSING = "<missing>"


def _echo(request: Request) -> dict:
    return {
        "current_user": getattr(request.state, "current_user", _MISSING),
        "auth_skip": getattr(request.state, "auth_skip", _MISSING),
    }


@pytest.fixture
def handlers():
    login = AsyncMock(return_value=JSONResponse({"handled_by": "login"}))
    logout = AsyncMock(return_value=JSONResponse({"handled_by": "logout"}))
    return login, logout


@pytest.fixture
def client(handlers) -> TestClient:
    login, logout = handlers
    app = FastAPI()
    app.add_middleware(BaseHTTPMiddleware, dispatch=LoginoutCheck(login, logout))

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT"])
    def echo(request: Request, path: str) -> dict:
        return _echo(request)

    return TestClient(app)


@pytest.mark.parametrize("path", ["/login", "/admin/login", "/login/"])
def test_post_login_dispatches_to_login(client, handlers, path):
    login, logout = handlers
    resp = client.post(path, json={"username": "fred", "password": "x"})
    assert resp.json() == {"handled_by": "login"}
    login.assert_awaited_once()
    logout.assert_not_awaited()


@pytest.mark.parametrize("method", ["GET", "PUT"])
def test_non_post_login_skips_authentication(client, handlers, method):
    login, _ = handlers
    resp = client.request(method, "/login")
    assert resp.json() == {"current_user": None, "auth_skip": True}
    login.assert_not_awaited()


@pytest.mark.parametrize("method", ["GET", "POST"])
def test_logout_clears_identity_and_dispatches(client, handlers, method):
    login, logout = handlers
    resp = client.request(method, "/logout")
    assert resp.json() == {"handled_by": "logout"}
    logout.assert_awaited_once()
    request = logout.await_args.args[0]
    assert request.state.current_user is None
    login.assert_not_awaited()


@pytest.mark.parametrize("path", ["/", "/users", "/login/extra", "/logins"])
def test_other_paths_pass_through_untouched(client, handlers, path):
    login, logout = handlers
    resp = client.post(path)
    assert resp.json() == {"current_user": _MISSING, "auth_skip": _MISSING}
    login.assert_not_awaited()
    logout.assert_not_awaited()


@pytest.mark.parametrize(
    "path,expected",
    [("/", None), ("", None), ("/login", "login"), ("/a/b/logout", "logout"), ("/a//b/", "b")],
)
def test_last_segment(path, expected):
    assert last_segment(path) == expected
