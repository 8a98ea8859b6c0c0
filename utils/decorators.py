from __future__ import annotations
from functools import wraps
from flask import request, g, current_app

from api.errors import error_response
from services.outcomes import Failure

ACCESS_COOKIE = "accessToken"


def _presented_access_token() -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth.split(" ", 1)[1].strip()
    return request.cookies.get(ACCESS_COOKIE)


def access_token_required():
    """
    Require a valid access token from the ``accessToken`` cookie or a Bearer header.
    An expired token answers TOKEN_EXPIRED so the client knows to refresh;
    anything else answers INVALID_TOKEN.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = _presented_access_token()
            if not token:
                return error_response("INVALID_TOKEN", "Missing access token", 401)

            service = current_app.extensions["session_service"]
            claims = service.authenticate(token)
            if isinstance(claims, Failure):
                if claims.reason == "expired":
                    return error_response("TOKEN_EXPIRED", "Access token expired", 401)
                return error_response("INVALID_TOKEN", "Invalid access token", 401)

            g.current_user_id = claims["sub"]
            g.current_user_role = claims.get("role")
            return fn(*args, **kwargs)

        return wrapper

    return decorator
