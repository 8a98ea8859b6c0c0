"""
Authentication blueprint:
- POST /auth/register
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- GET  /auth/self

Tokens travel in two cookies, ``accessToken`` and ``refreshToken``, each
HttpOnly/Secure/SameSite with a Max-Age equal to the token's own TTL.
All session logic lives in SessionService; this module only validates
input, maps outcomes to responses and assembles cookies.
"""
from __future__ import annotations

from flask import Blueprint, request, jsonify, g, current_app

from models.schemas.user import RegisterSchema, LoginSchema, UserOutSchema
from services.outcomes import Failure, SessionTokens
from utils.decorators import access_token_required, ACCESS_COOKIE
from utils.tokens import TokenError

from .errors import failure_response, error_response

REFRESH_COOKIE = "refreshToken"

bp = Blueprint("auth", __name__, url_prefix="/auth")

register_schema = RegisterSchema()
login_schema = LoginSchema()
user_out_schema = UserOutSchema()


def _service():
    return current_app.extensions["session_service"]


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": current_app.config["COOKIE_SECURE"],
        "samesite": current_app.config["COOKIE_SAMESITE"],
        "domain": current_app.config["COOKIE_DOMAIN"],
        "path": "/",
    }


def _session_response(tokens: SessionTokens, status: int = 200):
    response = jsonify({"id": tokens.user_id})
    options = _cookie_options()
    response.set_cookie(
        ACCESS_COOKIE, tokens.access_token, max_age=tokens.access_ttl_seconds, **options
    )
    response.set_cookie(
        REFRESH_COOKIE, tokens.refresh_token, max_age=tokens.refresh_ttl_seconds, **options
    )
    return response, status


def _clear_session_cookies(response):
    options = _cookie_options()
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            path=options["path"],
            domain=options["domain"],
            secure=options["secure"],
            httponly=True,
            samesite=options["samesite"],
        )
    return response


def _presented_refresh_token() -> str | None:
    token = request.cookies.get(REFRESH_COOKIE)
    if token:
        return token
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return None
    token = payload.get("refreshToken")
    return token if isinstance(token, str) and token else None


@bp.post("/register")
def register():
    """
    Register a new user.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          required: [firstName, lastName, email, password]
          properties:
            firstName: { type: string }
            lastName: { type: string }
            email: { type: string }
            password: { type: string }
    responses:
      201:
        description: Created
      400:
        description: Validation error or email already registered
      500:
        description: Storage failure
    """
    payload = request.get_json(silent=True) or {}
    data = register_schema.load(payload)

    outcome = _service().register(
        data["email"],
        data["password"],
        first_name=data["firstName"],
        last_name=data["lastName"],
    )
    if isinstance(outcome, Failure):
        return failure_response(outcome)

    return jsonify(
        {
            "id": outcome.user.id,
            "data": user_out_schema.dump(outcome.user),
        }
    ), 201


@bp.post("/login")
def login():
    """
    Login: sets accessToken and refreshToken cookies
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           required: [email, password]
           properties:
             email: { type: string }
             password: { type: string }
    responses:
      200:
        description: OK (tokens are set as cookies)
      400:
        description: Validation error or invalid credentials
    """
    payload = request.get_json(silent=True) or {}
    data = login_schema.load(payload)

    outcome = _service().login(data["email"], data["password"])
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return _session_response(outcome)


@bp.post("/refresh")
def refresh():
    """
    Rotate the refresh token and mint a new access token
    ---
    tags:
      - Auth
    parameters:
      -  in: body
         name: body
         required: false
         schema:
           type: object
           properties:
             refreshToken: { type: string }
    responses:
      200:
        description: OK (rotated tokens are set as cookies)
      401:
        description: Refresh token invalid, expired or already used
    """
    token = _presented_refresh_token()
    if not token:
        return error_response("INVALID_SESSION", "Invalid or expired session", 401)

    outcome = _service().refresh(token)
    if isinstance(outcome, Failure):
        response, status = failure_response(outcome)
        if status == 401:
            _clear_session_cookies(response)
        return response, status
    return _session_response(outcome)


@bp.post("/logout")
def logout():
    """
    Logout: revokes the refresh token and clears both cookies
    ---
    tags:
      - Auth
    responses:
      204:
        description: Always, whether or not the token was still live
    """
    token = _presented_refresh_token()
    if token:
        try:
            token_id = _service().issuer.token_id(token)
        except TokenError:
            token_id = None
        if token_id:
            _service().logout(token_id)

    response = current_app.response_class(status=204)
    return _clear_session_cookies(response)


@bp.get("/self")
@access_token_required()
def whoami():
    """
    Current user
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: OK
      401:
        description: Missing, invalid (INVALID_TOKEN) or expired (TOKEN_EXPIRED) access token
    """
    user = _service().users.get(g.current_user_id)
    if user is None:
        return error_response("INVALID_TOKEN", "User not found", 401)
    return jsonify({"data": user_out_schema.dump(user)}), 200
