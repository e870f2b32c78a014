from datetime import timedelta
from typing import Optional, Tuple

import bcrypt
import jwt
import structlog
from fastapi import Depends, Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

import errors
from database import utcnow
from schemas import Role, SessionUser

logger = structlog.get_logger(__name__)

LOGIN_PATH = "/login"
HOME_PATH = "/dashboard"
GATED_PREFIXES = (LOGIN_PATH, HOME_PATH, "/assets")


# ----------------------------
# Passwords
# ----------------------------
def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


# ----------------------------
# Session tokens
# ----------------------------
def create_session_token(session: SessionUser, settings) -> Tuple[str, int]:
    """Sign ``session`` into a JWT. Returns the token and its expiry as a unix timestamp."""
    now = utcnow()
    exp = int((now + timedelta(seconds=settings.session_ttl_seconds)).timestamp())
    payload = {
        "sub": session.id,
        "id": session.id,
        "name": session.name,
        "email": session.email,
        "role": session.role.value,
        "iat": int(now.timestamp()),
        "exp": exp,
    }
    token = jwt.encode(payload, settings.session_secret, algorithm=settings.session_algorithm)
    return token, exp


def decode_session_token(token: str, settings) -> SessionUser:
    try:
        payload = jwt.decode(
            token,
            settings.session_secret,
            algorithms=[settings.session_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise errors.Unauthorized("Session expired")
    except jwt.InvalidTokenError:
        raise errors.Unauthorized("Invalid session token")
    try:
        return SessionUser(
            id=payload["id"],
            name=payload.get("name") or "",
            email=payload.get("email") or "",
            role=payload["role"],
        )
    except (KeyError, ValueError):
        raise errors.Unauthorized("Invalid session claims")


def token_from_request(request: Request, cookie_name: str) -> Optional[str]:
    auth = request.headers.get("Authorization")
    if auth:
        scheme, _, credentials = auth.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return request.cookies.get(cookie_name) or None


def read_session(request: Request, settings) -> Optional[SessionUser]:
    token = token_from_request(request, settings.session_cookie_name)
    if not token:
        return None
    try:
        return decode_session_token(token, settings)
    except errors.Unauthorized as exc:
        logger.info("session_rejected", reason=str(exc.detail))
        return None


# ----------------------------
# Dependencies
# ----------------------------
def get_optional_session(request: Request) -> Optional[SessionUser]:
    return read_session(request, request.app.state.settings)


def get_current_session(session: Optional[SessionUser] = Depends(get_optional_session)) -> SessionUser:
    if session is None:
        raise errors.Unauthorized()
    return session


def require_role(*roles: Role):
    def _checker(session: SessionUser = Depends(get_current_session)) -> SessionUser:
        if session.role not in roles:
            raise errors.Unauthorized("Insufficient role")
        return session

    return _checker


# ----------------------------
# Page access gate
# ----------------------------
def _is_gated(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in GATED_PREFIXES)


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Redirects page requests: anonymous users to the login page, signed-in users away from it."""

    def __init__(self, app, settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not _is_gated(path):
            return await call_next(request)

        session = read_session(request, self.settings)
        if path == LOGIN_PATH:
            if session is not None:
                return RedirectResponse(str(request.url.replace(path=HOME_PATH, query="")))
        elif session is None:
            return RedirectResponse(str(request.url.replace(path=LOGIN_PATH, query="")))
        return await call_next(request)
