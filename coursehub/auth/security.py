"""
Password hashing and session tokens

Sessions are HS256 JWTs with a unique jti so that sign-out can revoke
a single token before it expires.
"""

import base64
import hashlib
import hmac
import logging
import secrets
import time
import uuid
from datetime import datetime, timedelta

import jwt

from coursehub.config import settings
from coursehub.core.errors import unauthorized

logger = logging.getLogger(__name__)

PBKDF2_ALGORITHM = "sha256"
PBKDF2_ITERATIONS = 260000

# jti -> exp timestamp
revoked_sessions: dict = {}


# ==================== PASSWORDS ====================

def hash_password(password: str) -> str:
    """Salted PBKDF2 hash stored as algorithm$iterations$salt$digest"""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(PBKDF2_ALGORITHM, password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    encoded = base64.b64encode(digest).decode()
    return f"pbkdf2_{PBKDF2_ALGORITHM}${PBKDF2_ITERATIONS}${salt}${encoded}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algorithm, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False

    digest = hashlib.pbkdf2_hmac(
        algorithm.replace("pbkdf2_", ""), password.encode(), salt.encode(), int(iterations)
    )
    return hmac.compare_digest(base64.b64encode(digest).decode(), expected)


# ==================== SESSIONS ====================

def create_session_token(user_id: str, role: str, username: str) -> dict:
    """
    Create a signed session token

    Returns:
        dict: {"token", "expires_at"}
    """
    secret = settings.require("SESSION_SECRET")
    now = datetime.utcnow()
    expire = now + timedelta(hours=settings.SESSION_TTL_HOURS)

    payload = {
        "sub": user_id,
        "role": role,
        "username": username,
        "jti": str(uuid.uuid4()),
        "iss": settings.SESSION_ISSUER,
        "aud": settings.SESSION_AUDIENCE,
        "iat": now,
        "exp": expire,
    }

    token = jwt.encode(payload, secret, algorithm=settings.SESSION_ALGORITHM)
    return {"token": token, "expires_at": expire.isoformat()}


def decode_session_token(token: str) -> dict:
    """
    Verify signature, expiry, issuer and audience, then revocation

    Raises:
        ApiError UNAUTHORIZED: invalid, expired or revoked token
    """
    try:
        payload = jwt.decode(
            token,
            settings.require("SESSION_SECRET"),
            algorithms=[settings.SESSION_ALGORITHM],
            audience=settings.SESSION_AUDIENCE,
            issuer=settings.SESSION_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise unauthorized("Session expired")
    except jwt.InvalidTokenError:
        raise unauthorized("Authentication failed")

    jti = payload.get("jti")
    if jti and is_session_revoked(jti):
        raise unauthorized("Session revoked")

    return payload


def revoke_session(payload: dict) -> None:
    """Blacklist the token's jti until it would have expired anyway"""
    jti = payload.get("jti")
    exp = payload.get("exp")
    if jti and exp:
        revoked_sessions[jti] = exp
        logger.info("Session %s revoked", jti)
        _cleanup_revoked_sessions()


def is_session_revoked(jti: str) -> bool:
    if jti in revoked_sessions:
        if revoked_sessions[jti] > time.time():
            return True
        del revoked_sessions[jti]
    return False


def _cleanup_revoked_sessions() -> None:
    now = time.time()
    expired = [jti for jti, exp in revoked_sessions.items() if exp <= now]
    for jti in expired:
        del revoked_sessions[jti]
