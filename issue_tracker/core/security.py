from __future__ import annotations

from functools import lru_cache

from passlib.context import CryptContext
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from issue_tracker.core.config import settings

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Signed cookie for session (stateless)
serializer = URLSafeTimedSerializer(settings.SECRET_KEY, salt="issue_tracker_sid")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


@lru_cache(maxsize=1)
def _shared_password_hash() -> str:
    # Hashed once per process; the plain value only lives in settings.
    return hash_password(settings.SHARED_PASSWORD)


def verify_shared_password(password: str) -> bool:
    if not password:
        return False
    return verify_password(password, _shared_password_hash())


def sign_session(payload: dict) -> str:
    return serializer.dumps(payload)


def verify_session(token: str, max_age_seconds: int | None = None) -> dict | None:
    try:
        return serializer.loads(token, max_age=max_age_seconds or settings.SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired):
        return None
