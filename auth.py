import logging
import time
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import Settings


logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"
ANONYMOUS_USER_ID = 0


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except ValueError:
        return False


class IdentityResolver:
    """Issues and resolves the opaque tokens that identify a signed-in user."""

    def __init__(self, settings: Settings) -> None:
        self.max_age_secs = settings.session_max_age_hours * 3600
        self._sessions = URLSafeTimedSerializer(
            settings.session_secret, salt="session-token"
        )
        self._csrf = URLSafeTimedSerializer(settings.session_secret, salt="csrf-token")

    def issue(self, user_id: int) -> str:
        return self._sessions.dumps({"u": user_id})

    def resolve(self, token: Optional[str]) -> Optional[int]:
        if not token:
            return None
        try:
            data = self._sessions.loads(token, max_age=self.max_age_secs)
        except SignatureExpired:
            logger.info("session_rejected: reason=expired")
            return None
        except BadSignature:
            logger.info("session_rejected: reason=bad_signature")
            return None
        user_id = data.get("u") if isinstance(data, dict) else None
        if not isinstance(user_id, int):
            return None
        return user_id

    def generate_csrf_token(
        self, user_id: int = ANONYMOUS_USER_ID, max_age_hours: int = 2
    ) -> str:
        timestamp = int(time.time())
        token_data = {"u": user_id, "exp": timestamp + (max_age_hours * 3600)}
        return self._csrf.dumps(token_data)

    def validate_csrf_token(
        self, token: str, user_id: int = ANONYMOUS_USER_ID, max_age_hours: int = 2
    ) -> bool:
        try:
            data = self._csrf.loads(token, max_age=max_age_hours * 3600)
        except BadSignature:
            return False

        if data.get("u") != user_id:
            return False

        if int(time.time()) > data.get("exp", 0):
            return False

        return True


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()
