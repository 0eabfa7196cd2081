import time
from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="finance-api-csrf")


def generate_csrf_token(user_id: int = 1) -> str:
    return _serializer().dumps({"u": user_id, "ts": int(time.time())})


def validate_csrf_token(token: str, user_id: int = 1, max_age_hours: int = 2) -> bool:
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False
    return data.get("u") == user_id


def require_csrf(
    x_csrf_token: Optional[str] = Header(default=None, alias=CSRF_HEADER),
) -> None:
    if not x_csrf_token or not validate_csrf_token(x_csrf_token):
        raise HTTPException(status_code=403, detail="Invalid CSRF token")
