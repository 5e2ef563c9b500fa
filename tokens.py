from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings
from errors import AuthError


def _serializer(secret: Optional[str] = None) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(secret or settings.token_secret, salt="auth-token")


def issue_token(user_id: int, email: str = "", *, secret: Optional[str] = None) -> str:
    serializer = _serializer(secret)
    return serializer.dumps({"id": user_id, "email": email})


def verify_token(
    token: str, *, max_age_secs: Optional[int] = None, secret: Optional[str] = None
) -> int:
    """Return the user id bound to ``token`` or raise ``AuthError``."""
    if not token:
        raise AuthError("Unauthorized - No token provided")
    serializer = _serializer(secret)
    max_age = max_age_secs if max_age_secs is not None else get_settings().token_max_age_secs
    try:
        data = serializer.loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise AuthError("Token expired") from exc
    except BadSignature as exc:
        raise AuthError("Invalid token") from exc

    user_id = data.get("id") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise AuthError("Invalid token payload")
    return user_id


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Unauthorized - No token provided")
    return authorization[len("Bearer ") :].strip()
