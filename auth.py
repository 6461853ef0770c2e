from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config import Settings

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 12  # 12 hours


class AuthError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def create_access_token(data: dict, secret: str, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> dict:
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthError("Invalid token")


def authenticate_admin(authorization: Optional[str], settings: Settings) -> dict:
    """
    Authenticate the bearer token issued by the identity provider, then
    authorize it: the claims must carry the admin role or an allow-listed
    email. Returns the claims.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Unauthorized")
    if not settings.admin_jwt_secret:
        raise AuthError("Admin authentication is not configured. Set ADMIN_JWT_SECRET.", status_code=500)

    claims = decode_token(authorization.split(" ", 1)[1], settings.admin_jwt_secret)
    if not claims.get("sub"):
        raise AuthError("Invalid token")

    email = (claims.get("email") or "").lower()
    if claims.get("role") == "admin" or (email and email in settings.admin_emails):
        return claims
    raise AuthError("Admins only", status_code=403)
