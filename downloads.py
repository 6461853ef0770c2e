from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

ALGORITHM = "HS256"
TOKEN_PURPOSE = "download"


class InvalidDownloadToken(Exception):
    pass


def create_download_token(product_id: str, order_id: str, secret: str, ttl_hours: int = 24,
                          now: Optional[datetime] = None) -> str:
    issued = now or datetime.now(timezone.utc)
    claims = {
        "sub": product_id,
        "order": order_id,
        "purpose": TOKEN_PURPOSE,
        "iat": issued,
        "exp": issued + timedelta(hours=ttl_hours),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def read_download_token(token: str, secret: str) -> dict:
    """Return the token claims; raises InvalidDownloadToken when expired, tampered or not a download token."""
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        raise InvalidDownloadToken(str(e))
    if claims.get("purpose") != TOKEN_PURPOSE or not claims.get("sub"):
        raise InvalidDownloadToken("not a download token")
    return claims


def download_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/api/downloads/{token}"
