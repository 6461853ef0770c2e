"""Admin bearer tokens and download-link tokens."""
from datetime import datetime, timedelta, timezone

import pytest

from auth import AuthError, authenticate_admin, create_access_token
from downloads import InvalidDownloadToken, create_download_token, download_url, read_download_token


def _bearer(claims, secret):
    return f"Bearer {create_access_token(claims, secret)}"


def test_admin_email_is_case_insensitive(settings):
    claims = authenticate_admin(_bearer({"sub": "u1", "email": "Owner@Ethereal-Balance.com"},
                                        settings.admin_jwt_secret), settings)
    assert claims["sub"] == "u1"


@pytest.mark.parametrize("header, status", [
    (None, 401),
    ("Token abc", 401),
    ("Bearer not-a-jwt", 401),
])
def test_admin_rejections(settings, header, status):
    with pytest.raises(AuthError) as exc:
        authenticate_admin(header, settings)
    assert exc.value.status_code == status


def test_token_without_subject_rejected(settings):
    with pytest.raises(AuthError, match="Invalid token"):
        authenticate_admin(_bearer({"role": "admin"}, settings.admin_jwt_secret), settings)


def test_expired_admin_token_rejected(settings):
    token = create_access_token({"sub": "u1", "role": "admin"}, settings.admin_jwt_secret,
                                expires_delta=timedelta(minutes=-1))
    with pytest.raises(AuthError):
        authenticate_admin(f"Bearer {token}", settings)


def test_admin_auth_unconfigured(settings):
    settings.admin_jwt_secret = None
    with pytest.raises(AuthError) as exc:
        authenticate_admin("Bearer x", settings)
    assert exc.value.status_code == 500


def test_download_token_round_trip():
    token = create_download_token("guide", "order-1", "s3cret")
    claims = read_download_token(token, "s3cret")
    assert (claims["sub"], claims["order"]) == ("guide", "order-1")


def test_download_token_expires():
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    token = create_download_token("guide", "order-1", "s3cret", ttl_hours=1, now=issued)
    with pytest.raises(InvalidDownloadToken):
        read_download_token(token, "s3cret")


def test_admin_token_is_not_a_download_token():
    token = create_access_token({"sub": "guide"}, "s3cret")
    with pytest.raises(InvalidDownloadToken):
        read_download_token(token, "s3cret")


def test_download_url():
    assert download_url("https://shop.test/", "abc") == "https://shop.test/api/downloads/abc"
