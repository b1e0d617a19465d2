from __future__ import annotations

import time

import jwt
import pytest

from edupath.infra.jwt import JwtService
from edupath.settings import settings


def test_sign_then_verify_returns_user_id(jwt_service):
    token = jwt_service.sign({"userId": "student-42", "role": "student"})

    payload = jwt_service.verify(token)

    assert payload["userId"] == "student-42"
    assert payload["sub"] == "student-42"
    assert payload["iss"] == "edupath-app"
    assert payload["aud"] == "edupath-users"


def test_expired_token_rejected(jwt_service):
    token = jwt_service.sign({"userId": "student-42"}, expires_in=-60)

    with pytest.raises(jwt.ExpiredSignatureError):
        jwt_service.verify(token)


def test_wrong_audience_rejected(jwt_service):
    other = JwtService(audience="someone-else")
    token = other.sign({"userId": "student-42"})

    with pytest.raises(jwt.InvalidAudienceError):
        jwt_service.verify(token)


def test_wrong_secret_rejected(jwt_service):
    token = JwtService(secret="another-secret-that-is-long-enough-0000").sign({"userId": "student-42"})

    with pytest.raises(jwt.InvalidSignatureError):
        jwt_service.verify(token)


def test_missing_user_id_rejected(jwt_service):
    now = int(time.time())
    token = jwt.encode(
        {"iss": settings.jwt_issuer, "aud": settings.jwt_audience, "iat": now, "exp": now + 60},
        settings.jwt_secret,
        algorithm="HS256",
    )

    with pytest.raises(jwt.InvalidTokenError):
        jwt_service.verify(token)


@pytest.mark.parametrize("token", ["", None, 123])
def test_empty_or_non_string_token_rejected(jwt_service, token):
    with pytest.raises(jwt.InvalidTokenError):
        jwt_service.verify(token)  # type: ignore[arg-type]
