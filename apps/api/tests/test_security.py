import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from carecore.core import security
from carecore.core.config import settings
from carecore.core.security import (
    create_bearer_token,
    decode_bearer_token,
    extract_bearer,
    generate_pair_token,
    generate_pairing_code,
    verify_secret,
)
from carecore.core.structured_logging import build_log_context


def test_verify_secret():
    assert verify_secret("abc", "abc") is True
    assert verify_secret("abc", "def") is False
    assert verify_secret(None, "abc") is False
    assert verify_secret("abc", "") is False
    assert verify_secret("", "abc") is False


def test_extract_bearer():
    assert extract_bearer("Bearer tok") == "tok"
    assert extract_bearer("bearer  tok ") == "tok"
    assert extract_bearer("Basic tok") is None
    assert extract_bearer("Bearer ") is None
    assert extract_bearer(None) is None


def test_bearer_token_round_trip():
    user_id = uuid.uuid4()

    payload = decode_bearer_token(create_bearer_token(user_id))

    assert payload["sub"] == str(user_id)
    assert payload["aud"] == settings.JWT_AUDIENCE


def test_bearer_token_wrong_audience_rejected():
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "aud": "someone-else"},
        settings.JWT_SECRET,
        algorithm="HS256",
    )

    with pytest.raises(jwt.InvalidTokenError):
        decode_bearer_token(token)


def test_bearer_token_expired_rejected():
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "x", "aud": settings.JWT_AUDIENCE, "exp": now - timedelta(minutes=1)},
        settings.JWT_SECRET,
        algorithm="HS256",
    )

    with pytest.raises(jwt.ExpiredSignatureError):
        decode_bearer_token(token)


def test_previous_secret_accepted_during_rotation(monkeypatch):
    old_token = create_bearer_token(uuid.uuid4())
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", settings.JWT_SECRET)
    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret")

    assert decode_bearer_token(old_token)["aud"] == settings.JWT_AUDIENCE

    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", "")
    with pytest.raises(jwt.InvalidTokenError):
        decode_bearer_token(old_token)


def test_pairing_code_is_six_digits(monkeypatch):
    monkeypatch.setattr(security.secrets, "randbelow", lambda n: 0)
    assert generate_pairing_code() == "100000"

    monkeypatch.setattr(security.secrets, "randbelow", lambda n: n - 1)
    assert generate_pairing_code() == "999999"


def test_pair_tokens_are_long_and_distinct():
    tokens = {generate_pair_token() for _ in range(50)}

    assert len(tokens) == 50
    assert all(len(token) >= 43 for token in tokens)


def test_build_log_context_drops_empty_fields():
    household_id = uuid.uuid4()

    context = build_log_context(household_id=household_id, route="/pairing/init", user_id=None)

    assert context == {"household_id": str(household_id), "route": "/pairing/init"}
