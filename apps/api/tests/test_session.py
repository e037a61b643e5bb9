"""Tests for session tokens."""

from datetime import timedelta

from jose import jwt

from hudledger_api.access.types import Principal
from hudledger_api.auth.session import create_session_token, decode_session_token, extract_token
from hudledger_api.settings import get_settings


def test_token_round_trip():
    """Test that an issued token decodes to its principal."""
    token = create_session_token("user-1", email="user@example.com")

    assert decode_session_token(token) == Principal(user_id="user-1", email="user@example.com")


def test_expired_token_is_rejected():
    """Test that expired tokens do not authenticate."""
    token = create_session_token("user-1", expires_in=timedelta(seconds=-10))

    assert decode_session_token(token) is None


def test_token_signed_with_other_secret_is_rejected():
    """Test that tokens from another signer do not authenticate."""
    token = jwt.encode({"sub": "user-1"}, "some-other-secret", algorithm=get_settings().jwt_algorithm)

    assert decode_session_token(token) is None


def test_token_without_subject_is_rejected():
    """Test that a token must name its user."""
    settings = get_settings()
    token = jwt.encode({"email": "x@example.com"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    assert decode_session_token(token) is None


def test_bearer_header_takes_precedence_over_cookie():
    """Test token extraction order."""
    cookie_name = get_settings().session_cookie_name

    assert extract_token({"authorization": "Bearer abc"}, {cookie_name: "def"}) == "abc"
    assert extract_token({}, {cookie_name: "def"}) == "def"
    assert extract_token({"authorization": "Basic xyz"}, {}) is None
    assert extract_token({"authorization": "Bearer "}, {}) is None
    assert extract_token({}, {}) is None
