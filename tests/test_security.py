import pytest

from errors import AuthenticationError
from security import hash_password, issue_token, read_token, verify_password


def test_password_hash_verifies_only_the_original() -> None:
    hashed = hash_password("hunter22")

    assert hashed != "hunter22"
    assert verify_password("hunter22", hashed)
    assert not verify_password("hunter23", hashed)
    assert not verify_password("hunter22", "not-a-bcrypt-hash")


def test_token_carries_user_id() -> None:
    assert read_token(issue_token(42)) == 42


def test_tampered_token_is_rejected() -> None:
    token = issue_token(7)
    with pytest.raises(AuthenticationError):
        read_token(token[:-2] + ("aa" if not token.endswith("aa") else "bb"))
    with pytest.raises(AuthenticationError):
        read_token("garbage")


def test_expired_token_is_rejected() -> None:
    token = issue_token(7)
    with pytest.raises(AuthenticationError, match="expired"):
        read_token(token, max_age_hours=-1)
