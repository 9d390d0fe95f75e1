"""Tests for credential encryption."""

import pytest

from blog_publisher.crypto import decrypt_secret, decrypt_secret_fail_open, encrypt_secret


@pytest.fixture
def token_key(monkeypatch):
    """Configure the publisher token key."""
    monkeypatch.setenv("PUBLISHER_TOKEN_KEY", "test-publisher-key")
    return "test-publisher-key"


class TestCrypto:
    """Tests for encrypt/decrypt helpers."""

    def test_roundtrip(self, token_key):
        token = encrypt_secret("ghl-token-123")
        assert token != "ghl-token-123"
        assert "=" not in token
        assert decrypt_secret(token) == "ghl-token-123"

    def test_nonce_differs_per_call(self, token_key):
        assert encrypt_secret("same") != encrypt_secret("same")

    def test_explicit_key_overrides_env(self, monkeypatch):
        monkeypatch.delenv("PUBLISHER_TOKEN_KEY", raising=False)
        token = encrypt_secret("secret", key="other-key")
        assert decrypt_secret(token, key="other-key") == "secret"

    def test_missing_key_raises(self, monkeypatch):
        monkeypatch.delenv("PUBLISHER_TOKEN_KEY", raising=False)
        with pytest.raises(ValueError, match="PUBLISHER_TOKEN_KEY"):
            encrypt_secret("secret")

    def test_wrong_key_raises(self, token_key):
        token = encrypt_secret("secret", key="another-key")
        with pytest.raises(ValueError, match="Invalid encrypted payload"):
            decrypt_secret(token)

    def test_short_payload_raises(self, token_key):
        with pytest.raises(ValueError, match="too short"):
            decrypt_secret("AAAA")


class TestDecryptFailOpen:
    """Tests for the fail-open decrypt used by adapters."""

    def test_returns_plaintext(self, token_key):
        assert decrypt_secret_fail_open(encrypt_secret("tok")) == "tok"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_values(self, token_key, value):
        assert decrypt_secret_fail_open(value) is None

    def test_garbage_returns_none(self, token_key):
        assert decrypt_secret_fail_open("not-a-real-token!!") is None

    def test_missing_key_returns_none(self, token_key, monkeypatch):
        token = encrypt_secret("tok")
        monkeypatch.delenv("PUBLISHER_TOKEN_KEY")
        assert decrypt_secret_fail_open(token) is None
