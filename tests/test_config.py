import logging

from diychat.config import DEV_ENCRYPTION_KEY, Settings
from diychat.crypto import KeyCipher, mask_key
from diychat.logging_config import setup_logging


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DIYCHAT_DB_PATH", "/tmp/chat.db")
        monkeypatch.setenv("ENCRYPTION_KEY", "s3cret")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.delenv("TAVILY_API_KEY", raising=False)

        settings = Settings.from_env()

        assert settings.db_path == "/tmp/chat.db"
        assert settings.port == 8080
        assert settings.log_level == "DEBUG"
        assert settings.tavily_api_key is None
        assert not settings.uses_dev_key

    def test_dev_key_fallback(self, monkeypatch):
        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        settings = Settings.from_env()
        assert settings.encryption_key == DEV_ENCRYPTION_KEY
        assert settings.uses_dev_key


class TestKeyCipher:
    def test_round_trip(self):
        cipher = KeyCipher("secret")
        token = cipher.encrypt("sk-live-123")
        assert token != "sk-live-123"
        assert cipher.decrypt(token) == "sk-live-123"

    def test_plain_text_passes_through(self):
        assert KeyCipher("secret").decrypt("sk-plain") == "sk-plain"

    def test_other_secret_cannot_decrypt(self):
        token = KeyCipher("one").encrypt("sk-live-123")
        assert KeyCipher("two").decrypt(token) == token

    def test_empty(self):
        cipher = KeyCipher("secret")
        assert cipher.encrypt("") == ""
        assert cipher.decrypt("") == ""

    def test_mask_key(self):
        assert mask_key("sk-abcdefghijklmnop") == "sk-a...mnop"
        assert mask_key("short") == "shor..."
        assert mask_key("") == ""


class TestLogging:
    def test_setup_logging_is_idempotent(self):
        logger = setup_logging("DEBUG")
        setup_logging("WARNING")
        handlers = [h for h in logger.handlers if getattr(h, "_diychat", False)]
        assert len(handlers) == 1
        assert logger.level == logging.WARNING
