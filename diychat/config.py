import os
from dataclasses import dataclass
from typing import Optional

import dotenv

# Load environment variables
dotenv.load_dotenv()

# Title given to a conversation until its first turn names it
DEFAULT_CONVERSATION_TITLE = "New Conversation"
DEFAULT_PROJECT_NAME = "Default"

# Model used when neither the request, the conversation nor the project picks one
FALLBACK_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
}

MAX_TOOL_ITERATIONS = 8
TITLE_MAX_CHARS = 60

# Used only when ENCRYPTION_KEY is unset
DEV_ENCRYPTION_KEY = "diychat-dev-key-change-me"


@dataclass
class Settings:
    """
    Runtime settings, read from the environment (and `.env`).
    """
    db_path: str = "data/app.db"
    encryption_key: str = DEV_ENCRYPTION_KEY
    tavily_api_key: Optional[str] = None
    searxng_base_url: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.getenv("DIYCHAT_DB_PATH", cls.db_path),
            encryption_key=os.getenv("ENCRYPTION_KEY") or DEV_ENCRYPTION_KEY,
            tavily_api_key=os.getenv("TAVILY_API_KEY") or None,
            searxng_base_url=os.getenv("SEARXNG_BASE_URL") or None,
            host=os.getenv("HOST", cls.host),
            port=int(os.getenv("PORT", str(cls.port))),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )

    @property
    def uses_dev_key(self) -> bool:
        return self.encryption_key == DEV_ENCRYPTION_KEY
