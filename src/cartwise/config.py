"""Configuration management for cartwise."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _expand(path: str) -> Path:
    return Path(os.path.expanduser(path))


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


API_PORT = int(os.getenv("CARTWISE_API_PORT", "8890"))
DB_PATH = _expand(os.getenv("CARTWISE_DB_PATH", "~/.cartwise/ledger.db"))

OPENAI_URL = os.getenv("CARTWISE_OPENAI_URL", "https://api.openai.com/v1/chat/completions")
PERPLEXITY_URL = os.getenv("CARTWISE_PERPLEXITY_URL", "https://api.perplexity.ai/chat/completions")

# Timeouts (seconds)
CONNECT_TIMEOUT = 10
OVERALL_TIMEOUT = 120

# Tax-rate retry policy
TAX_MAX_RETRIES = int(os.getenv("CARTWISE_TAX_MAX_RETRIES", "4"))
TAX_RETRY_DELAY = float(os.getenv("CARTWISE_TAX_RETRY_DELAY", "1.0"))

# Display log cap for the usage ledger
HISTORY_LIMIT = 20

DEFAULT_TAX_MODEL = "sonar-pro"
DEFAULT_PHOTO_MODEL = "gpt-4o-mini"
DEFAULT_SEARCH_MODEL = "sonar-pro"
DEFAULT_ADDITIVE_MODEL = "gpt-4o-mini"


class Settings(BaseModel):
    """Values supplied by the settings collaborator."""

    tax_model: str = DEFAULT_TAX_MODEL
    photo_model: str = DEFAULT_PHOTO_MODEL
    search_model: str = DEFAULT_SEARCH_MODEL
    guess_model: str = DEFAULT_SEARCH_MODEL
    additive_model: str = DEFAULT_ADDITIVE_MODEL

    use_manual_tax_rate: bool = False
    manual_tax_rate: float = 6.0

    # Consensus mode: run N single lookups and keep the most common rate
    use_multi_attempt_tax: bool = False
    tax_detection_attempts: int = 3

    tax_search_context_size: str = "high"
    tax_search_recency_filter: str | None = None

    # provider name -> API key
    credentials: dict[str, str] = Field(default_factory=dict)
    # prompt type value -> template, only used when listed in enabled_prompts
    custom_prompts: dict[str, str] = Field(default_factory=dict)
    enabled_prompts: set[str] = Field(default_factory=set)

    def credential_for(self, provider: str) -> str:
        return self.credentials.get(provider, "").strip()

    @classmethod
    def from_env(cls) -> "Settings":
        credentials = {}
        if os.getenv("OPENAI_API_KEY"):
            credentials["OpenAI"] = os.environ["OPENAI_API_KEY"]
        if os.getenv("PERPLEXITY_API_KEY"):
            credentials["Perplexity"] = os.environ["PERPLEXITY_API_KEY"]
        return cls(
            tax_model=os.getenv("CARTWISE_TAX_MODEL", DEFAULT_TAX_MODEL),
            photo_model=os.getenv("CARTWISE_PHOTO_MODEL", DEFAULT_PHOTO_MODEL),
            search_model=os.getenv("CARTWISE_SEARCH_MODEL", DEFAULT_SEARCH_MODEL),
            guess_model=os.getenv("CARTWISE_GUESS_MODEL", DEFAULT_SEARCH_MODEL),
            additive_model=os.getenv("CARTWISE_ADDITIVE_MODEL", DEFAULT_ADDITIVE_MODEL),
            use_manual_tax_rate=_flag("CARTWISE_USE_MANUAL_TAX"),
            manual_tax_rate=float(os.getenv("CARTWISE_MANUAL_TAX_RATE", "6.0")),
            use_multi_attempt_tax=_flag("CARTWISE_MULTI_ATTEMPT_TAX"),
            tax_detection_attempts=int(os.getenv("CARTWISE_TAX_ATTEMPTS", "3")),
            tax_search_context_size=os.getenv("CARTWISE_TAX_SEARCH_CONTEXT", "high"),
            tax_search_recency_filter=os.getenv("CARTWISE_TAX_SEARCH_RECENCY") or None,
            credentials=credentials,
        )
