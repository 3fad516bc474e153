from pathlib import Path
from functools import lru_cache

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from pydantic import SecretStr


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # API Keys
    openai_api_key: SecretStr = SecretStr("")
    anthropic_api_key: SecretStr = SecretStr("")
    google_api_key: SecretStr = SecretStr("")
    perplexity_api_key: SecretStr = SecretStr("")

    # Upstream endpoints
    perplexity_base_url: str = "https://api.perplexity.ai"
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    local_ai_url: str = "http://localhost:11434"

    # Database
    database_url: str = "./data/gateway.db"

    # Server
    backend_port: int = 8000
    log_level: str = "INFO"

    # Streaming
    idle_timeout_seconds: float = 60.0
    connect_timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_backoff_factor: float = 2.0

    # Loaded from YAML
    yaml_config: dict = {}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.yaml_config:
            yaml_path = Path(__file__).parent.parent / "config" / "settings.yaml"
            if yaml_path.exists():
                with open(yaml_path, "r", encoding="utf-8") as f:
                    self.yaml_config = yaml.safe_load(f) or {}

    @property
    def providers_config(self) -> dict:
        return self.yaml_config.get("providers", {})

    @property
    def default_settings(self) -> dict:
        return self.yaml_config.get("defaults", {})


@lru_cache
def get_settings() -> Settings:
    return Settings()
