from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings
from sqlalchemy.engine import make_url

from dappyboard.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Store (hosted Postgres). Both are required, see require_store_credentials().
    store_url: str = ""
    store_key: str = ""

    # Redis (change feed + rate limiting)
    redis_url: str = "redis://localhost:6379/0"
    change_channel: str = "leaderboard_changes"

    # Ledger
    replace_strategy: Literal["delete_insert", "conditional_update"] = "delete_insert"
    leaderboard_default_limit: int = 10
    leaderboard_max_limit: int = 100

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Internal JWT (maintenance endpoints)
    internal_jwt_secret: str = "change-me-in-production"
    internal_jwt_expiry_seconds: int = 300

    # Rate limiting
    rate_limit_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def database_url(self) -> str:
        """Store URL with the access credential applied as the password."""
        url = make_url(self.store_url)
        if url.host and self.store_key and url.password is None:
            url = url.set(password=self.store_key)
        return url.render_as_string(hide_password=False)

    def require_store_credentials(self) -> None:
        missing = []
        if not self.store_url.strip():
            missing.append("STORE_URL")
        if not self.store_key.strip():
            missing.append("STORE_KEY")
        if missing:
            raise ConfigurationError(missing)


settings = Settings()
