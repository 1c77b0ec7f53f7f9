from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream provider (Gemini generateContent)
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    upstream_timeout: float = 30.0  # seconds

    # Rate limiting (fixed window per client identifier)
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 20
    rate_limit_retention_windows: int = 5  # idle windows kept before eviction
    rate_limit_max_clients: int = 10_000

    # Use X-Forwarded-For as the client identifier when present
    trust_proxy_headers: bool = True

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: str = "*"

    # Browser front-end (optional, served at /)
    frontend_dir: Path | None = None

    # Development
    debug: bool = False

    @property
    def cors_origin_list(self) -> list[str]:
        """Get list of allowed CORS origins (supports comma-separated values)."""
        origins = []
        for origin in self.cors_origins.split(","):
            origin = origin.strip()
            if origin:
                origins.append(origin)
        return origins

    @property
    def is_configured(self) -> bool:
        """Whether an upstream credential is available."""
        return bool(self.gemini_api_key)


PROVIDER_NAME = "gemini"

# Global settings instance
settings = Settings()
