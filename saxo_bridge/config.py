from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


# .env next to the package root
_env_file = Path(__file__).parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SAXO_",
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Application registration
    app_key: str = ""  # a.k.a. client_id
    app_secret: str | None = None
    redirect_uri: str = "http://localhost:5000"

    # Endpoints (simulation environment by default)
    api_base_url: str = "https://gateway.saxobank.com/sim/openapi"
    auth_base_url: str = "https://sim.logonvalidation.net"
    stream_base_url: str | None = None  # falls back to api_base_url
    quote_stream_path: str = "/marketdata/stream/quotes/{tickers}"

    # Credentials: a stored bearer, a token file, or a PKCE code pair
    access_token: str | None = None
    refresh_token: str | None = None
    token_path: str | None = None
    authorization_code: str | None = None
    code_verifier: str | None = None

    # Transport
    max_attempts: int = 3
    retry_interval_seconds: float = 2.0
    request_timeout_seconds: float = 30.0
    token_refresh_skew_seconds: int = 30

    # Market data
    max_bars_per_request: int = 1200
    enable_delayed_streaming_data: bool = False

    # Symbol cache (None = never evict)
    symbol_cache_max_entries: int | None = None

    def get_stream_base_url(self) -> str:
        """Stream host, defaulting to the REST gateway."""
        return (self.stream_base_url or self.api_base_url).rstrip("/")

    def get_chart_page_size(self) -> int:
        """Bars per chart request, never below one."""
        return max(1, self.max_bars_per_request)

    def has_refresh_credentials(self) -> bool:
        """True if a first token can be obtained without a stored bearer."""
        if self.refresh_token:
            return True
        return bool(self.authorization_code and self.code_verifier)


def get_settings() -> Settings:
    return Settings()
