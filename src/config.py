"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Biosensor LiveSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Upstream biosensor API ---
    api_base_url: str = "http://localhost:8000"
    ws_url: str = "ws://localhost:8000/ws/ouratimeseries"
    range_resource: str = "ouratimeseries"
    request_timeout_seconds: float = 30.0
    default_record_limit: int = 10000  # assumed when the server omits `limit`

    # --- Tunnel (ngrok free tier interstitial) ---
    tunnel_bypass_header: str = "ngrok-skip-browser-warning"
    tunnel_bypass_value: str = "true"

    # --- Sync behaviour ---
    live_lookback_hours: float = 24.0
    reconnect_delay_seconds: float = 5.0
    reconnect_backoff_factor: float = 1.0  # 1.0 = fixed delay
    reconnect_max_delay_seconds: float = 60.0
    shutdown_grace_seconds: float = 2.0  # in-flight fetches get this long on shutdown
    update_message_types: list[str] = ["ouratimeseries_update", "heartrate_update"]
    liveness_message_types: list[str] = ["pong"]

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def range_endpoint(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/{self.range_resource}/live"

    @property
    def bypass_headers(self) -> dict[str, str]:
        return {self.tunnel_bypass_header: self.tunnel_bypass_value}


@lru_cache
def get_settings() -> Settings:
    return Settings()
