"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with ORDERPULSE_ prefix.
One Settings object covers both halves of the pipeline: the client session
(REST base URL, websocket URL, reconnect policy, notification feed size) and
the event relay server (Redis, JWT, CORS).

Learn: the reconnect knobs live here rather than inside the connection
manager so a mobile shell and a terminal client can tune them per deployment
without touching code.
"""

from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via ORDERPULSE_* env vars."""

    # REST + websocket endpoints (client side)
    api_url: str = "http://localhost:5001/api"
    socket_url: str = ""  # derived from api_url if empty
    token: Optional[str] = None

    # Reconnect policy
    reconnect_max_attempts: int = 5
    reconnect_delay: float = 1.0  # seconds, doubled per failed attempt
    reconnect_delay_max: float = 10.0
    connect_timeout: float = 20.0

    # Notification feed
    notification_limit: int = 50
    toast_auto_close: float = 5.0

    # Fetch orders referenced by deltas we have never seen
    backfill_unknown_orders: bool = False
    http_timeout: float = 10.0

    # Relay server
    redis_url: str = "redis://localhost:6379/0"
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 5001
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    model_config = {"env_prefix": "ORDERPULSE_"}

    @model_validator(mode="after")
    def validate_settings(self):
        """Reject unsafe secrets outside development and inverted backoff bounds."""
        if (
            self.environment != "development"
            and self.jwt_secret == "change-me-in-production"
        ):
            raise ValueError(
                "ORDERPULSE_JWT_SECRET must be set to a secure value in "
                "non-development environments."
            )
        if self.reconnect_delay_max < self.reconnect_delay:
            raise ValueError(
                "ORDERPULSE_RECONNECT_DELAY_MAX must be >= ORDERPULSE_RECONNECT_DELAY"
            )
        return self

    @property
    def resolved_socket_url(self) -> str:
        """Websocket endpoint; defaults to the API host with /api replaced by /ws."""
        if self.socket_url:
            return self.socket_url
        return socket_url_from_api(self.api_url)


def socket_url_from_api(api_url: str) -> str:
    """Derive the websocket URL from the REST base URL.

    http://shop.example/api -> ws://shop.example/ws
    """
    parts = urlsplit(api_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    path = parts.path.rstrip("/")
    if path.endswith("/api"):
        path = path[: -len("/api")]
    return urlunsplit((scheme, parts.netloc, f"{path}/ws", "", ""))


# Singleton: import this everywhere
settings = Settings()
