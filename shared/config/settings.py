"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Transport selection: "redis" for multi-instance deployments,
    # "memory" for a single process (dev, tests).
    realtime_transport: Literal["redis", "memory"] = "memory"

    # Redis
    redis_url: str = "redis://localhost:6379"
    redis_pool_max_connections: int = 50
    redis_socket_timeout: int = 5  # connect and read/write timeout in seconds
    redis_initial_reconnect_delay: float = 1.0
    redis_max_reconnect_delay: float = 30.0
    redis_pubsub_cleanup_timeout: float = 5.0
    # Key holding the set of live connection ids (multi-process counter)
    redis_connection_set_key: str = "realtime:connections"

    # JWT (issued by the authentication layer, verified here)
    jwt_secret: str = "dev-secret-change-me-in-production"
    jwt_issuer: str = "cafeteria"
    jwt_audience: str = "cafeteria-users"

    # CORS: comma-separated list of allowed origins (empty uses localhost defaults)
    allowed_origins: str = ""

    # WebSocket gateway
    ws_gateway_port: int = 8001
    ws_gateway_url: str = "ws://localhost:8001/ws"
    ws_send_timeout: float = 5.0  # a slower socket is dropped
    ws_subscribe_timeout: float = 10.0
    ws_max_message_size: int = 64 * 1024
    ws_max_total_connections: int = 5000

    # Events
    max_event_size: int = 64 * 1024
    publish_failure_threshold: int = 5
    publish_recovery_timeout: float = 30.0

    # Push notifications: "none" only logs, "beams" publishes through Pusher Beams
    push_provider: Literal["none", "beams"] = "none"
    beams_instance_id: str = ""
    beams_secret_key: str = ""
    push_timeout: float = 5.0
    website_url: str = "http://localhost:3000"

    # Client SDK
    client_reconnect_initial_delay: float = 1.0
    client_reconnect_max_delay: float = 30.0
    notification_duration: float = 3.0
    notification_suppression_window: float = 3.0
    live_link_prefixes: str = "/pos/live,/live"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def live_link_prefix_list(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.live_link_prefixes.split(",") if p.strip())

    def validate_production_secrets(self) -> list[str]:
        """
        Validate that secrets are properly configured for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        WEAK_SECRETS = {
            "dev-secret-change-me-in-production",
            "secret",
            "password",
            "changeme",
            "default",
        }

        if self.environment == "production":
            if self.jwt_secret in WEAK_SECRETS or len(self.jwt_secret) < 32:
                errors.append(
                    "JWT_SECRET must be at least 32 characters and not a default value in production"
                )

            if self.debug:
                errors.append("DEBUG must be False in production")

            if self.push_provider == "beams" and not (
                self.beams_instance_id and self.beams_secret_key
            ):
                errors.append(
                    "BEAMS_INSTANCE_ID and BEAMS_SECRET_KEY must be set when PUSH_PROVIDER=beams"
                )

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
