"""Worker settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
Connection details and queue names are accessed exclusively through this
module; never call ``os.getenv`` directly elsewhere in the codebase.

Usage::

    from render_worker.config.settings import get_settings

    settings = get_settings()
    wait_queue = settings.wait_queue
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Render worker configuration backed by environment variables and an optional .env file.

    Every field has a default so a worker started with an empty environment
    talks to a local Redis on the standard port and uses the standard queue
    names.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Redis
    # ------------------------------------------------------------------

    redis_url: str = "redis://localhost:6379"
    """Redis endpoint holding both queues.

    Username and password embedded in the URL are passed to every node.  Use
    the ``rediss://`` scheme to enable TLS.
    """

    redis_cluster: bool = False
    """Connect with :class:`redis.asyncio.cluster.RedisCluster` instead of a
    single-node client.  Reads always go to primaries."""

    redis_tls_insecure: Optional[bool] = None
    """Skip TLS certificate and hostname verification.

    Managed clusters (e.g. AWS ElastiCache) present certificates that do not
    match the node addresses handed out by ``CLUSTER SLOTS``.  When left unset
    this is enabled automatically for hosts containing ``amazon``.
    """

    redis_ready_attempts: int = Field(default=10, ge=1)
    """How many times to probe Redis with ``PING`` before giving up at startup."""

    redis_ready_delay: float = Field(default=1.0, ge=0.0)
    """Seconds between startup readiness probes."""

    # ------------------------------------------------------------------
    # Queues
    # ------------------------------------------------------------------

    wait_queue: str = "scrape-jobs:wait"
    """Redis list holding pending render jobs."""

    done_queue: str = "scrape-jobs:done"
    """Redis list receiving completed (successful or failed) job outcomes."""

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    render_default_language: str = "en-US"
    """Locale used for jobs that do not carry a ``lang`` field."""

    render_headless: bool = True
    """Launch Chromium without a visible window."""

    render_navigation_timeout_ms: int = Field(default=0, ge=0)
    """Navigation timeout in milliseconds.  ``0`` disables the timeout, so a
    page that never finishes loading stalls the worker."""

    render_error_backoff_seconds: float = Field(default=0.5, ge=0.0)
    """Pause after a failed blocking pop before trying again."""

    render_cleanup_drain_timeout: float = Field(default=5.0, ge=0.0)
    """Upper bound (seconds) on waiting for detached page cleanups at shutdown."""

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    metrics_port: Optional[int] = None
    """Serve Prometheus metrics on this port.  Disabled when unset."""

    @field_validator("render_default_language")
    @classmethod
    def _language_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("render_default_language must not be empty")
        return value

    @property
    def tls_insecure(self) -> bool:
        """Whether certificate verification is skipped for the Redis connection."""
        if self.redis_tls_insecure is not None:
            return self.redis_tls_insecure
        hostname = urlsplit(self.redis_url).hostname or ""
        return "amazon" in hostname


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings singleton.

    Pydantic Settings reads the environment and .env file exactly once per
    process lifetime.  In tests, call ``get_settings.cache_clear()`` after
    patching environment variables.
    """
    return Settings()
