"""Environment-based configuration for the dashboard engine."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Dashboard engine configuration.

    All settings can be overridden via environment variables with
    PANEBOARD_ prefix. For example:
        PANEBOARD_PRESET=monitoring
        PANEBOARD_DEBOUNCE_MS=250
    """

    # Layout
    preset: str = "development"
    terminal_width: int = Field(default=120, ge=0)  # used when size is unknown
    terminal_height: int = Field(default=30, ge=0)

    # Update scheduling
    debounce_ms: int = Field(default=100, ge=0)
    max_concurrent_updates: int = Field(default=3, ge=1)
    max_pending_events: int = Field(default=1000, ge=1)

    # Keyboard
    key_history_size: int = Field(default=10, ge=1)

    # File watching
    project_root: Path = Path(".")
    watch_dir: str = ".guidant"  # relative to project_root; empty watches the whole root
    watch_retry_attempts: int = Field(default=3, ge=0)
    watch_retry_delay_ms: int = Field(default=1000, ge=0)

    # Host
    refresh_per_second: float = Field(default=4.0, gt=0)
    log_level: str = "WARNING"

    model_config = {"env_prefix": "PANEBOARD_"}

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000


settings = Settings()
