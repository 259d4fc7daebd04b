import functools
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Error codes reported by the bridge for recoverable credential/trust failures
UNKNOWN_HOST_KEY = "unknown_host_key"
HOST_KEY_MISMATCH = "host_key_mismatch"
PASSWORD_REQUIRED = "password_required"
PASSPHRASE_REQUIRED = "passphrase_required"

TRUST_ERROR_CODES: frozenset[str] = frozenset({UNKNOWN_HOST_KEY, HOST_KEY_MISMATCH})
CREDENTIAL_ERROR_CODES: frozenset[str] = TRUST_ERROR_CODES | {
    PASSWORD_REQUIRED,
    PASSPHRASE_REQUIRED,
}


class InputConfig(BaseModel):
    """Keystroke batching configuration."""

    batch_window_ms: float = 4.0

    @field_validator("batch_window_ms")
    @classmethod
    def validate_positive(cls, v: float, info) -> float:
        """Ensure the batching window is positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


class DrainConfig(BaseModel):
    """Bounds for a single output drain pass."""

    max_bytes: int = 4 * 96 * 1024
    max_ms: float = 8.0

    @field_validator("max_bytes", "max_ms")
    @classmethod
    def validate_positive(cls, v, info):
        """Ensure drain bounds are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


class PollIntervals(BaseModel):
    """Connection state poll intervals, in seconds, by observed state."""

    reconnecting: float = 0.4
    connected: float = 1.2
    idle: float = 3.0

    @field_validator("reconnecting", "connected", "idle")
    @classmethod
    def validate_positive_float(cls, v: float, info) -> float:
        """Ensure intervals are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


class TransferConfig(BaseModel):
    """File transfer configuration."""

    chunk_size: int = 256 * 1024

    @field_validator("chunk_size")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Ensure the chunk size is a positive integer."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer, got {v}")
        return v


class TimingConfig(BaseModel):
    """Centralized timing and sizing configuration."""

    input: InputConfig = Field(default_factory=InputConfig)
    drain: DrainConfig = Field(default_factory=DrainConfig)
    poll: PollIntervals = Field(default_factory=PollIntervals)
    transfer: TransferConfig = Field(default_factory=TransferConfig)


class Config(BaseSettings):
    """
    Application configuration loaded from multiple sources.

    Priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Bridge process speaking newline-delimited JSON on stdio
    BRIDGE_COMMAND: str = "pterminal-bridge"

    # Host records exported from the configuration store
    HOSTS_FILE: str = Field(
        default_factory=lambda: str(Path.home() / ".termlink" / "hosts.json")
    )

    # Geometry used when a sink cannot measure itself
    DEFAULT_COLS: int = 120
    DEFAULT_ROWS: int = 40

    # Write prompted passwords back to the configuration store
    REMEMBER_PASSWORDS: bool = False

    LOG_LEVEL: str = "INFO"

    # Timing overrides from environment
    INPUT_BATCH_WINDOW_MS: float = 4.0
    DRAIN_MAX_BYTES: int = 4 * 96 * 1024
    DRAIN_MAX_MS: float = 8.0
    POLL_RECONNECTING_SECONDS: float = 0.4
    POLL_CONNECTED_SECONDS: float = 1.2
    POLL_IDLE_SECONDS: float = 3.0
    SFTP_CHUNK_SIZE: int = 256 * 1024

    @functools.cached_property
    def timings(self) -> TimingConfig:
        """Build TimingConfig from environment variables."""
        return TimingConfig(
            input=InputConfig(batch_window_ms=self.INPUT_BATCH_WINDOW_MS),
            drain=DrainConfig(max_bytes=self.DRAIN_MAX_BYTES, max_ms=self.DRAIN_MAX_MS),
            poll=PollIntervals(
                reconnecting=self.POLL_RECONNECTING_SECONDS,
                connected=self.POLL_CONNECTED_SECONDS,
                idle=self.POLL_IDLE_SECONDS,
            ),
            transfer=TransferConfig(chunk_size=self.SFTP_CHUNK_SIZE),
        )

    def validate_required(self) -> list[str]:
        """Validate required configuration."""
        errors = []
        if not self.BRIDGE_COMMAND.strip():
            errors.append("BRIDGE_COMMAND is required")
        if self.DEFAULT_COLS <= 0 or self.DEFAULT_ROWS <= 0:
            errors.append("DEFAULT_COLS and DEFAULT_ROWS must be positive")
        return errors

    def hosts_path(self) -> Optional[Path]:
        """Return the hosts file path if it exists."""
        path = Path(self.HOSTS_FILE).expanduser()
        return path if path.exists() else None


config = Config()
