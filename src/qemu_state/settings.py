"""CLI defaults from environment variables."""

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from qemu_state import constants
from qemu_state.exceptions import ConfigError


class Settings(BaseSettings):
    """Defaults for get-qemu-state options.

    All settings can be overridden via environment variables with QEMU_STATE_ prefix.
    Example: QEMU_STATE_TIMEOUT_SECONDS=600
    Explicit command-line options always win.
    """

    model_config = SettingsConfigDict(
        env_prefix="QEMU_STATE_",
        extra="ignore",
    )

    output: str = constants.DEFAULT_OUTPUT_FILE
    timeout_seconds: float = constants.DEFAULT_TIMEOUT_SECONDS
    marker: str = constants.DEFAULT_MARKER
    poll_interval_seconds: float = constants.DEFAULT_POLL_INTERVAL_SECONDS
    progress_interval_seconds: float = constants.DEFAULT_PROGRESS_INTERVAL_SECONDS


def load_settings() -> Settings:
    """Read Settings from the environment.

    Raises:
        ConfigError: A QEMU_STATE_* variable holds an invalid value
    """
    try:
        return Settings()
    except ValidationError as e:
        first = e.errors(include_url=False)[0]
        raise ConfigError(
            f"invalid environment setting QEMU_STATE_{str(first['loc'][0]).upper()}: {first['msg']}",
            context={"errors": e.errors(include_url=False)},
        ) from e
