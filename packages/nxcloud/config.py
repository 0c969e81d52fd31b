"""Configuration for nxcloud."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .exceptions import ConfigurationError


DEFAULT_CONFIG_DIR = Path.home() / ".nxcloud"


@dataclass
class NxCloudConfig:
    """Configuration for the nxcloud client."""
    # Local state
    config_dir: Path
    credentials_path: Path
    history_path: Path

    # Credential storage
    use_keyring: bool = True
    keyring_service: str = "nxcloud"

    # Network
    timeout: float = 30.0

    # Transfers
    chunk_size: int = 1024 * 1024
    transfer_workers: int = 4


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def get_config() -> NxCloudConfig:
    """Load configuration from environment.

    Optional environment variables:
        NXCLOUD_CONFIG_DIR: Directory for local state (default: ~/.nxcloud)
        NXCLOUD_CREDENTIALS_FILE: Fallback credential file (default: <config_dir>/credentials)
        NXCLOUD_HISTORY_FILE: Shell history file (default: <config_dir>/history)
        NXCLOUD_USE_KEYRING: Store credentials in the system keyring (default: true)
        NXCLOUD_TIMEOUT: Request timeout in seconds (default: 30.0)
        NXCLOUD_CHUNK_SIZE: Streaming chunk size in bytes (default: 1048576)
        NXCLOUD_TRANSFER_WORKERS: Parallel file transfers for directories (default: 4)

    Returns:
        NxCloudConfig with loaded values

    Raises:
        ConfigurationError: If a numeric variable cannot be parsed
    """
    config_dir = Path(os.getenv("NXCLOUD_CONFIG_DIR", str(DEFAULT_CONFIG_DIR))).expanduser()

    # Load .env from the config directory, then from the working directory
    env_file = config_dir / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    load_dotenv()

    credentials_path = os.getenv("NXCLOUD_CREDENTIALS_FILE") or str(config_dir / "credentials")
    history_path = os.getenv("NXCLOUD_HISTORY_FILE") or str(config_dir / "history")

    try:
        timeout = float(os.getenv("NXCLOUD_TIMEOUT", "30.0"))
    except ValueError:
        raise ConfigurationError(
            f"NXCLOUD_TIMEOUT must be a number, got {os.getenv('NXCLOUD_TIMEOUT')!r}",
            missing_key="NXCLOUD_TIMEOUT"
        )
    try:
        chunk_size = int(os.getenv("NXCLOUD_CHUNK_SIZE", str(1024 * 1024)))
    except ValueError:
        raise ConfigurationError(
            f"NXCLOUD_CHUNK_SIZE must be an integer, got {os.getenv('NXCLOUD_CHUNK_SIZE')!r}",
            missing_key="NXCLOUD_CHUNK_SIZE"
        )
    try:
        transfer_workers = int(os.getenv("NXCLOUD_TRANSFER_WORKERS", "4"))
    except ValueError:
        raise ConfigurationError(
            f"NXCLOUD_TRANSFER_WORKERS must be an integer, got {os.getenv('NXCLOUD_TRANSFER_WORKERS')!r}",
            missing_key="NXCLOUD_TRANSFER_WORKERS"
        )

    config = NxCloudConfig(
        config_dir=config_dir,
        credentials_path=Path(credentials_path).expanduser(),
        history_path=Path(history_path).expanduser(),
        use_keyring=_env_flag("NXCLOUD_USE_KEYRING", True),
        keyring_service=os.getenv("NXCLOUD_KEYRING_SERVICE", "nxcloud"),
        timeout=timeout,
        chunk_size=chunk_size,
        transfer_workers=transfer_workers,
    )
    validate_config(config)
    return config


def validate_config(config: NxCloudConfig) -> None:
    """Validate numeric limits.

    Args:
        config: The configuration to validate

    Raises:
        ConfigurationError: If a limit is not positive
    """
    if config.timeout <= 0:
        raise ConfigurationError(
            f"Timeout must be positive, got {config.timeout}",
            missing_key="NXCLOUD_TIMEOUT"
        )

    if config.chunk_size <= 0:
        raise ConfigurationError(
            f"Chunk size must be positive, got {config.chunk_size}",
            missing_key="NXCLOUD_CHUNK_SIZE"
        )

    if config.transfer_workers < 1:
        raise ConfigurationError(
            f"Transfer workers must be at least 1, got {config.transfer_workers}",
            missing_key="NXCLOUD_TRANSFER_WORKERS"
        )
