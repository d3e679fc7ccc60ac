"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "WhisperConfig",
    "IndicatorConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "CONFIG_DIR",
    "CONFIG_FILE",
    "DATA_DIR",
    "DEFAULT_MODEL_PATH",
    "MAX_DURATION_LIMIT",
    "load_config",
]

CONFIG_DIR = Path.home() / ".config" / "sotto"
CONFIG_FILE = CONFIG_DIR / "config.toml"
DATA_DIR = Path.home() / ".local" / "share" / "sotto"
DEFAULT_MODEL_PATH = DATA_DIR / "models" / "ggml-base.en.bin"

MAX_DURATION_LIMIT = 120


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class WhisperConfig:
    """whisper-stream invocation settings."""

    binary: str = "whisper-stream"
    install_hint: str = "brew install whisper-cpp"
    model_path: str = str(DEFAULT_MODEL_PATH)
    language: str = "en"
    max_duration: float = 30.0
    step: int = 3000
    length: int = 5000
    keep: int = 200
    silence_blank_count: int = 3
    capture_device: int | None = None
    threads: int | None = None
    kill_grace: float = 0.5


@dataclass
class IndicatorConfig:
    """Status overlay helper settings."""

    enabled: bool = True
    command: list[str] = field(default_factory=lambda: ["sotto-indicator"])
    close_grace: float = 0.5


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    whisper: WhisperConfig = field(default_factory=WhisperConfig)
    indicator: IndicatorConfig = field(default_factory=IndicatorConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. SOTTO_CONFIG env var
                  2. ./sotto.toml
                  3. ~/.config/sotto/config.toml
                  Built-in defaults are used when none exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit config file is missing or values are invalid
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                whisper=WhisperConfig(**coerced["whisper"]),
                indicator=IndicatorConfig(**coerced["indicator"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any value is out of range
        """
        validate_whisper_config(self.whisper)
        validate_indicator_config(self.indicator)


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get("SOTTO_CONFIG"):
        candidates.append(Path(env_path))
    candidates.append(Path("sotto.toml"))
    candidates.append(CONFIG_FILE)

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.debug(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data and apply environment overrides.

    Environment variables take precedence over file values.

    Args:
        raw_data: Raw parsed TOML dictionary
        env: Environment variables for overrides

    Returns:
        Coerced dictionary ready for dataclass instantiation
    """
    coerced = {}

    for section in ("whisper", "indicator", "general"):
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    whisper_section = coerced["whisper"]
    if "model_path" in whisper_section:
        whisper_section["model_path"] = str(Path(whisper_section["model_path"]).expanduser())

    if model_path := env.get("WHISPER_MODEL_PATH"):
        whisper_section["model_path"] = str(Path(model_path).expanduser())

    if language := env.get("WHISPER_LANGUAGE"):
        whisper_section["language"] = language

    if max_duration := env.get("WHISPER_MAX_DURATION"):
        try:
            parsed = int(max_duration)
        except ValueError:
            parsed = 0
        if parsed > 0:
            whisper_section["max_duration"] = parsed
        else:
            logger.warning("Ignoring invalid WHISPER_MAX_DURATION=%r", max_duration)

    indicator_section = coerced["indicator"]
    command = indicator_section.get("command")
    if isinstance(command, str):
        indicator_section["command"] = command.split()
    elif command is not None and not isinstance(command, list):
        raise ConfigError("indicator.command must be a string or list of strings")

    return coerced


def validate_whisper_config(whisper_cfg: WhisperConfig) -> None:
    """Validate whisper-stream settings.

    Raises:
        ConfigError: If settings are out of range
    """
    if not whisper_cfg.binary:
        raise ConfigError("whisper.binary must not be empty")

    if not 1 <= whisper_cfg.max_duration <= MAX_DURATION_LIMIT:
        raise ConfigError(
            f"max_duration must be between 1 and {MAX_DURATION_LIMIT} seconds, "
            f"got {whisper_cfg.max_duration}"
        )

    if whisper_cfg.step <= 0:
        raise ConfigError(f"step must be positive, got {whisper_cfg.step}")

    if whisper_cfg.length <= 0:
        raise ConfigError(f"length must be positive, got {whisper_cfg.length}")

    if whisper_cfg.keep < 0:
        raise ConfigError(f"keep must be non-negative, got {whisper_cfg.keep}")

    if whisper_cfg.silence_blank_count < 1:
        raise ConfigError(
            f"silence_blank_count must be at least 1, got {whisper_cfg.silence_blank_count}"
        )

    if whisper_cfg.threads is not None and whisper_cfg.threads <= 0:
        raise ConfigError(f"threads must be positive, got {whisper_cfg.threads}")

    if whisper_cfg.kill_grace <= 0:
        raise ConfigError(f"kill_grace must be positive, got {whisper_cfg.kill_grace}")


def validate_indicator_config(indicator_cfg: IndicatorConfig) -> None:
    """Validate indicator settings.

    Raises:
        ConfigError: If settings are invalid
    """
    if indicator_cfg.enabled and not indicator_cfg.command:
        raise ConfigError("indicator.command must not be empty when the indicator is enabled")

    for part in indicator_cfg.command:
        if not isinstance(part, str) or not part:
            raise ConfigError("indicator.command entries must be non-empty strings")

    if indicator_cfg.close_grace <= 0:
        raise ConfigError(f"close_grace must be positive, got {indicator_cfg.close_grace}")


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Args:
        path: Explicit config file path (optional)
        env: Environment variables (defaults to os.environ)

    Returns:
        Loaded Config instance

    Raises:
        ConfigError: If config cannot be loaded
    """
    return Config.from_toml(path, env=env)
