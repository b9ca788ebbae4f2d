# ABOUTME: Shared event model, configuration, logging and error types for the biometrics engine
from datetime import datetime, timezone
from typing import Dict, Optional, Any, Union
from dataclasses import dataclass, asdict, field
from pathlib import Path
import yaml
import logging


class BiometricsError(Exception):
    """Base class for analytics engine errors."""


class ValidationError(BiometricsError, ValueError):
    """Raised for missing identifiers or malformed input, before any store call."""


class StoreError(BiometricsError):
    """Keystroke store failure, tagged with the user/session it concerned."""

    def __init__(
        self, message: str, user_id: Optional[str] = None, game_id: Optional[str] = None
    ):
        super().__init__(message)
        self.user_id = user_id
        self.game_id = game_id


def require_id(value: Optional[str], name: str) -> str:
    """Reject empty or whitespace-only identifiers."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} cannot be null or empty")
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Union[str, datetime, None]) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class KeystrokeEvent:
    """One recorded key press within a typing session."""

    user_id: str
    game_id: str
    sequence_number: int = 0
    key: str = ""
    expected_char: str = ""
    is_correct: bool = False
    is_backspace: bool = False
    elapsed_ms: int = 0
    interval_ms: int = 0
    text_position: int = 0
    current_wpm: float = 0.0
    current_accuracy: float = 0.0
    recorded_at: datetime = field(default_factory=utcnow)
    row_key: Optional[str] = None

    def __post_init__(self):
        self.recorded_at = as_utc(self.recorded_at)

    def validate(self) -> None:
        """Check required identity and non-negative counters."""
        require_id(self.user_id, "User ID")
        require_id(self.game_id, "Game ID")
        for name in ("sequence_number", "elapsed_ms", "interval_ms", "text_position"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must be >= 0")

    def storage_key(self) -> str:
        """Row identity within a user's partition: GameId_SequenceNumber."""
        return f"{self.game_id}_{self.sequence_number:06d}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["recorded_at"] = self.recorded_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeystrokeEvent":
        """Create from dictionary."""
        return cls(**data)


class ConfigManager:
    """Configuration management with validation."""

    def __init__(self, config_path: Union[str, Path] = "config.yaml"):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration, layering the file over the defaults."""
        config = self._default_config()
        try:
            with open(self.config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logging.warning(f"Config file {self.config_path} not found, using defaults")
            return config
        except yaml.YAMLError as e:
            logging.error(f"Error parsing config file: {e}")
            return config

        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values
        return config

    def _default_config(self) -> Dict[str, Any]:
        """Default configuration values."""
        return {
            "analysis": {
                "speed_ceiling_ms": 500,
                "rhythm_outlier_ms": 2000,
                "min_fatigue_events": 20,
                "error_noise_floor": 2,
                "max_error_patterns": 20,
                "problem_accuracy_threshold": 85,
                "strong_accuracy_threshold": 95,
                "strong_min_presses": 5,
                "top_keys": 10,
                "max_workers": 4,
            },
            "storage": {
                "data_directory": "./data",
                "batch_size": 100,
            },
            "output": {
                "reports_directory": "./reports",
                "log_level": "INFO",
                "log_file": "typing_biometrics.log",
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with dot notation."""
        keys = key.split(".")
        value = self.config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the application."""
    handlers: list = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
