# ABOUTME: Package initialization for the keystroke biometrics analytics engine
"""
Keystroke Biometrics Analytics

Turns per-keystroke telemetry recorded during timed typing sessions into a
keyboard heatmap, error patterns, rhythm consistency and a fatigue index.
"""

__version__ = "1.0.0"
__description__ = "Keystroke biometrics analytics for typing-speed sessions"

from .analyzer import BiometricsAnalyzer, BiometricStats
from .calculators import KeyMetrics, ErrorPattern
from .store import KeystrokeStore, InMemoryKeystrokeStore, JsonKeystrokeStore
from .utils import (
    KeystrokeEvent,
    ConfigManager,
    BiometricsError,
    ValidationError,
    StoreError,
)

__all__ = [
    "BiometricsAnalyzer",
    "BiometricStats",
    "KeyMetrics",
    "ErrorPattern",
    "KeystrokeStore",
    "InMemoryKeystrokeStore",
    "JsonKeystrokeStore",
    "KeystrokeEvent",
    "ConfigManager",
    "BiometricsError",
    "ValidationError",
    "StoreError",
]
