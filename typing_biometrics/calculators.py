# ABOUTME: Per-key heatmap, error pattern, rhythm variance and fatigue calculations
import statistics
from collections import defaultdict, Counter
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Iterable, Tuple

import numpy as np

try:
    from .utils import KeystrokeEvent
except ImportError:
    from utils import KeystrokeEvent  # type: ignore


SPEED_CEILING_MS = 500
RHYTHM_OUTLIER_MS = 2000
MIN_FATIGUE_EVENTS = 20
ERROR_NOISE_FLOOR = 2
MAX_ERROR_PATTERNS = 20

# Heat level weights
ACCURACY_WEIGHT = 0.7
SPEED_WEIGHT = 0.3


@dataclass
class KeyMetrics:
    """Aggregated statistics for one key."""

    key: str
    total_presses: int = 0
    correct_presses: int = 0
    incorrect_presses: int = 0
    accuracy: float = 0.0
    average_interval_ms: float = 0.0
    fastest_interval_ms: float = 0.0
    slowest_interval_ms: float = 0.0
    heat_level: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ErrorPattern:
    """A recurring expected -> actual key confusion."""

    expected_key: str
    actual_key: str
    occurrences: int = 0
    error_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def analyzable_events(events: Iterable[KeystrokeEvent]) -> List[KeystrokeEvent]:
    """Drop backspaces and blank keys, which say nothing about a key's accuracy."""
    return [e for e in events if not e.is_backspace and e.key and e.key.strip()]


def heat_level(
    accuracy: float,
    average_interval_ms: float,
    has_intervals: bool = True,
    speed_ceiling_ms: float = SPEED_CEILING_MS,
) -> float:
    """Blend of inaccuracy (70%) and slowness (30%), in [0, 1]."""
    accuracy_score = (100 - accuracy) / 100
    speed_score = (
        min(average_interval_ms / speed_ceiling_ms, 1.0) if has_intervals else 0.0
    )
    return round(accuracy_score * ACCURACY_WEIGHT + speed_score * SPEED_WEIGHT, 3)


def calculate_key_metrics(
    events: Iterable[KeystrokeEvent], speed_ceiling_ms: float = SPEED_CEILING_MS
) -> List[KeyMetrics]:
    """Build the keyboard heatmap, most-pressed keys first."""
    key_groups: Dict[str, List[KeystrokeEvent]] = defaultdict(list)
    for event in analyzable_events(events):
        key_groups[event.key].append(event)

    metrics = []
    for key, presses in key_groups.items():
        total = len(presses)
        correct = sum(1 for e in presses if e.is_correct)
        accuracy = round(correct / total * 100, 2)

        intervals = [float(e.interval_ms) for e in presses if e.interval_ms > 0]
        average = round(statistics.mean(intervals), 2) if intervals else 0.0

        metrics.append(
            KeyMetrics(
                key=key,
                total_presses=total,
                correct_presses=correct,
                incorrect_presses=total - correct,
                accuracy=accuracy,
                average_interval_ms=average,
                fastest_interval_ms=round(min(intervals), 2) if intervals else 0.0,
                slowest_interval_ms=round(max(intervals), 2) if intervals else 0.0,
                heat_level=heat_level(
                    accuracy, average, bool(intervals), speed_ceiling_ms
                ),
            )
        )

    # sorted() is stable, so ties keep first-seen order
    return sorted(metrics, key=lambda m: m.total_presses, reverse=True)


def detect_error_patterns(
    events: Iterable[KeystrokeEvent],
    noise_floor: int = ERROR_NOISE_FLOOR,
    limit: int = MAX_ERROR_PATTERNS,
) -> List[ErrorPattern]:
    """Find expected->actual confusions seen more than ``noise_floor`` times."""
    events = list(events)
    incorrect = [e for e in analyzable_events(events) if not e.is_correct]
    if not incorrect:
        return []

    pair_counts: Counter[Tuple[str, str]] = Counter(
        (e.expected_char, e.key) for e in incorrect
    )
    expected_totals: Counter[str] = Counter(e.expected_char for e in events)

    patterns = []
    for (expected_key, actual_key), occurrences in pair_counts.items():
        if occurrences <= noise_floor:
            continue
        total_expected = expected_totals[expected_key]
        error_rate = occurrences / total_expected * 100 if total_expected else 0.0
        patterns.append(
            ErrorPattern(
                expected_key=expected_key,
                actual_key=actual_key,
                occurrences=occurrences,
                error_rate=round(error_rate, 2),
            )
        )

    patterns.sort(key=lambda p: p.occurrences, reverse=True)
    return patterns[:limit]


def calculate_rhythm_variance(
    events: Iterable[KeystrokeEvent], outlier_ms: float = RHYTHM_OUTLIER_MS
) -> float:
    """Population variance of inter-keystroke intervals, ignoring pauses."""
    intervals = [e.interval_ms for e in events if 0 < e.interval_ms < outlier_ms]
    if len(intervals) < 2:
        return 0.0
    return round(float(np.var(np.asarray(intervals, dtype=float))), 2)


def average_interval(events: Iterable[KeystrokeEvent]) -> float:
    intervals = [e.interval_ms for e in events]
    return float(np.mean(intervals)) if intervals else 0.0


def calculate_fatigue_index(
    events: Iterable[KeystrokeEvent], min_events: int = MIN_FATIGUE_EVENTS
) -> float:
    """Signed % WPM drop from the first to the last quarter of a session.

    Positive means the typist slowed down, negative means they warmed up.
    Sessions shorter than ``min_events`` or with a zero opening WPM yield 0.
    """
    ordered = sorted(events, key=lambda e: e.sequence_number)
    quarter = len(ordered) // 4
    if len(ordered) < min_events or quarter == 0:
        return 0.0

    first_quarter_wpm = statistics.mean(e.current_wpm for e in ordered[:quarter])
    last_quarter_wpm = statistics.mean(
        e.current_wpm for e in ordered[len(ordered) - quarter :]
    )

    if first_quarter_wpm == 0:
        return 0.0

    fatigue = (first_quarter_wpm - last_quarter_wpm) / first_quarter_wpm * 100
    return round(fatigue, 2)


def select_problem_keys(
    heatmap: List[KeyMetrics],
    threshold: float = 85,
    min_presses: int = 0,
    top_count: int = 10,
) -> List[str]:
    """Least accurate keys below ``threshold``, worst first."""
    candidates = [
        m for m in heatmap if m.accuracy < threshold and m.total_presses > min_presses
    ]
    candidates.sort(key=lambda m: m.accuracy)
    return [m.key for m in candidates[:top_count]]


def select_strong_keys(
    heatmap: List[KeyMetrics],
    threshold: float = 95,
    min_presses: int = 5,
    top_count: int = 10,
) -> List[str]:
    """Most accurate well-practiced keys, ties broken by speed."""
    candidates = [
        m for m in heatmap if m.accuracy > threshold and m.total_presses > min_presses
    ]
    candidates.sort(key=lambda m: (-m.accuracy, m.average_interval_ms))
    return [m.key for m in candidates[:top_count]]
