# ABOUTME: JSON and CSV export of biometric statistics
import json
from pathlib import Path
from typing import Dict, Any, List, Tuple

import pandas as pd

try:
    from .calculators import KeyMetrics, ErrorPattern
except ImportError:
    from calculators import KeyMetrics, ErrorPattern  # type: ignore


HEATMAP_COLUMNS = [
    "key",
    "total_presses",
    "correct_presses",
    "incorrect_presses",
    "accuracy",
    "average_interval_ms",
    "fastest_interval_ms",
    "slowest_interval_ms",
    "heat_level",
]
ERROR_PATTERN_COLUMNS = ["expected_key", "actual_key", "occurrences", "error_rate"]


def write_json_report(document: Dict[str, Any], filename: Path) -> Path:
    """Save a statistics document as indented JSON."""
    with open(filename, "w") as f:
        json.dump(document, f, indent=2, default=str)
    return filename


def write_csv_reports(
    heatmap: List[KeyMetrics],
    error_patterns: List[ErrorPattern],
    reports_dir: Path,
    stem: str,
) -> Tuple[Path, Path]:
    """Export heatmap and error patterns as CSV tables (headers even when empty)."""
    heatmap_file = reports_dir / f"heatmap_{stem}.csv"
    patterns_file = reports_dir / f"error_patterns_{stem}.csv"

    df = pd.DataFrame([m.to_dict() for m in heatmap], columns=HEATMAP_COLUMNS)
    df.to_csv(heatmap_file, index=False)

    df = pd.DataFrame(
        [p.to_dict() for p in error_patterns], columns=ERROR_PATTERN_COLUMNS
    )
    df.to_csv(patterns_file, index=False)
    return heatmap_file, patterns_file
