# ABOUTME: Biometrics aggregator composing heatmap, error, rhythm and fatigue analysis per user or session
import logging
import statistics
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any, Optional, Callable

try:
    from .calculators import (
        KeyMetrics,
        ErrorPattern,
        average_interval,
        calculate_fatigue_index,
        calculate_key_metrics,
        calculate_rhythm_variance,
        detect_error_patterns,
        select_problem_keys,
        select_strong_keys,
    )
    from .reports import write_csv_reports, write_json_report
    from .store import JsonKeystrokeStore, KeystrokeStore
    from .utils import (
        ConfigManager,
        KeystrokeEvent,
        StoreError,
        ValidationError,
        require_id,
        setup_logging,
        utcnow,
    )
except ImportError:
    from calculators import (  # type: ignore
        KeyMetrics,
        ErrorPattern,
        average_interval,
        calculate_fatigue_index,
        calculate_key_metrics,
        calculate_rhythm_variance,
        detect_error_patterns,
        select_problem_keys,
        select_strong_keys,
    )
    from reports import write_csv_reports, write_json_report  # type: ignore
    from store import JsonKeystrokeStore, KeystrokeStore  # type: ignore
    from utils import (  # type: ignore
        ConfigManager,
        KeystrokeEvent,
        StoreError,
        ValidationError,
        require_id,
        setup_logging,
        utcnow,
    )


MAX_TOP_COUNT = 50


@dataclass
class BiometricStats:
    """Aggregate typing biometrics for a user, or for one of their sessions."""

    user_id: str
    game_id: Optional[str] = None
    total_keystrokes: int = 0
    games_analyzed: int = 0
    keyboard_heatmap: List[KeyMetrics] = field(default_factory=list)
    typing_rhythm_variance: float = 0.0
    average_keystroke_interval: float = 0.0
    error_patterns: List[ErrorPattern] = field(default_factory=list)
    fatigue_index: float = 0.0
    peak_wpm: float = 0.0
    average_wpm: float = 0.0
    overall_accuracy: float = 0.0
    problem_keys: List[str] = field(default_factory=list)
    strong_keys: List[str] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def has_data(self) -> bool:
        return self.total_keystrokes > 0

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready document; ``has_data`` flags the no-data result."""
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        data["has_data"] = self.has_data
        return data


class BiometricsAnalyzer:
    """Keystroke biometrics over a keystroke store.

    Every call is a pure function of the events fetched for it; the analyzer
    keeps no per-user state between calls and is safe to share across threads.
    """

    def __init__(
        self, store: Optional[KeystrokeStore] = None, config_path: Optional[str] = None
    ):
        self.config = ConfigManager(config_path or "config.yaml")
        setup_logging(
            self.config.get("output.log_level", "INFO"),
            self.config.get("output.log_file"),
        )

        self.store = store or JsonKeystrokeStore(
            self.config.get("storage.data_directory", "./data"),
            self.config.get("storage.batch_size", 100),
        )
        self.reports_dir = Path(
            self.config.get("output.reports_directory", "./reports")
        )
        self.max_workers = max(int(self.config.get("analysis.max_workers", 4)), 1)

    def _fetch(
        self,
        fetch: Callable[[], List[KeystrokeEvent]],
        user_id: str,
        game_id: Optional[str] = None,
    ) -> List[KeystrokeEvent]:
        """Run a store read, tagging unexpected failures with the ids involved."""
        scope = f"user {user_id}" + (f", game {game_id}" if game_id else "")
        try:
            return list(fetch())
        except ValidationError:
            raise
        except StoreError:
            logging.error(f"Keystroke store failed for {scope}")
            raise
        except Exception as e:
            logging.error(f"Keystroke store failed for {scope}: {e}")
            raise StoreError(
                f"Failed to retrieve keystrokes for {scope}",
                user_id=user_id,
                game_id=game_id,
            ) from e

    def _build_stats(
        self,
        user_id: str,
        game_id: Optional[str],
        events: List[KeystrokeEvent],
        games_analyzed: int,
    ) -> BiometricStats:
        heatmap = calculate_key_metrics(
            events, self.config.get("analysis.speed_ceiling_ms", 500)
        )
        wpm_values = [e.current_wpm for e in events]

        return BiometricStats(
            user_id=user_id,
            game_id=game_id,
            total_keystrokes=len(events),
            games_analyzed=games_analyzed,
            keyboard_heatmap=heatmap,
            typing_rhythm_variance=calculate_rhythm_variance(
                events, self.config.get("analysis.rhythm_outlier_ms", 2000)
            ),
            average_keystroke_interval=average_interval(events),
            error_patterns=detect_error_patterns(
                events,
                self.config.get("analysis.error_noise_floor", 2),
                self.config.get("analysis.max_error_patterns", 20),
            ),
            peak_wpm=max(wpm_values),
            average_wpm=statistics.mean(wpm_values),
            overall_accuracy=statistics.mean(e.current_accuracy for e in events),
            problem_keys=select_problem_keys(
                heatmap,
                threshold=self.config.get("analysis.problem_accuracy_threshold", 85),
                top_count=self.config.get("analysis.top_keys", 10),
            ),
            strong_keys=select_strong_keys(
                heatmap,
                threshold=self.config.get("analysis.strong_accuracy_threshold", 95),
                min_presses=self.config.get("analysis.strong_min_presses", 5),
                top_count=self.config.get("analysis.top_keys", 10),
            ),
        )

    def calculate_user_biometrics(self, user_id: str) -> BiometricStats:
        """Statistics across every session the user has recorded."""
        require_id(user_id, "User ID")
        events = self._fetch(lambda: self.store.get_user_events(user_id), user_id)

        if not events:
            logging.info(f"No keystroke data found for user {user_id}")
            return BiometricStats(user_id=user_id)

        game_ids = list(dict.fromkeys(e.game_id for e in events))
        stats = self._build_stats(user_id, None, events, len(game_ids))
        stats.fatigue_index = self._calculate_overall_fatigue(user_id, game_ids)

        logging.info(
            f"Calculated biometrics for user {user_id}: "
            f"{stats.total_keystrokes} keystrokes, {stats.games_analyzed} games"
        )
        return stats

    def calculate_session_biometrics(self, user_id: str, game_id: str) -> BiometricStats:
        """Statistics for a single typing session."""
        require_id(user_id, "User ID")
        require_id(game_id, "Game ID")
        events = self._fetch(
            lambda: self.store.get_session_events(user_id, game_id), user_id, game_id
        )

        if not events:
            logging.info(f"No keystroke data found for game {game_id}")
            return BiometricStats(user_id=user_id, game_id=game_id)

        stats = self._build_stats(user_id, game_id, events, 1)
        stats.fatigue_index = calculate_fatigue_index(
            events, self.config.get("analysis.min_fatigue_events", 20)
        )
        return stats

    def calculate_fatigue_index(self, user_id: str, game_id: str) -> float:
        """Speed degradation between the first and last quarter of one session."""
        require_id(user_id, "User ID")
        require_id(game_id, "Game ID")
        events = self._fetch(
            lambda: self.store.get_session_events(user_id, game_id), user_id, game_id
        )
        return calculate_fatigue_index(
            events, self.config.get("analysis.min_fatigue_events", 20)
        )

    def _calculate_overall_fatigue(self, user_id: str, game_ids: List[str]) -> float:
        """Average per-session fatigue, skipping sessions that fail."""
        if not game_ids:
            return 0.0

        results: Dict[str, float] = {}
        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(game_ids)))
        try:
            futures = {
                executor.submit(self.calculate_fatigue_index, user_id, game_id): game_id
                for game_id in game_ids
            }
            for future in as_completed(futures):
                game_id = futures[future]
                try:
                    results[game_id] = future.result()
                except ValidationError as e:
                    logging.debug(
                        f"Skipping game {game_id!r} due to invalid arguments: {e}"
                    )
                except Exception as e:
                    logging.warning(
                        f"Failed to calculate fatigue for game {game_id}, skipping: {e}"
                    )
        except BaseException:
            # Cancelled: drop whatever finished, nothing partial escapes
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        # Average in session order so repeated calls give identical floats
        indices = [results[g] for g in game_ids if g in results]
        return round(statistics.mean(indices), 2) if indices else 0.0

    def get_keyboard_heatmap(self, user_id: str) -> List[KeyMetrics]:
        require_id(user_id, "User ID")
        events = self._fetch(lambda: self.store.get_user_events(user_id), user_id)
        return calculate_key_metrics(
            events, self.config.get("analysis.speed_ceiling_ms", 500)
        )

    def get_problem_keys(self, user_id: str, top_count: int = 10) -> List[str]:
        """Low-accuracy keys with more than three presses, worst first."""
        require_id(user_id, "User ID")
        self._check_top_count(top_count)
        return select_problem_keys(
            self.get_keyboard_heatmap(user_id),
            threshold=self.config.get("analysis.problem_accuracy_threshold", 85),
            min_presses=3,
            top_count=top_count,
        )

    def get_strong_keys(self, user_id: str, top_count: int = 10) -> List[str]:
        require_id(user_id, "User ID")
        self._check_top_count(top_count)
        return select_strong_keys(
            self.get_keyboard_heatmap(user_id),
            threshold=self.config.get("analysis.strong_accuracy_threshold", 95),
            min_presses=self.config.get("analysis.strong_min_presses", 5),
            top_count=top_count,
        )

    def detect_error_patterns(self, user_id: str) -> List[ErrorPattern]:
        require_id(user_id, "User ID")
        events = self._fetch(lambda: self.store.get_user_events(user_id), user_id)
        return detect_error_patterns(
            events,
            self.config.get("analysis.error_noise_floor", 2),
            self.config.get("analysis.max_error_patterns", 20),
        )

    def delete_user_data(self, user_id: str) -> int:
        """Erase every recorded keystroke for a user."""
        require_id(user_id, "User ID")
        try:
            deleted = self.store.delete_user_events(user_id)
        except (ValidationError, StoreError):
            raise
        except Exception as e:
            logging.error(f"Failed to delete keystrokes for user {user_id}: {e}")
            raise StoreError(
                f"Failed to delete keystrokes for user {user_id}", user_id=user_id
            ) from e
        logging.info(f"Deleted keystroke data for user {user_id}")
        return deleted

    @staticmethod
    def _check_top_count(top_count: int) -> None:
        if not 1 <= top_count <= MAX_TOP_COUNT:
            raise ValidationError(f"Count must be between 1 and {MAX_TOP_COUNT}")

    def generate_reports(
        self, stats: BiometricStats, formats: Optional[List[str]] = None
    ) -> Dict[str, str]:
        """Write the statistics document (json) and heatmap tables (csv)."""
        formats = formats or self.config.get("reporting.export_formats", ["json"])
        self.reports_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        scope = stats.user_id if not stats.game_id else f"{stats.user_id}_{stats.game_id}"
        scope = "".join(c if c.isalnum() or c in "-_" else "_" for c in scope)
        stem = f"{scope}_{timestamp}"

        generated_files = {}
        for format_type in formats:
            if format_type == "json":
                filename = self.reports_dir / f"biometrics_{stem}.json"
                generated_files["json"] = str(write_json_report(stats.to_dict(), filename))
            elif format_type == "csv":
                heatmap_file, patterns_file = write_csv_reports(
                    stats.keyboard_heatmap, stats.error_patterns, self.reports_dir, stem
                )
                generated_files["csv"] = str(heatmap_file)
                generated_files["csv_error_patterns"] = str(patterns_file)
            else:
                logging.warning(f"Unknown report format {format_type!r}, skipping")

        logging.info(f"Generated reports: {list(generated_files.keys())}")
        return generated_files


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the analyzer."""
    import argparse

    parser = argparse.ArgumentParser(description="Keystroke Biometrics Analysis")
    parser.add_argument(
        "--config", default="config.yaml", help="Configuration file path"
    )
    parser.add_argument("--user", required=True, help="User whose keystrokes to analyze")
    parser.add_argument("--game", help="Restrict analysis to one game session")
    parser.add_argument(
        "--export-csv", action="store_true", help="Export heatmap and error patterns to CSV"
    )

    args = parser.parse_args(argv)

    analyzer = BiometricsAnalyzer(config_path=args.config)

    try:
        if args.game:
            stats = analyzer.calculate_session_biometrics(args.user, args.game)
        else:
            stats = analyzer.calculate_user_biometrics(args.user)
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 2
    except StoreError as e:
        print(f"Keystroke store error: {e}", file=sys.stderr)
        return 1

    if not stats.has_data:
        print("No keystroke data found for this request.")
        return 0

    report_formats = ["json"]
    if args.export_csv:
        report_formats.append("csv")
    generated_files = analyzer.generate_reports(stats, report_formats)

    print("\n=== Keystroke Biometrics Summary ===")
    print(f"Total Keystrokes: {stats.total_keystrokes:,}")
    print(f"Games Analyzed: {stats.games_analyzed}")
    print(f"Peak WPM: {stats.peak_wpm:.1f} | Average WPM: {stats.average_wpm:.1f}")
    print(f"Overall Accuracy: {stats.overall_accuracy:.1f}%")
    print(f"Rhythm Variance: {stats.typing_rhythm_variance:.2f}")
    print(f"Fatigue Index: {stats.fatigue_index:+.2f}%")

    if stats.problem_keys:
        print(f"Problem Keys: {', '.join(stats.problem_keys)}")
    if stats.strong_keys:
        print(f"Strong Keys: {', '.join(stats.strong_keys)}")
    if stats.error_patterns:
        top = stats.error_patterns[0]
        print(
            f"Most Common Error: '{top.expected_key}' -> '{top.actual_key}' "
            f"({top.occurrences} times, {top.error_rate:.1f}%)"
        )

    print("\nReports generated:")
    for format_type, filepath in generated_files.items():
        print(f"  {format_type.upper()}: {filepath}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
