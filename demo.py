# ABOUTME: Safe demonstration script generating synthetic typing sessions for the biometrics engine
from datetime import datetime, timedelta, timezone
import random

from typing_biometrics.analyzer import BiometricsAnalyzer
from typing_biometrics.store import InMemoryKeystrokeStore
from typing_biometrics.utils import KeystrokeEvent

SAMPLE_TEXT = (
    "the quick brown fox jumps over the lazy dog while typing practice "
    "builds speed accuracy and rhythm on the keyboard"
)

# Neighbouring keys a typist is likely to hit by mistake
NEIGHBOURS = {
    "e": "wr", "r": "et", "t": "ry", "o": "ip", "i": "uo", "a": "s",
    "s": "ad", "n": "bm", "h": "gj", "y": "tu",
}


def create_session(user_id, game_id, start, num_keystrokes=300, fatigue=0.0, seed=None):
    """One typing session whose speed drifts by ``fatigue`` WPM per keystroke."""
    rng = random.Random(seed)
    events = []
    elapsed_ms = 0
    correct = 0
    position = 0
    wpm = rng.uniform(45, 60)

    for i in range(num_keystrokes):
        expected = SAMPLE_TEXT[position % len(SAMPLE_TEXT)]

        # Realistic timing: longer at word boundaries, occasional thinking pause
        interval = int(rng.uniform(220, 380) if expected == " " else rng.uniform(90, 210))
        if rng.random() < 0.02:
            interval += rng.randint(2000, 4000)
        if i == 0:
            interval = 0
        elapsed_ms += interval

        if expected in NEIGHBOURS and rng.random() < 0.08:
            key = rng.choice(NEIGHBOURS[expected])
        else:
            key = expected
        is_correct = key == expected

        wpm = max(wpm - fatigue + rng.uniform(-0.3, 0.3), 5.0)
        correct += is_correct
        events.append(KeystrokeEvent(
            user_id=user_id,
            game_id=game_id,
            sequence_number=len(events),
            key=key,
            expected_char=expected,
            is_correct=is_correct,
            elapsed_ms=elapsed_ms,
            interval_ms=interval,
            text_position=position,
            current_wpm=round(wpm, 2),
            current_accuracy=round(correct / (i + 1) * 100, 2),
            recorded_at=start + timedelta(milliseconds=elapsed_ms),
        ))

        if not is_correct and rng.random() < 0.5:
            elapsed_ms += 150
            events.append(KeystrokeEvent(
                user_id=user_id,
                game_id=game_id,
                sequence_number=len(events),
                key="Backspace",
                is_backspace=True,
                elapsed_ms=elapsed_ms,
                interval_ms=150,
                text_position=position,
                current_wpm=round(wpm, 2),
                current_accuracy=round(correct / (i + 1) * 100, 2),
                recorded_at=start + timedelta(milliseconds=elapsed_ms),
            ))
        else:
            position += 1

    return events


def run_demo_analysis():
    """Run a complete demonstration of the biometrics engine."""

    print("Creating sample typing sessions...")
    store = InMemoryKeystrokeStore()
    start = datetime.now(timezone.utc) - timedelta(days=3)
    for n, fatigue in enumerate([0.05, 0.0, -0.04]):
        store.add_events_batch(create_session(
            "demo-user", f"demo-game-{n + 1}", start + timedelta(days=n),
            fatigue=fatigue, seed=n,
        ))
    print(f"Stored {store.count_user_events('demo-user')} keystrokes across 3 sessions")

    analyzer = BiometricsAnalyzer(store, "config.yaml")
    stats = analyzer.calculate_user_biometrics("demo-user")

    print("\n" + "=" * 50)
    print("KEYSTROKE BIOMETRICS")
    print("=" * 50)
    print(f"Total Keystrokes: {stats.total_keystrokes:,}")
    print(f"Games Analyzed: {stats.games_analyzed}")
    print(f"Peak / Average WPM: {stats.peak_wpm:.1f} / {stats.average_wpm:.1f}")
    print(f"Overall Accuracy: {stats.overall_accuracy:.1f}%")
    print(f"Rhythm Variance: {stats.typing_rhythm_variance:.2f}")
    print(f"Fatigue Index: {stats.fatigue_index:+.2f}%")

    print("\nHOTTEST KEYS:")
    for metrics in sorted(stats.keyboard_heatmap, key=lambda m: m.heat_level, reverse=True)[:5]:
        print(
            f"  '{metrics.key}': heat {metrics.heat_level:.3f}, "
            f"accuracy {metrics.accuracy:.1f}%, avg {metrics.average_interval_ms:.0f} ms"
        )

    print("\nERROR PATTERNS:")
    for pattern in stats.error_patterns[:5]:
        print(
            f"  '{pattern.expected_key}' -> '{pattern.actual_key}': "
            f"{pattern.occurrences} times ({pattern.error_rate:.1f}%)"
        )

    print(f"\nProblem keys: {', '.join(stats.problem_keys) or 'none'}")
    print(f"Strong keys: {', '.join(stats.strong_keys) or 'none'}")

    for game_id in ("demo-game-1", "demo-game-3"):
        print(f"Fatigue for {game_id}: {analyzer.calculate_fatigue_index('demo-user', game_id):+.2f}%")

    generated_files = analyzer.generate_reports(stats, ["json", "csv"])
    print("\nReports generated:")
    for format_type, filepath in generated_files.items():
        print(f"  {format_type.upper()}: {filepath}")

    return stats


if __name__ == "__main__":
    run_demo_analysis()
