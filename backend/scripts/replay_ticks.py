#!/usr/bin/env python3
"""Replay a CSV of ticks through the signal engine.

Runs the core engine synchronously (no event loop, no Redis) and prints
every emitted signal plus a per-instrument summary. Useful to check warmup
behaviour and tuning against recorded data.

CSV columns: instrument,price,timestamp[,bid,ask] (header optional)

Usage:
    python scripts/replay_ticks.py ticks.csv
    python scripts/replay_ticks.py ticks.csv --config engine.yaml --min-confidence 0.95
    python scripts/replay_ticks.py ticks.csv --instrument frxEURUSD --json
"""

import argparse
import csv
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import orjson

from app.engine_config import load_engine_config
from core.models.tick import Tick
from core.signal_generator import SignalEngine

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    return float(value)


def read_ticks(path: Path, instrument: str | None = None):
    """Yield ticks from a CSV file, skipping the header and malformed rows."""
    with open(path, newline="") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            if not row or row[0].strip().lower() == "instrument":
                continue
            if instrument and row[0] != instrument:
                continue
            try:
                yield Tick(
                    instrument=row[0],
                    price=float(row[1]),
                    timestamp=float(row[2]),
                    bid=_optional_float(row[3]) if len(row) > 3 else None,
                    ask=_optional_float(row[4]) if len(row) > 4 else None,
                )
            except (IndexError, ValueError) as e:
                logger.warning(f"Skipping line {line_no}: {e}")


def main():
    parser = argparse.ArgumentParser(description="Replay recorded ticks through the signal engine")
    parser.add_argument("csv", type=Path, help="CSV file of ticks")
    parser.add_argument("--config", type=Path, default=None, help="engine.yaml (defaults apply if absent)")
    parser.add_argument("--instrument", default=None, help="Only replay this instrument")
    parser.add_argument("--min-confidence", type=float, default=None, help="Override gate.min_confidence")
    parser.add_argument("--json", action="store_true", help="Print signals as JSON lines")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log engine activity")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    config = load_engine_config(args.config)
    if args.min_confidence is not None:
        gate = config.gate.model_copy(update={"min_confidence": args.min_confidence})
        config = config.model_copy(update={"gate": gate})

    # Replayed windows never repeat, so cached analyses would never be read
    config = config.model_copy(
        update={"cache": config.cache.model_copy(update={"enabled": False})}
    )

    engine = SignalEngine(config)
    total = 0
    emitted = 0

    ticks = list(read_ticks(args.csv, args.instrument))
    registry = engine.create_registry(dict.fromkeys(t.instrument for t in ticks))

    for tick in ticks:
        total += 1
        result = engine.process_tick(registry[tick.instrument], tick)
        if result.signal is None:
            continue
        emitted += 1
        signal = result.signal
        if args.json:
            print(orjson.dumps(signal.model_dump(mode="json")).decode())
        else:
            print(
                f"{signal.created_at:%Y-%m-%d %H:%M:%S} {signal.instrument:12s} "
                f"{signal.direction.value:4s} conf={signal.confidence:.3f} "
                f"entry={signal.entry_price:.5f} SL={signal.stop_loss} TP={signal.take_profit} "
                f"exp={signal.expiration_seconds}s"
            )

    print("\n" + "=" * 70, file=sys.stderr)
    print(f"  Replayed {total:,} ticks, {emitted} signals (warmup {engine.min_ticks} ticks)", file=sys.stderr)
    print("=" * 70, file=sys.stderr)
    for state in registry:
        skips = ", ".join(f"{k}={v}" for k, v in state.skips.most_common()) or "-"
        rejected = sum(state.buffer.rejected.values())
        print(
            f"  {state.instrument:12s} cycles={state.cycles:,} signals={state.signals_emitted} "
            f"rejected={rejected} skips: {skips}",
            file=sys.stderr,
        )


if __name__ == "__main__":
    main()
