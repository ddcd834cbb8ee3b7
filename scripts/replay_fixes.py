#!/usr/bin/env python3
"""
CLI script for replaying a recorded GPS fix log through the tracking pipeline.

Reads fixes from CSV or parquet, feeds them to the TrackingService exactly as
the location provider would, and reports the trips that were detected.
"""

import asyncio
import sys
from pathlib import Path

import click
import pandas as pd

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tripcore.api import database
from tripcore.api.database import TripStore, init_db
from tripcore.tracking.trip import Fix
from tripcore.tracking.tracking_service import TrackingService
from tripcore.utils.config_loader import Config
from tripcore.utils.logging_config import get_logger

logger = get_logger("tracking.replay")

REQUIRED_COLUMNS = ("timestamp", "latitude", "longitude")
OPTIONAL_COLUMNS = ("altitude", "accuracy", "speed", "heading")


def _optional(row, column):
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    return float(value)


def load_fixes(path: Path) -> list:
    """Load a fix log; timestamps are epoch seconds or anything pandas parses as a datetime."""
    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
    else:
        df = pd.read_csv(path)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise click.BadParameter(f"Missing columns: {', '.join(missing)}")

    if not pd.api.types.is_numeric_dtype(df["timestamp"]):
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True).astype("int64") / 1e9

    return [
        Fix(
            latitude=float(row["latitude"]),
            longitude=float(row["longitude"]),
            timestamp=float(row["timestamp"]),
            **{column: _optional(row, column) for column in OPTIONAL_COLUMNS},
        )
        for _, row in df.iterrows()
    ]


async def replay(service: TrackingService, fixes: list, batch_size: int, resume_at: float | None):
    outcomes = []
    for start in range(0, len(fixes), batch_size):
        outcomes.extend(await service.process_batch(fixes[start:start + batch_size]))
    if resume_at is not None:
        await service.handle_foreground_resume(now=resume_at)
    return outcomes


@click.command()
@click.option('--input', '-i', 'input_path', required=True, type=click.Path(exists=True),
              help='Fix log (CSV or parquet)')
@click.option('--db', default='data/replay.db', type=click.Path(), help='SQLite database to write trips to')
@click.option('--config-dir', default='config', type=click.Path(), help='Directory with YAML config files')
@click.option('--batch-size', default=5, type=int, help='Fixes per delivered batch')
@click.option('--resume-gap', type=float,
              help='Run a foreground-resume check this many seconds after the last fix')
@click.option('--output', '-o', type=click.Path(), help='Write the resulting trips to this CSV')
def main(input_path, db, config_dir, batch_size, resume_gap, output):
    """
    Replay a GPS fix log and print the detected trips.

    Examples:
        # Replay a recorded commute
        python scripts/replay_fixes.py -i data/raw/commute.csv

        # Also check for an abandoned trip 50 minutes after the log ends
        python scripts/replay_fixes.py -i data/raw/commute.csv --resume-gap 3000
    """
    fixes = load_fixes(Path(input_path))
    click.echo(f"Loaded {len(fixes)} fixes from {input_path}")
    if not fixes:
        return

    database.DB_PATH = Path(db)
    database._engine = None
    database._SessionLocal = None
    init_db()

    config = Config(Path(config_dir)).load_all()
    store = TripStore()
    service = TrackingService(
        store,
        config=config.tracking,
        ingestion_config=config.ingestion,
        detection_config=config.detection,
        classifier_config=config.classifier,
        sync_config=config.sync,
    )

    resume_at = max(f.timestamp for f in fixes) + resume_gap if resume_gap is not None else None
    outcomes = asyncio.run(replay(service, fixes, batch_size, resume_at))
    logger.info(
        f"Replayed {len(fixes)} fixes: {service.processed_fixes} processed, "
        f"{service.rejected_fixes} rejected"
    )

    counts = pd.Series([o.value for o in outcomes]).value_counts()
    click.echo("Fix outcomes:")
    for outcome, count in counts.items():
        click.echo(f"  {outcome:<10} {count}")

    trips = store.get_all_trips()
    rows = [
        {
            "id": t.id,
            "type": t.type.value,
            "status": t.status.value,
            "distance_m": round(t.distance, 1),
            "duration_s": round(t.duration, 1),
            "avg_speed_kmh": round(t.avg_speed, 1),
            "notes": t.notes or "",
        }
        for t in reversed(trips)
    ]
    click.echo()
    if rows:
        click.echo(pd.DataFrame(rows).to_string(index=False))
    else:
        click.echo("No trips detected")

    if output and rows:
        pd.DataFrame(rows).to_csv(output, index=False)
        click.echo(f"\nTrips saved to {output}")


if __name__ == "__main__":
    main()
