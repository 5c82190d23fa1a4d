"""
Seed script for the refurb tracker.

Loads the schema, makes sure every location has a technician, and generates a
deterministic history of daily completions that is bulk-loaded with COPY. Useful
for trying the metrics and request views against a local database.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
from datetime import date, timedelta
from pathlib import Path
from typing import List, Sequence, Tuple

import psycopg
import typer

from refurb_tracker.config import build_dsn
from refurb_tracker.domain.catalog import BRANDS, INSTRUMENT_DATA
from refurb_tracker.infrastructure.db_factory import get_sync_connection

app = typer.Typer(help="Seed the refurb tracker database (schema + completions via CSV/COPY).")

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "db" / "init.sql"

CSV_COLUMNS = [
    "location_id",
    "tech_id",
    "category",
    "instrument_type",
    "brand",
    "quantity_completed",
    "yellow_armband_applied",
    "qc_card_signed",
    "completion_date",
]

Staff = Sequence[Tuple[str, str]]


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def generate_completions_csv(
    csv_path: Path, staff: Staff, rows: int, days: int, seed: int, today: date
) -> int:
    """
    Write `rows` completions spread over the `days` days up to `today`.

    `staff` is a list of (location_id, tech_id) pairs. Output is fully
    determined by the arguments.
    """
    rng = random.Random(seed)
    catalog = [(category, kind) for category, kinds in INSTRUMENT_DATA.items() for kind in kinds]

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_COLUMNS)
        for _ in range(rows):
            location_id, tech_id = rng.choice(list(staff))
            category, instrument_type = rng.choice(catalog)
            completed_on = today - timedelta(days=rng.randrange(days))
            writer.writerow(
                [
                    location_id,
                    tech_id,
                    category,
                    instrument_type,
                    rng.choice(BRANDS),
                    rng.randint(1, 12),
                    "t",
                    "t",
                    completed_on.isoformat(),
                ]
            )
    return rows


def _apply_schema(conn: psycopg.Connection) -> None:
    conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    conn.commit()


def _ensure_staff(conn: psycopg.Connection) -> List[Tuple[str, str]]:
    """Return (location_id, tech_id) pairs, creating a technician where a location has none."""
    with conn.cursor() as cur:
        cur.execute("SELECT id, store_number, city FROM locations ORDER BY city")
        locations = cur.fetchall()
        staff: List[Tuple[str, str]] = []
        for location_id, store_number, city in locations:
            cur.execute(
                "SELECT id FROM technicians WHERE location_id = %s AND is_active ORDER BY name",
                (location_id,),
            )
            techs = [row[0] for row in cur.fetchall()]
            if not techs:
                cur.execute(
                    "INSERT INTO technicians (name, location_id, pin) VALUES (%s, %s, %s) "
                    "RETURNING id",
                    (f"{city} Tech", location_id, store_number[-4:].zfill(4)),
                )
                techs = [cur.fetchone()[0]]
            staff.extend((str(location_id), str(tech_id)) for tech_id in techs)
    conn.commit()
    return staff


def _copy_into_db(conn: psycopg.Connection, csv_path: Path) -> None:
    with conn.cursor() as cur:
        with cur.copy(
            f"""
            COPY public.daily_completions ({", ".join(CSV_COLUMNS)})
            FROM STDIN WITH (FORMAT csv, HEADER TRUE)
            """
        ) as copy:
            with csv_path.open("r", encoding="utf-8") as f:
                for line in f:
                    copy.write(line)
    conn.commit()


@app.command()
def main(
    rows: int = typer.Option(
        500,
        "--rows",
        "-r",
        help="Number of completions to generate.",
    ),
    days: int = typer.Option(
        45,
        "--days",
        "-d",
        help="Spread completions over this many trailing days.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    schema: bool = typer.Option(
        True,
        "--schema/--no-schema",
        help="Apply db/init.sql before seeding.",
    ),
) -> None:
    """
    Apply the schema, then generate completions and load them using COPY.
    """
    start = time.perf_counter()
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="refurb_seed_"))
        csv_path = tmpdir / "completions.csv"

    with get_sync_connection(_build_dsn(dsn)) as conn:
        if schema:
            typer.echo(f"Applying schema from {SCHEMA_PATH}")
            _apply_schema(conn)
        staff = _ensure_staff(conn)
        if not staff:
            typer.echo("No locations found; nothing to seed.", err=True)
            raise typer.Exit(code=1)

        typer.echo(f"Generating {rows:,} completions over {days} days -> {csv_path} (seed={seed})")
        generate_completions_csv(csv_path, staff, rows=rows, days=days, seed=seed, today=date.today())

        typer.echo("Loading CSV into Postgres via COPY...")
        _copy_into_db(conn, csv_path)

    typer.echo(f"Seed completed in {time.perf_counter() - start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
