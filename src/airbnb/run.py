"""
Orchestrates the warehouse build: source -> dim -> fct_reviews -> mart -> checks.
Parquet for source/dim/mart, DuckDB warehouse file for the incremental fact table.
Optional publish of marts to output/ for dashboards.
"""
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import duckdb
import pandas as pd

from src.logging_config import get_logger
from src.airbnb.audit import CompositeRecorder, LoggingRecorder, WarehouseAuditRecorder
from src.airbnb.config import (
    DIM_HOSTS_CLEANSED,
    DIM_LISTINGS_CLEANSED,
    DIM_LISTINGS_W_HOSTS,
    MART_FULLMOON_REVIEWS,
    OUTPUT_DIR,
    WAREHOUSE_DB,
    LoaderConfig,
)
from src.airbnb.dim.transform import run as dim_run
from src.airbnb.fact.reviews import SOURCE_REVIEWS_VIEW, LoadResult, load_reviews
from src.airbnb.mart.fullmoon import run as mart_run
from src.airbnb.source.ingest import run as source_run
from src.airbnb.validation.checks import CheckResult, run_checks

logger = get_logger(__name__)

MART_TABLES = {
    "mart_fullmoon_reviews": MART_FULLMOON_REVIEWS,
}

DIM_TABLES = {
    "dim_listings_cleansed": DIM_LISTINGS_CLEANSED,
    "dim_hosts_cleansed": DIM_HOSTS_CLEANSED,
    "dim_listings_w_hosts": DIM_LISTINGS_W_HOSTS,
}


@dataclass
class RunSummary:
    load: Optional[LoadResult]
    checks: list[CheckResult]

    @property
    def failed_checks(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]

    @property
    def ok(self) -> bool:
        return not self.failed_checks


def _as_posix(path: Path) -> str:
    return str(Path(path).resolve()).replace("\\", "/")


def attach_parquet_views(conn: duckdb.DuckDBPyConnection, tables: dict[str, Path]) -> None:
    """Expose Parquet files as views so the loader and checks can query them by name."""
    for name, path in tables.items():
        if not Path(path).exists():
            raise FileNotFoundError(f"{name} not found: {path}")
        conn.execute(f"CREATE OR REPLACE VIEW {name} AS SELECT * FROM read_parquet('{_as_posix(path)}')")


def publish_marts(output_dir: Path, marts: dict[str, Path] | None = None) -> None:
    """
        Copy mart Parquet files to Parquet, CSV and SQLite under `output_dir` for dashboards.

        Writes `parquet/<mart>.parquet`, `csv/<mart>.csv` and one table per mart in
        `airbnb.db`. Marts that have not been built yet are skipped.

        Args:
            output_dir (Path): Base directory for the published copies.
            marts (dict[str, Path], optional): Mart name -> Parquet file. Defaults to `MART_TABLES`.

        Raises:
            sqlite3.DatabaseError: If a mart cannot be written to the SQLite database.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    parquet_dir = output_dir / "parquet"
    csv_dir = output_dir / "csv"
    parquet_dir.mkdir(exist_ok=True)
    csv_dir.mkdir(exist_ok=True)
    conn_sqlite = sqlite3.connect(output_dir / "airbnb.db")
    try:
        for name, mart_path in (marts or MART_TABLES).items():
            if not mart_path.exists():
                logger.warning("Mart %s not built, skipping publish", name)
                continue
            df = pd.read_parquet(mart_path)
            df.to_parquet(parquet_dir / f"{name}.parquet", index=False)
            df.to_csv(csv_dir / f"{name}.csv", index=False)
            df.to_sql(name, conn_sqlite, if_exists="replace", index=False)
    finally:
        conn_sqlite.close()
    logger.info("Published marts to %s (Parquet, CSV, SQLite)", output_dir)


def _layout(datalake: Optional[Path]) -> dict:
    """Output locations for one build; everything under `datalake` when given."""
    if datalake is None:
        return {
            "source_base": None,
            "dim_base": None,
            "dims": DIM_TABLES,
            "mart": MART_FULLMOON_REVIEWS,
            "warehouse": WAREHOUSE_DB,
        }
    datalake = Path(datalake)
    return {
        "source_base": datalake / "source",
        "dim_base": datalake / "dim",
        "dims": {name: datalake / "dim" / f"{name}.parquet" for name in DIM_TABLES},
        "mart": datalake / "mart" / "mart_fullmoon_reviews.parquet",
        "warehouse": datalake / "warehouse.duckdb",
    }


def check(config: LoaderConfig | None = None, datalake: Optional[Path] = None) -> list[CheckResult]:
    """
        Run the data-quality checks against an existing warehouse without loading anything.

        Raises:
            FileNotFoundError: If the warehouse or a dimension file has not been built yet.
    """
    config = config or LoaderConfig()
    layout = _layout(datalake)
    if not Path(layout["warehouse"]).exists():
        raise FileNotFoundError(f"Warehouse not found: {layout['warehouse']}")
    conn = duckdb.connect(str(layout["warehouse"]))
    try:
        attach_parquet_views(conn, layout["dims"])
        return run_checks(conn, config)
    finally:
        conn.close()


def run(
    config: LoaderConfig | None = None,
    listings_path: Optional[Path] = None,
    hosts_path: Optional[Path] = None,
    reviews_path: Optional[Path] = None,
    seed_path: Optional[Path] = None,
    datalake: Optional[Path] = None,
    output_dir: Optional[Path] = None,
    publish_to_output: bool = True,
) -> RunSummary:
    """
        Run the full build: ingest raw exports, rebuild dimensions, load fct_reviews
        incrementally, rebuild the mart, run the checks and optionally publish marts.

        Check failures are reported in the summary; they do not undo the load.

        Args:
            config (LoaderConfig, optional): Review window and check settings. Defaults to LoaderConfig().
            listings_path (Optional[Path], optional): Raw listings CSV. Defaults to `LISTINGS_CSV`.
            hosts_path (Optional[Path], optional): Raw hosts CSV. Defaults to `HOSTS_CSV`.
            reviews_path (Optional[Path], optional): Raw reviews CSV. Defaults to `REVIEWS_CSV`.
            seed_path (Optional[Path], optional): Full moon seed CSV. Defaults to `FULL_MOON_SEED_CSV`.
            datalake (Optional[Path], optional): Root for source/dim/mart files and the warehouse.
                                                 Defaults to the configured layout.
            output_dir (Optional[Path], optional): Where marts are published. Defaults to `OUTPUT_DIR`.
            publish_to_output (bool, optional): Whether to publish marts. Defaults to `True`.

        Returns:
            RunSummary: The load result and one result per check.

        Raises:
            FileNotFoundError: If a raw export, the seed or a source partition is missing.
            ValueError: If a raw export is empty or malformed.
            duckdb.Error: If the fact load fails; the load is rolled back.
    """
    config = config or LoaderConfig()
    layout = _layout(datalake)
    logger.info("Starting pipeline, run by %s", config.operator)

    source_paths = source_run(listings_path, hosts_path, reviews_path, source_base=layout["source_base"])
    dim_paths = dim_run(
        source_listings_path=source_paths["src_listings"],
        source_hosts_path=source_paths["src_hosts"],
        dim_base=layout["dim_base"],
    )

    warehouse_path = Path(layout["warehouse"])
    warehouse_path.parent.mkdir(parents=True, exist_ok=True)
    conn = duckdb.connect(str(warehouse_path))
    try:
        attach_parquet_views(conn, {SOURCE_REVIEWS_VIEW: source_paths["src_reviews"], **dim_paths})

        recorder = CompositeRecorder(LoggingRecorder(), WarehouseAuditRecorder(conn))
        load = load_reviews(conn, config, recorder=recorder)
        mart_paths = mart_run(conn, seed_path=seed_path, mart_path=layout["mart"])
        checks = run_checks(conn, config)
        failed = sum(not c.passed for c in checks)
        recorder.record("checks_finished", passed=len(checks) - failed, failed=failed)
    finally:
        conn.close()

    if publish_to_output:
        publish_marts(output_dir or OUTPUT_DIR, mart_paths)
    summary = RunSummary(load=load, checks=checks)
    logger.info("Pipeline finished: %d rows loaded, %d failed checks",
                load.rows_inserted, len(summary.failed_checks))
    return summary


if __name__ == "__main__":
    from src.logging_config import setup_logging

    setup_logging()
    run()
