"""
Mart layer: flag reviews written the day after a full moon, write mart Parquet.
"""
from pathlib import Path

import duckdb

from src.logging_config import get_logger
from src.airbnb.config import FCT_REVIEWS, FULL_MOON_SEED_CSV, MART, MART_FULLMOON_REVIEWS

logger = get_logger(__name__)

FULL_MOON = "full moon"
NOT_FULL_MOON = "not full moon"


def fullmoon_reviews_sql(fact: str = FCT_REVIEWS, seed: str = "seed_full_moon_dates") -> str:
    return f"""
        SELECT
            r.*,
            CASE
                WHEN fm.full_moon_date IS NULL THEN '{NOT_FULL_MOON}'
                ELSE '{FULL_MOON}'
            END AS is_full_moon
        FROM {fact} r
        LEFT JOIN {seed} fm
            ON CAST(r.review_date AS DATE) = CAST(fm.full_moon_date AS DATE) + INTERVAL 1 DAY
    """


def load_seed(conn: duckdb.DuckDBPyConnection, seed_path: Path | None = None, name: str = "seed_full_moon_dates") -> None:
    seed_path = seed_path or FULL_MOON_SEED_CSV
    if not seed_path.exists():
        raise FileNotFoundError(f"Full moon seed not found: {seed_path}")
    seed_str = str(seed_path.resolve()).replace("\\", "/")
    conn.execute(f"""
        CREATE OR REPLACE TEMP VIEW {name} AS
        SELECT DISTINCT CAST(full_moon_date AS DATE) AS full_moon_date
        FROM read_csv('{seed_str}', header = true, columns = {{'full_moon_date': 'DATE'}})
    """)


def run(conn: duckdb.DuckDBPyConnection, seed_path: Path | None = None, mart_path: Path | None = None) -> dict[str, Path]:
    """
        Build mart_fullmoon_reviews from fct_reviews and the full moon seed.

        Each fact row is kept once; `is_full_moon` is "full moon" when review_date falls
        on the day after a seeded full moon date, "not full moon" otherwise.

        Args:
            conn: Warehouse connection holding fct_reviews.
            seed_path (Path, optional): Seed CSV with a `full_moon_date` column.
                                        Defaults to `FULL_MOON_SEED_CSV`.
            mart_path (Path, optional): Output Parquet file. Defaults to `MART_FULLMOON_REVIEWS`.

        Returns:
            dict[str, Path]: Mart name -> written Parquet file.

        Raises:
            FileNotFoundError: If the seed CSV does not exist.
    """
    out = mart_path or MART_FULLMOON_REVIEWS
    (out.parent if mart_path else MART).mkdir(parents=True, exist_ok=True)

    load_seed(conn, seed_path)
    out_str = str(out.resolve()).replace("\\", "/")
    conn.execute(f"COPY ({fullmoon_reviews_sql()}) TO '{out_str}' (FORMAT PARQUET)")
    n = conn.execute(f"SELECT count(*) FROM read_parquet('{out_str}')").fetchone()[0]
    logger.info("Wrote mart_fullmoon_reviews: %s (%d rows)", out, n)
    return {"mart_fullmoon_reviews": out}
