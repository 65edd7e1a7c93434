"""
Dim layer: read the latest source partitions, cleanse listings and hosts, join them.
DuckDB for the SQL, Parquet out.
"""
from pathlib import Path

import duckdb
import pandas as pd

from src.logging_config import get_logger
from src.airbnb.config import (
    DIM,
    DIM_HOSTS_CLEANSED,
    DIM_LISTINGS_CLEANSED,
    DIM_LISTINGS_W_HOSTS,
    SOURCE_HOSTS,
    SOURCE_LISTINGS,
)

logger = get_logger(__name__)

ANONYMOUS_HOST = "Anonymous"

DIM_LISTINGS_CLEANSED_SQL = """
    SELECT
        listing_id,
        listing_name,
        room_type,
        CASE WHEN minimum_nights = 0 THEN 1 ELSE minimum_nights END AS minimum_nights,
        host_id,
        CAST(REPLACE(REPLACE(TRIM(CAST(price_str AS VARCHAR)), '$', ''), ',', '') AS DECIMAL(10, 2)) AS price,
        created_at,
        updated_at
    FROM src_listings
    QUALIFY row_number() OVER (PARTITION BY listing_id ORDER BY updated_at DESC NULLS LAST) = 1
"""

DIM_HOSTS_CLEANSED_SQL = f"""
    SELECT
        host_id,
        COALESCE(host_name, '{ANONYMOUS_HOST}') AS host_name,
        is_superhost,
        created_at,
        updated_at
    FROM src_hosts
"""

DIM_LISTINGS_W_HOSTS_SQL = """
    SELECT
        l.listing_id,
        l.listing_name,
        l.room_type,
        l.minimum_nights,
        l.price,
        l.host_id,
        h.host_name,
        h.is_superhost AS host_is_superhost,
        l.created_at,
        GREATEST(l.updated_at, h.updated_at) AS updated_at
    FROM dim_listings_cleansed l
    LEFT JOIN dim_hosts_cleansed h ON l.host_id = h.host_id
"""


def _latest_partition_dir(base: Path, pattern: str = "ingestion_date=*") -> Path:
    """
        Return the newest partition directory under `base`.

        Raises:
            FileNotFoundError: If `base` does not exist or holds no matching partitions.
    """
    if not base.exists():
        raise FileNotFoundError(f"Source path not found: {base}")
    parts = sorted(base.glob(pattern), reverse=True)
    if not parts:
        raise FileNotFoundError(f"No partitions under {base}")
    return parts[0]


def build_dimensions(listings_df: pd.DataFrame, hosts_df: pd.DataFrame) -> dict[str, pd.DataFrame]:
    """
        Cleanse source listings and hosts and build the joined listing dimension.

        - dim_listings_cleansed: one row per listing_id (latest updated_at wins),
          minimum_nights of 0 become 1, price parsed from strings like "$1,234.00".
        - dim_hosts_cleansed: missing host names become "Anonymous".
        - dim_listings_w_hosts: listings with host name and superhost flag; updated_at
          is the later of the two sides.

        Args:
            listings_df (pd.DataFrame): src_listings rows.
            hosts_df (pd.DataFrame): src_hosts rows.

        Returns:
            dict[str, pd.DataFrame]: Dimension name -> frame.
    """
    conn = duckdb.connect(":memory:")
    try:
        conn.register("src_listings", listings_df)
        conn.register("src_hosts", hosts_df)
        conn.execute(f"CREATE TABLE dim_listings_cleansed AS {DIM_LISTINGS_CLEANSED_SQL}")
        conn.execute(f"CREATE TABLE dim_hosts_cleansed AS {DIM_HOSTS_CLEANSED_SQL}")
        conn.execute(f"CREATE TABLE dim_listings_w_hosts AS {DIM_LISTINGS_W_HOSTS_SQL}")
        return {
            name: conn.execute(f"SELECT * FROM {name}").df()
            for name in ("dim_listings_cleansed", "dim_hosts_cleansed", "dim_listings_w_hosts")
        }
    finally:
        conn.close()


def run(
    source_listings_path: Path | None = None,
    source_hosts_path: Path | None = None,
    dim_base: Path | None = None,
) -> dict[str, Path]:
    """
        Read the latest source partitions, build the dimensions and write them as Parquet.

        Args:
            source_listings_path (Path, optional): src_listings Parquet file or partition directory.
                                                   Defaults to the latest partition under `SOURCE_LISTINGS`.
            source_hosts_path (Path, optional): src_hosts Parquet file or partition directory.
                                                Defaults to the latest partition under `SOURCE_HOSTS`.
            dim_base (Path, optional): Output directory. Defaults to `DIM`.

        Returns:
            dict[str, Path]: Dimension name -> written Parquet file.

        Raises:
            FileNotFoundError: If no source partition can be found.
    """
    source_listings_path = source_listings_path or _latest_partition_dir(SOURCE_LISTINGS)
    source_hosts_path = source_hosts_path or _latest_partition_dir(SOURCE_HOSTS)

    dim_paths = {
        "dim_listings_cleansed": DIM_LISTINGS_CLEANSED,
        "dim_hosts_cleansed": DIM_HOSTS_CLEANSED,
        "dim_listings_w_hosts": DIM_LISTINGS_W_HOSTS,
    }
    if dim_base:
        dim_paths = {k: dim_base / (k + ".parquet") for k in dim_paths}
    (dim_base or DIM).mkdir(parents=True, exist_ok=True)

    logger.info("Building dimensions from source partitions")
    listings_df = pd.read_parquet(source_listings_path)
    hosts_df = pd.read_parquet(source_hosts_path)
    frames = build_dimensions(listings_df, hosts_df)

    for name, df in frames.items():
        df.to_parquet(dim_paths[name], index=False)
        logger.info("Wrote %s: %s (%d rows)", name, dim_paths[name], len(df))
    return dim_paths
