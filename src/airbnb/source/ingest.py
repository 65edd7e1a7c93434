"""
Source layer: raw Airbnb CSV exports -> renamed, typed Parquet with ingestion partitioning.
"""
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd

from src.logging_config import get_logger
from src.airbnb.config import (
    HOSTS_CSV,
    LISTINGS_CSV,
    REVIEWS_CSV,
    SOURCE_HOSTS,
    SOURCE_LISTINGS,
    SOURCE_REVIEWS,
)

logger = get_logger(__name__)

# raw column -> source column
LISTINGS_COLUMNS = {
    "id": "listing_id",
    "name": "listing_name",
    "listing_url": "listing_url",
    "room_type": "room_type",
    "minimum_nights": "minimum_nights",
    "host_id": "host_id",
    "price": "price_str",
    "created_at": "created_at",
    "updated_at": "updated_at",
}
HOSTS_COLUMNS = {
    "id": "host_id",
    "name": "host_name",
    "is_superhost": "is_superhost",
    "created_at": "created_at",
    "updated_at": "updated_at",
}
REVIEWS_COLUMNS = {
    "listing_id": "listing_id",
    "date": "review_date",
    "reviewer_name": "reviewer_name",
    "comments": "review_text",
    "sentiment": "review_sentiment",
}


def rename_source_columns(df: pd.DataFrame, columns: dict[str, str], name: str) -> pd.DataFrame:
    """
    Keep and rename the raw columns a source model exposes.

    Raises:
        ValueError: If the frame is empty or a raw column is missing.
    """
    if df.empty:
        raise ValueError(f"{name} is empty")
    missing_columns = [col for col in columns if col not in df.columns]
    if missing_columns:
        raise ValueError(f"Missing required columns in {name}: {', '.join(missing_columns)}")
    return df[list(columns)].rename(columns=columns)


def as_id(df: pd.DataFrame, column: str, name: str) -> pd.Series:
    """Id column as nullable Int64; a blank cell leaves the other ids as integers, not floats."""
    try:
        return pd.to_numeric(df[column]).astype("Int64")
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {column} in {name}") from exc


def prepare_listings(raw: pd.DataFrame) -> pd.DataFrame:
    df = rename_source_columns(raw, LISTINGS_COLUMNS, "listings.csv")
    df["listing_id"] = as_id(df, "listing_id", "listings.csv")
    df["host_id"] = as_id(df, "host_id", "listings.csv")
    df["created_at"] = pd.to_datetime(df["created_at"], errors="coerce")
    df["updated_at"] = pd.to_datetime(df["updated_at"], errors="coerce")
    if df["created_at"].isna().any():
        raise ValueError("Invalid created_at in listings.csv")
    return df


def prepare_hosts(raw: pd.DataFrame) -> pd.DataFrame:
    df = rename_source_columns(raw, HOSTS_COLUMNS, "hosts.csv")
    df["host_id"] = as_id(df, "host_id", "hosts.csv")
    df["created_at"] = pd.to_datetime(df["created_at"], errors="coerce")
    df["updated_at"] = pd.to_datetime(df["updated_at"], errors="coerce")
    return df


def prepare_reviews(raw: pd.DataFrame) -> pd.DataFrame:
    # sentiment is optional in older exports
    if "sentiment" not in raw.columns:
        raw = raw.assign(sentiment=None)
    df = rename_source_columns(raw, REVIEWS_COLUMNS, "reviews.csv")
    df["listing_id"] = as_id(df, "listing_id", "reviews.csv")
    df["review_date"] = pd.to_datetime(df["review_date"], errors="coerce").dt.date
    if df["review_date"].isna().any():
        raise ValueError("Invalid date in reviews.csv")
    # all-empty columns would otherwise land in Parquet as a non-text type
    text_columns = ["reviewer_name", "review_text", "review_sentiment"]
    df[text_columns] = df[text_columns].astype("string")
    return df


def write_partition(df: pd.DataFrame, source_base: Path, model: str) -> Path:
    ingestion_date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    df = df.assign(ingestion_ts=datetime.now(timezone.utc).isoformat())
    out_dir = source_base / f"ingestion_date={ingestion_date}"
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{model}.parquet"
    df.to_parquet(out_path, index=False)
    logger.info("Wrote %s: %s (%d rows)", model, out_path, len(df))
    return out_path


def run(
    listings_path: Path | None = None,
    hosts_path: Path | None = None,
    reviews_path: Path | None = None,
    source_base: Path | None = None,
) -> dict[str, Path]:
    """
    Ingest the three raw exports into source-layer Parquet partitions.

    Args:
        listings_path (Path, optional): Raw listings CSV. Defaults to `LISTINGS_CSV`.
        hosts_path (Path, optional): Raw hosts CSV. Defaults to `HOSTS_CSV`.
        reviews_path (Path, optional): Raw reviews CSV. Defaults to `REVIEWS_CSV`.
        source_base (Path, optional): Root for the source partitions. Defaults to the configured layout.

    Returns:
        dict[str, Path]: Source model name -> written Parquet file.

    Raises:
        FileNotFoundError: If any raw export is missing.
        ValueError: If an export is empty, lacks a required column or has unparseable dates.
    """
    inputs = {
        "src_listings": (listings_path or LISTINGS_CSV, prepare_listings, SOURCE_LISTINGS),
        "src_hosts": (hosts_path or HOSTS_CSV, prepare_hosts, SOURCE_HOSTS),
        "src_reviews": (reviews_path or REVIEWS_CSV, prepare_reviews, SOURCE_REVIEWS),
    }
    for model, (path, _, _) in inputs.items():
        if not path.exists():
            raise FileNotFoundError(f"Raw file for {model} not found: {path}")

    written = {}
    for model, (path, prepare, default_base) in inputs.items():
        logger.info("Ingesting %s from %s", model, path)
        df = prepare(pd.read_csv(path))
        base = (source_base / model) if source_base else default_base
        written[model] = write_partition(df, base, model)
    return written
