"""
Warehouse paths and run settings (single source of truth for the layer layout).
"""
import os
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = ROOT / "data"
DATALAKE = ROOT / "datalake"
SOURCE = DATALAKE / "source"
DIM = DATALAKE / "dim"
MART = DATALAKE / "mart"

# Raw inputs (Airbnb export) and seeds
LISTINGS_CSV = DATA_DIR / "listings.csv"
HOSTS_CSV = DATA_DIR / "hosts.csv"
REVIEWS_CSV = DATA_DIR / "reviews.csv"
FULL_MOON_SEED_CSV = DATA_DIR / "seed_full_moon_dates.csv"

# Source partitions: .../src_reviews/ingestion_date=YYYY-MM-DD/src_reviews.parquet
SOURCE_LISTINGS = SOURCE / "src_listings"
SOURCE_HOSTS = SOURCE / "src_hosts"
SOURCE_REVIEWS = SOURCE / "src_reviews"

# Dimensions
DIM_LISTINGS_CLEANSED = DIM / "dim_listings_cleansed.parquet"
DIM_HOSTS_CLEANSED = DIM / "dim_hosts_cleansed.parquet"
DIM_LISTINGS_W_HOSTS = DIM / "dim_listings_w_hosts.parquet"

# Incremental facts and the audit log live in the warehouse database
WAREHOUSE_DB = DATALAKE / "warehouse.duckdb"
FCT_REVIEWS = "fct_reviews"
AUDIT_LOG = "audit_log"

# Marts
MART_FULLMOON_REVIEWS = MART / "mart_fullmoon_reviews.parquet"

# Published copies for dashboards (Parquet/CSV/SQLite)
OUTPUT_DIR = ROOT / "output"

ENV_PREFIX = "AIRBNB_"
NO_USER_NAME = "No USERNAME IS SET!!"
SETTINGS = ("start_date", "end_date", "window_policy", "min_review_rows", "as_of", "user_name")


class ConfigError(ValueError):
    """Raised for run settings that cannot be parsed; no data is touched."""


class WindowPolicy(str, Enum):
    """How the review loader picks its date window when no explicit bounds are given."""

    HIGH_WATER_MARK = "high_water_mark"
    FULL_HISTORY = "full_history"


def parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a YYYY-MM-DD date, got {value!r}") from exc


@dataclass(frozen=True)
class LoaderConfig:
    """
    Settings for one pipeline run.

    Attributes:
        start_date: Inclusive lower bound of the review window.
        end_date: Inclusive upper bound of the review window.
        window_policy: Window used when start_date and end_date are not both set.
        min_review_rows: Minimum number of rows fct_reviews must hold after a load.
        as_of: The "current date" that caps the default window. None means today (UTC).
        user_name: Operator name written to the run log.
    """

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    window_policy: WindowPolicy = WindowPolicy.HIGH_WATER_MARK
    min_review_rows: int = 1
    as_of: Optional[date] = None
    user_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.min_review_rows < 0:
            raise ConfigError(f"min_review_rows must be >= 0, got {self.min_review_rows}")

    @property
    def explicit_window(self) -> Optional[tuple[date, date]]:
        if self.start_date is not None and self.end_date is not None:
            return self.start_date, self.end_date
        return None

    @property
    def operator(self) -> str:
        return self.user_name or NO_USER_NAME

    @classmethod
    def from_vars(cls, values: Mapping[str, Optional[str]]) -> "LoaderConfig":
        """
        Build a config from string settings (CLI flags, Airflow params, environment).

        Keys are the field names; None or empty values are treated as unset.

        Raises:
            ConfigError: On unknown keys or values that do not parse.
        """
        unknown = sorted(set(values) - set(SETTINGS))
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(unknown)}")

        kwargs = {}
        for key, raw in values.items():
            if raw is None or str(raw).strip() == "":
                continue
            raw = str(raw)
            if key in ("start_date", "end_date", "as_of"):
                kwargs[key] = parse_date(raw, key)
            elif key == "window_policy":
                try:
                    kwargs[key] = WindowPolicy(raw.strip().lower())
                except ValueError as exc:
                    allowed = ", ".join(p.value for p in WindowPolicy)
                    raise ConfigError(f"window_policy must be one of {allowed}, got {raw!r}") from exc
            elif key == "min_review_rows":
                try:
                    kwargs[key] = int(raw)
                except ValueError as exc:
                    raise ConfigError(f"min_review_rows must be an integer, got {raw!r}") from exc
            else:
                kwargs[key] = raw.strip()
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LoaderConfig":
        """Read AIRBNB_<SETTING> variables; other AIRBNB_* variables are not ours and are ignored."""
        environ = os.environ if environ is None else environ
        values = {
            key[len(ENV_PREFIX):].lower(): value
            for key, value in environ.items()
            if key.startswith(ENV_PREFIX) and key[len(ENV_PREFIX):].lower() in SETTINGS
        }
        return cls.from_vars(values)

    def override(self, values: Mapping[str, Optional[str]]) -> "LoaderConfig":
        """Return a copy with the set entries of `values` applied on top."""
        parsed = LoaderConfig.from_vars(values)
        changes = {k: getattr(parsed, k) for k, v in values.items() if v is not None and str(v).strip() != ""}
        return replace(self, **changes)
