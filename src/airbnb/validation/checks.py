"""
Data-quality checks run after a load.

Each check is a query returning the offending rows; an empty result is a pass.
Checks only read: a failure is reported, never corrected or rolled back.
"""
from dataclasses import dataclass, field
from typing import Callable, Optional

import duckdb

from src.logging_config import get_logger
from src.airbnb.config import FCT_REVIEWS, LoaderConfig

logger = get_logger(__name__)

SAMPLE_LIMIT = 10

ROOM_TYPES = ("Entire home/apt", "Private room", "Shared room", "Hotel room")
SENTIMENTS = ("positive", "neutral", "negative")
SUPERHOST_FLAGS = ("t", "f")


class DataTestFailure(Exception):
    """Raised in strict mode when one or more checks fail."""

    def __init__(self, failed: list["CheckResult"]) -> None:
        self.failed = failed
        names = ", ".join(r.name for r in failed)
        super().__init__(f"{len(failed)} data test(s) failed: {names}")


@dataclass
class CheckResult:
    name: str
    model: str
    failures: int
    sample: list[dict] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.failures == 0 and self.error is None


@dataclass(frozen=True)
class Check:
    name: str
    model: str
    sql: Callable[[LoaderConfig], str]


def _quote_list(values) -> str:
    return ", ".join("'" + v.replace("'", "''") + "'" for v in values)


def not_null(model: str, column: str) -> Check:
    return Check(
        f"not_null_{model}_{column}",
        model,
        lambda cfg: f"SELECT * FROM {model} WHERE {column} IS NULL",
    )


def unique(model: str, column: str) -> Check:
    return Check(
        f"unique_{model}_{column}",
        model,
        lambda cfg: f"""
            SELECT {column} AS unique_field, count(*) AS n_records
            FROM {model}
            WHERE {column} IS NOT NULL
            GROUP BY {column}
            HAVING count(*) > 1
        """,
    )


def relationships(model: str, column: str, to: str, field_name: str) -> Check:
    return Check(
        f"relationships_{model}_{column}__{field_name}__{to}",
        model,
        lambda cfg: f"""
            SELECT child.{column} AS from_field
            FROM {model} child
            LEFT JOIN {to} parent ON child.{column} = parent.{field_name}
            WHERE child.{column} IS NOT NULL AND parent.{field_name} IS NULL
        """,
    )


def accepted_values(model: str, column: str, values) -> Check:
    return Check(
        f"accepted_values_{model}_{column}",
        model,
        lambda cfg: f"""
            SELECT {column} AS value_field, count(*) AS n_records
            FROM {model}
            WHERE {column} IS NOT NULL AND CAST({column} AS VARCHAR) NOT IN ({_quote_list(values)})
            GROUP BY {column}
        """,
    )


def positive_value(model: str, column: str) -> Check:
    return Check(
        f"positive_value_{model}_{column}",
        model,
        lambda cfg: f"SELECT * FROM {model} WHERE {column} < 1",
    )


def consistent_created_at(fact: str = FCT_REVIEWS, listings: str = "dim_listings_cleansed") -> Check:
    """Reviews dated before their listing was created."""
    return Check(
        "consistent_created_at",
        fact,
        lambda cfg: f"""
            SELECT f.*, d.created_at
            FROM {fact} AS f
            JOIN {listings} AS d ON f.listing_id = d.listing_id
            WHERE CAST(f.review_date AS DATE) < CAST(d.created_at AS DATE)
        """,
    )


def minimum_row_count(model: str = FCT_REVIEWS) -> Check:
    return Check(
        f"minimum_row_count_{model}",
        model,
        lambda cfg: f"""
            SELECT row_count, {cfg.min_review_rows} AS min_rows
            FROM (SELECT count(*) AS row_count FROM {model})
            WHERE row_count < {cfg.min_review_rows}
        """,
    )


FACT_CHECKS = [
    not_null(FCT_REVIEWS, "review_id"),
    unique(FCT_REVIEWS, "review_id"),
    not_null(FCT_REVIEWS, "listing_id"),
    relationships(FCT_REVIEWS, "listing_id", "dim_listings_cleansed", "listing_id"),
    accepted_values(FCT_REVIEWS, "review_sentiment", SENTIMENTS),
    consistent_created_at(),
    minimum_row_count(),
]

DIM_CHECKS = [
    unique("dim_listings_cleansed", "listing_id"),
    not_null("dim_listings_cleansed", "listing_id"),
    not_null("dim_listings_cleansed", "host_id"),
    relationships("dim_listings_cleansed", "host_id", "dim_hosts_cleansed", "host_id"),
    accepted_values("dim_listings_cleansed", "room_type", ROOM_TYPES),
    positive_value("dim_listings_cleansed", "minimum_nights"),
    unique("dim_hosts_cleansed", "host_id"),
    not_null("dim_hosts_cleansed", "host_id"),
    not_null("dim_hosts_cleansed", "host_name"),
    accepted_values("dim_hosts_cleansed", "is_superhost", SUPERHOST_FLAGS),
]

ALL_CHECKS = FACT_CHECKS + DIM_CHECKS


def run_check(conn: duckdb.DuckDBPyConnection, check: Check, config: LoaderConfig) -> CheckResult:
    sql = check.sql(config)
    try:
        failures = conn.execute(f"SELECT count(*) FROM ({sql})").fetchone()[0]
        sample = []
        if failures:
            cursor = conn.execute(f"SELECT * FROM ({sql}) LIMIT {SAMPLE_LIMIT}")
            columns = [d[0] for d in cursor.description]
            sample = [dict(zip(columns, row)) for row in cursor.fetchall()]
    except duckdb.Error as exc:
        logger.error("Check %s could not run: %s", check.name, exc)
        return CheckResult(check.name, check.model, failures=0, error=str(exc))
    return CheckResult(check.name, check.model, failures=failures, sample=sample)


def run_checks(
    conn: duckdb.DuckDBPyConnection,
    config: LoaderConfig | None = None,
    checks: list[Check] | None = None,
    strict: bool = False,
) -> list[CheckResult]:
    """
    Run data-quality checks against the warehouse.

    Args:
        conn: Connection where fct_reviews and the dimensions are queryable.
        config: Supplies min_review_rows. Defaults to LoaderConfig().
        checks: Checks to run. Defaults to every fact and dimension check.
        strict: Raise DataTestFailure when any check fails.

    Returns:
        list[CheckResult]: One result per check, in order.
    """
    config = config or LoaderConfig()
    results = [run_check(conn, check, config) for check in (checks or ALL_CHECKS)]
    failed = [r for r in results if not r.passed]
    for r in results:
        if r.passed:
            logger.info("PASS %s", r.name)
        elif r.error:
            logger.error("ERROR %s: %s", r.name, r.error)
        else:
            logger.warning("FAIL %s (%d failing rows)", r.name, r.failures)
    logger.info("Checks done: %d passed, %d failed", len(results) - len(failed), len(failed))
    if strict and failed:
        raise DataTestFailure(failed)
    return results
