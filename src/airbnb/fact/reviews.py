"""
Fact layer: incremental, append-only load of fct_reviews in the DuckDB warehouse.

Each run filters the source reviews to a date window, keys every row with an MD5
surrogate over (listing_id, review_date, reviewer_name, review_text) and appends
only keys that are not yet persisted. The whole batch is committed in one
transaction.

Two loads running at the same time against one warehouse are not coordinated:
both can read the same high-water mark and append the same window. The review_id
anti-join only sees rows that were already committed when the batch was built.
"""
import hashlib
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Sequence

import duckdb

from src.airbnb.audit import NullRecorder, RunRecorder
from src.airbnb.config import FCT_REVIEWS, LoaderConfig, WindowPolicy
from src.logging_config import get_logger

logger = get_logger(__name__)

SOURCE_REVIEWS_VIEW = "src_reviews"
REVIEW_KEY_COLUMNS = ("listing_id", "review_date", "reviewer_name", "review_text")
KEY_SEPARATOR = "-"
NULL_TOKEN = "_surrogate_key_null_"


class LoaderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


@dataclass(frozen=True)
class ReviewWindow:
    """Date bounds applied to review_date. A bound of None is open."""

    start: Optional[date]
    end: Optional[date]
    start_exclusive: bool = False

    @property
    def is_empty(self) -> bool:
        if self.start is None or self.end is None:
            return False
        return self.start >= self.end if self.start_exclusive else self.start > self.end

    def to_sql(self, column: str = "review_date") -> str:
        clauses = []
        if self.start is not None:
            op = ">" if self.start_exclusive else ">="
            clauses.append(f"{column} {op} DATE '{self.start.isoformat()}'")
        if self.end is not None:
            clauses.append(f"{column} <= DATE '{self.end.isoformat()}'")
        return " AND ".join(clauses) if clauses else "TRUE"

    def __str__(self) -> str:
        lower = "(" if self.start_exclusive else "["
        start = self.start.isoformat() if self.start else "-inf"
        end = self.end.isoformat() if self.end else "+inf"
        return f"{lower}{start}, {end}]"


@dataclass(frozen=True)
class LoadResult:
    state: LoaderState
    window: ReviewWindow
    high_water_mark: Optional[date]
    rows_eligible: int
    rows_inserted: int

    @property
    def rows_skipped(self) -> int:
        return self.rows_eligible - self.rows_inserted


def _key_text(value) -> str:
    if value is None:
        return NULL_TOKEN
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def surrogate_key(*values) -> str:
    """
    MD5 surrogate key over the given values, as computed in the warehouse.

    Values are rendered as text, nulls replaced by a fixed token and joined with "-",
    so the digest depends only on the values themselves.
    """
    text = KEY_SEPARATOR.join(_key_text(v) for v in values)
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def surrogate_key_sql(columns: Sequence[str]) -> str:
    parts = [f"COALESCE(CAST({c} AS VARCHAR), '{NULL_TOKEN}')" for c in columns]
    return "md5(" + f" || '{KEY_SEPARATOR}' || ".join(parts) + ")"


def table_exists(conn: duckdb.DuckDBPyConnection, name: str) -> bool:
    row = conn.execute(
        "SELECT count(*) FROM information_schema.tables WHERE table_name = ?", [name]
    ).fetchone()
    return row[0] > 0


def loader_state(conn: duckdb.DuckDBPyConnection, target: str = FCT_REVIEWS) -> LoaderState:
    return LoaderState.INITIALIZED if table_exists(conn, target) else LoaderState.UNINITIALIZED


def high_water_mark(conn: duckdb.DuckDBPyConnection, target: str = FCT_REVIEWS) -> Optional[date]:
    if not table_exists(conn, target):
        return None
    value = conn.execute(f"SELECT max(CAST(review_date AS DATE)) FROM {target}").fetchone()[0]
    return value


def resolve_window(config: LoaderConfig, hwm: Optional[date], today: Optional[date] = None) -> ReviewWindow:
    """
    Pick the review_date window for a run.

    Both explicit bounds win. Otherwise the policy applies: HIGH_WATER_MARK admits rows
    strictly after the persisted maximum, FULL_HISTORY admits everything; both stop at
    the as-of date.
    """
    explicit = config.explicit_window
    if explicit is not None:
        return ReviewWindow(start=explicit[0], end=explicit[1])
    today = config.as_of or today or datetime.now(timezone.utc).date()
    if config.window_policy is WindowPolicy.FULL_HISTORY:
        return ReviewWindow(start=None, end=today)
    return ReviewWindow(start=hwm, end=today, start_exclusive=hwm is not None)


def build_batch_sql(source: str, window: ReviewWindow) -> str:
    """SELECT producing the keyed, filtered and de-duplicated rows of one load."""
    return f"""
        WITH filtered AS (
            SELECT * REPLACE (
                CAST(listing_id AS BIGINT) AS listing_id,
                CAST(review_date AS DATE) AS review_date,
                CAST(reviewer_name AS VARCHAR) AS reviewer_name,
                CAST(review_text AS VARCHAR) AS review_text,
                CAST(review_sentiment AS VARCHAR) AS review_sentiment
            )
            FROM {source}
            WHERE review_text IS NOT NULL
              AND TRIM(CAST(review_text AS VARCHAR)) <> ''
        ),
        windowed AS (
            SELECT * FROM filtered WHERE {window.to_sql("review_date")}
        ),
        keyed AS (
            SELECT {surrogate_key_sql(REVIEW_KEY_COLUMNS)} AS review_id, *
            FROM windowed
        )
        SELECT * FROM keyed
        QUALIFY row_number() OVER (PARTITION BY review_id ORDER BY review_sentiment NULLS LAST) = 1
    """


def load_reviews(
    conn: duckdb.DuckDBPyConnection,
    config: LoaderConfig | None = None,
    source: str = SOURCE_REVIEWS_VIEW,
    target: str = FCT_REVIEWS,
    recorder: RunRecorder | None = None,
) -> LoadResult:
    """
        Append the reviews that became eligible since the last load to the fact table.

        On the first run (target missing) the table is created from every row passing the
        text and window filters. On later runs only rows whose review_id is not already in
        the target are inserted, so re-processing a window never duplicates rows. Rows are
        never updated or deleted.

        Args:
            conn: Open warehouse connection. `source` must be queryable through it.
            config: Window settings. Defaults to LoaderConfig().
            source: Relation exposing listing_id, review_date, reviewer_name, review_text
                    and review_sentiment. Key columns are cast to fixed types first.
            target: Name of the fact table.
            recorder: Receives load_started / window_resolved / load_finished / load_failed.

        Returns:
            LoadResult: State before the load, the window used and row counts.

        Raises:
            duckdb.Error: If the batch cannot be built or written; nothing is committed.
    """
    config = config or LoaderConfig()
    recorder = recorder or NullRecorder()

    state = loader_state(conn, target)
    hwm = high_water_mark(conn, target)
    recorder.record("load_started", model=target, state=state, high_water_mark=hwm)

    window = resolve_window(config, hwm)
    recorder.record("window_resolved", model=target, window=str(window), empty=window.is_empty)
    logger.info("Loading %s (%s) for review_date in %s", target, state.value, window)

    batch = f"__{target}_batch"
    conn.begin()
    try:
        conn.execute(f"CREATE OR REPLACE TEMP TABLE {batch} AS {build_batch_sql(source, window)}")
        eligible = conn.execute(f"SELECT count(*) FROM {batch}").fetchone()[0]
        if state is LoaderState.UNINITIALIZED:
            conn.execute(f"CREATE TABLE {target} AS SELECT * FROM {batch}")
            inserted = eligible
        else:
            new_rows = f"""
                SELECT b.* FROM {batch} b
                WHERE NOT EXISTS (SELECT 1 FROM {target} t WHERE t.review_id = b.review_id)
            """
            inserted = conn.execute(f"SELECT count(*) FROM ({new_rows})").fetchone()[0]
            conn.execute(f"INSERT INTO {target} BY NAME {new_rows}")
        conn.execute(f"DROP TABLE {batch}")
        conn.commit()
    except duckdb.Error as exc:
        conn.rollback()
        logger.error("Load of %s failed, rolled back: %s", target, exc)
        recorder.record("load_failed", model=target, error=str(exc))
        raise

    result = LoadResult(
        state=state,
        window=window,
        high_water_mark=hwm,
        rows_eligible=eligible,
        rows_inserted=inserted,
    )
    logger.info("Loaded %s: %d new rows, %d already present", target, result.rows_inserted, result.rows_skipped)
    recorder.record(
        "load_finished",
        model=target,
        rows_inserted=result.rows_inserted,
        rows_skipped=result.rows_skipped,
    )
    return result
