"""
End-to-end tests for src/airbnb/run.py: raw CSVs in a temp directory are taken
through source, dim, fct_reviews, mart and checks, then the build is repeated.

Run with: pytest tests/unit/test_run.py -v
"""

import sqlite3
from datetime import date

import duckdb
import pandas as pd
import pytest

from src.airbnb.config import LoaderConfig, WindowPolicy
from src.airbnb.fact.reviews import LoaderState
from src.airbnb.run import check, run

AS_OF = date(2024, 12, 31)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

REVIEW_ROWS = [
    (1, "2024-03-10", "Alex", "Great stay", "positive"),
    (1, "2024-03-10", "Alex", "Great stay", "positive"),
    (2, "2024-03-11", "Sam", "Fine", "neutral"),
    (2, "2024-03-12", "Kim", None, "negative"),
]


@pytest.fixture
def raw(tmp_path):
    """Writes the three raw exports; call with review rows to rewrite reviews.csv."""
    pd.DataFrame([
        (1, "Loft", "https://x/1", "Entire home/apt", 0, 10, "$120.00", "2023-01-01 10:00:00", "2023-02-01"),
        (2, "Room", "https://x/2", "Private room", 2, 11, "$45.50", "2023-03-01 08:00:00", "2023-03-01"),
    ], columns=[
        "id", "name", "listing_url", "room_type", "minimum_nights", "host_id", "price", "created_at", "updated_at",
    ]).to_csv(tmp_path / "listings.csv", index=False)
    pd.DataFrame([
        (10, "Maria", "t", "2022-01-01", "2023-05-01"),
        (11, "Jon", "f", "2022-06-01", "2022-06-01"),
    ], columns=["id", "name", "is_superhost", "created_at", "updated_at"]).to_csv(tmp_path / "hosts.csv", index=False)

    def write_reviews(rows):
        pd.DataFrame(rows, columns=["listing_id", "date", "reviewer_name", "comments", "sentiment"]).to_csv(
            tmp_path / "reviews.csv", index=False,
        )

    write_reviews(REVIEW_ROWS)
    return write_reviews


def build(tmp_path, config=None, publish=False):
    return run(
        config or LoaderConfig(as_of=AS_OF),
        listings_path=tmp_path / "listings.csv",
        hosts_path=tmp_path / "hosts.csv",
        reviews_path=tmp_path / "reviews.csv",
        datalake=tmp_path / "datalake",
        output_dir=tmp_path / "output",
        publish_to_output=publish,
    )


def warehouse_rows(tmp_path, sql):
    conn = duckdb.connect(str(tmp_path / "datalake" / "warehouse.duckdb"))
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Full build
# ---------------------------------------------------------------------------

class TestFullBuild:

    def test_first_build_loads_and_passes_checks(self, raw, tmp_path):
        summary = build(tmp_path)

        assert summary.load.state is LoaderState.UNINITIALIZED
        assert summary.load.rows_inserted == 2
        assert summary.ok
        assert warehouse_rows(tmp_path, "SELECT count(*) FROM fct_reviews") == [(2,)]

    def test_layers_written_under_datalake(self, raw, tmp_path):
        build(tmp_path)
        lake = tmp_path / "datalake"

        assert list((lake / "source" / "src_reviews").glob("ingestion_date=*/src_reviews.parquet"))
        assert (lake / "dim" / "dim_listings_w_hosts.parquet").exists()
        mart = pd.read_parquet(lake / "mart" / "mart_fullmoon_reviews.parquet")
        assert len(mart) == 2

    def test_rebuild_with_same_input_adds_nothing(self, raw, tmp_path):
        build(tmp_path)
        summary = build(tmp_path)

        assert summary.load.state is LoaderState.INITIALIZED
        assert summary.load.rows_inserted == 0
        assert warehouse_rows(tmp_path, "SELECT count(*) FROM fct_reviews") == [(2,)]

    def test_rebuild_appends_newer_reviews_only(self, raw, tmp_path):
        build(tmp_path)
        raw(REVIEW_ROWS + [(1, "2024-04-01", "Lee", "Back again", "positive")])

        summary = build(tmp_path)

        assert summary.load.high_water_mark == date(2024, 3, 11)
        assert summary.load.rows_inserted == 1
        names = warehouse_rows(tmp_path, "SELECT reviewer_name FROM fct_reviews ORDER BY review_date")
        assert names == [("Alex",), ("Sam",), ("Lee",)]

    def test_audit_log_spans_builds(self, raw, tmp_path):
        build(tmp_path)
        build(tmp_path)

        events = [r[0] for r in warehouse_rows(tmp_path, "SELECT event FROM audit_log")]
        assert events.count("load_finished") == 2
        assert events.count("checks_finished") == 2

    def test_explicit_window_limits_the_load(self, raw, tmp_path):
        config = LoaderConfig(start_date=date(2024, 3, 11), end_date=date(2024, 3, 11), as_of=AS_OF)
        summary = build(tmp_path, config)

        assert summary.load.rows_inserted == 1
        assert warehouse_rows(tmp_path, "SELECT reviewer_name FROM fct_reviews") == [("Sam",)]

    def test_failed_threshold_is_reported_not_rolled_back(self, raw, tmp_path):
        summary = build(tmp_path, LoaderConfig(min_review_rows=50, as_of=AS_OF))

        assert not summary.ok
        assert [c.name for c in summary.failed_checks] == ["minimum_row_count_fct_reviews"]
        assert warehouse_rows(tmp_path, "SELECT count(*) FROM fct_reviews") == [(2,)]


# ---------------------------------------------------------------------------
# Publishing and check-only runs
# ---------------------------------------------------------------------------

class TestPublishAndCheck:

    def test_publish_writes_output_copies(self, raw, tmp_path):
        build(tmp_path, publish=True)

        out = tmp_path / "output"
        assert len(pd.read_csv(out / "csv" / "mart_fullmoon_reviews.csv")) == 2
        with sqlite3.connect(out / "airbnb.db") as db:
            assert db.execute("SELECT count(*) FROM mart_fullmoon_reviews").fetchone()[0] == 2

    def test_check_reads_existing_warehouse(self, raw, tmp_path):
        build(tmp_path)
        results = check(LoaderConfig(min_review_rows=3), datalake=tmp_path / "datalake")

        failed = [r.name for r in results if not r.passed]
        assert failed == ["minimum_row_count_fct_reviews"]

    def test_check_before_first_build_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Warehouse not found"):
            check(LoaderConfig(), datalake=tmp_path / "datalake")
        assert not (tmp_path / "datalake" / "warehouse.duckdb").exists()


# ---------------------------------------------------------------------------
# Exports whose column types change between builds
# ---------------------------------------------------------------------------

class TestExportTypeChanges:

    def test_blank_listing_id_keeps_existing_keys(self, raw, tmp_path):
        """A blank listing_id in a later export must not re-key the reviews already loaded."""
        build(tmp_path)
        first_ids = {r[0] for r in warehouse_rows(tmp_path, "SELECT review_id FROM fct_reviews")}

        raw(REVIEW_ROWS + [(None, "2024-04-01", "Lee", "Orphan", "positive")])
        summary = build(tmp_path, LoaderConfig(window_policy=WindowPolicy.FULL_HISTORY, as_of=AS_OF))

        assert summary.load.rows_inserted == 1
        ids = {r[0] for r in warehouse_rows(tmp_path, "SELECT review_id FROM fct_reviews")}
        assert first_ids < ids
        repeated = warehouse_rows(tmp_path, """
            SELECT listing_id, review_date, reviewer_name, review_text
            FROM fct_reviews
            GROUP BY ALL
            HAVING count(*) > 1
        """)
        assert repeated == []
        assert warehouse_rows(tmp_path, "SELECT listing_id FROM fct_reviews WHERE reviewer_name = 'Alex'") == [(1,)]

    def test_export_without_sentiment_then_with_sentiment(self, raw, tmp_path):
        pd.DataFrame(
            [(1, "2024-03-10", "Alex", "Great stay")],
            columns=["listing_id", "date", "reviewer_name", "comments"],
        ).to_csv(tmp_path / "reviews.csv", index=False)
        build(tmp_path)

        raw(REVIEW_ROWS + [(1, "2024-04-01", "Lee", "Back again", "positive")])
        summary = build(tmp_path)

        assert summary.load.rows_inserted == 2
        sentiments = warehouse_rows(tmp_path, "SELECT reviewer_name, review_sentiment FROM fct_reviews ORDER BY review_date")
        assert sentiments == [("Alex", None), ("Sam", "neutral"), ("Lee", "positive")]
