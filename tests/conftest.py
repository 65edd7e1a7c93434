"""
Shared pytest fixtures for the Airbnb warehouse unit tests.

Every test gets its own in-memory DuckDB connection; pandas frames are registered
on it under the model names the pipeline queries (src_reviews, dim_listings_cleansed, ...).
"""

import duckdb
import pandas as pd
import pytest

LISTING_COLUMNS = ["listing_id", "listing_name", "room_type", "minimum_nights", "host_id", "price", "created_at", "updated_at"]


class ListRecorder:
    """Keeps recorded events in memory."""

    def __init__(self):
        self.events = []

    def record(self, event, **fields):
        self.events.append((event, fields))

    @property
    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture
def conn():
    connection = duckdb.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def recorder():
    return ListRecorder()


@pytest.fixture
def listings_df():
    """dim_listings_cleansed rows: listing 42 created 2023-12-01, listing 43 created 2024-02-15."""
    return pd.DataFrame([
        (42, "Sunny loft", "Entire home/apt", 2, 7, 110.0, pd.Timestamp("2023-12-01 09:00:00"), pd.Timestamp("2024-01-01")),
        (43, "Quiet room", "Private room", 1, 8, 45.0, pd.Timestamp("2024-02-15 12:30:00"), pd.Timestamp("2024-02-15")),
    ], columns=LISTING_COLUMNS)


@pytest.fixture
def hosts_df():
    return pd.DataFrame([
        (7, "Maria", "t", pd.Timestamp("2023-01-01"), pd.Timestamp("2024-03-01")),
        (8, "Jon", "f", pd.Timestamp("2023-06-01"), pd.Timestamp("2023-06-01")),
    ], columns=["host_id", "host_name", "is_superhost", "created_at", "updated_at"])
