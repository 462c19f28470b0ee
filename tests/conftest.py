"""
tests/conftest.py — Shared pytest fixtures for the backfill test suite.

Provides:
  clean_env         — autouse; strips Settings variables from the environment
  store_config      — StoreConfig with small pool bounds
  database_url      — file-backed SQLite URL under tmp_path
  engine            — pooled engine with an empty merchant table
  seed_merchants()  — insert {retailer_id: branch_count} rows
  branch_counts()   — read the table back as {retailer_id: branch_count}
  write_input()     — write input lines to a file and return its path
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
import sqlalchemy as sa

from merchant_backfill.config import Settings, StoreConfig
from merchant_backfill.db import create_store_engine
from merchant_backfill.loaders.merchant_gateway import build_merchant_table

SETTINGS_ENV_VARS = [
    "DATABASE_URL",
    "INPUT_PATH",
    "INPUT_DELIMITER",
    "MERCHANT_TABLE",
    "RETAILER_ID_COLUMN",
    "BRANCH_COUNT_COLUMN",
    "DB_MAX_OPEN_CONNS",
    "DB_MAX_IDLE_CONNS",
    "DB_CONN_MAX_LIFETIME_SECONDS",
    "DB_CONN_MAX_IDLE_SECONDS",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's shell environment out of Settings."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@pytest.fixture
def store_config() -> StoreConfig:
    return StoreConfig(max_open_conns=4, max_idle_conns=2)


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'merchant.db'}"


@pytest.fixture
def engine(database_url: str, store_config: StoreConfig):
    engine = create_store_engine(database_url, store_config)
    metadata = sa.MetaData()
    build_merchant_table(store_config, metadata)
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def merchant_table(store_config: StoreConfig) -> sa.Table:
    return build_merchant_table(store_config)


@pytest.fixture
def seed_merchants(engine, merchant_table) -> Callable[[dict[int, int | None]], None]:
    def _seed(rows: dict[int, int | None]) -> None:
        with engine.begin() as conn:
            conn.execute(
                sa.insert(merchant_table),
                [{"retailer_id": rid, "branch_count": bc} for rid, bc in rows.items()],
            )

    return _seed


@pytest.fixture
def branch_counts(engine, merchant_table) -> Callable[[], dict[int, int | None]]:
    def _read() -> dict[int, int | None]:
        stmt = sa.select(merchant_table.c.retailer_id, merchant_table.c.branch_count)
        with engine.connect() as conn:
            return {rid: bc for rid, bc in conn.execute(stmt)}

    return _read


# ---------------------------------------------------------------------------
# Input files / settings
# ---------------------------------------------------------------------------

@pytest.fixture
def write_input(tmp_path: Path) -> Callable[..., Path]:
    def _write(lines: list[str], name: str = "retail.csv") -> Path:
        path = tmp_path / name
        path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_settings(database_url: str, store_config: StoreConfig) -> Callable[..., Settings]:
    def _make(input_path: Path, **overrides: object) -> Settings:
        values: dict[str, object] = {
            "database_url": database_url,
            "input_path": input_path,
            "db_max_open_conns": store_config.max_open_conns,
            "db_max_idle_conns": store_config.max_idle_conns,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
